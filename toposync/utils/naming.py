"""Container naming conventions for deployed lab nodes.

Containers are named ``<prefix>-<lab>-<node>`` by default. The document may
override the prefix; an explicitly empty prefix drops it entirely.
"""

from __future__ import annotations

from typing import Any, Mapping

from toposync.config import settings
from toposync.utils.link import is_special_endpoint, resolve_actual_node


def compute_full_prefix(document: Mapping[str, Any] | None) -> str:
    """Container name prefix for a lab.

    Format: ``clab-<lab>`` when ``prefix`` is absent, ``""`` when it is
    empty or whitespace, else ``<prefix>-<lab>``.
    """
    document = document or {}
    lab_name = str(document.get("name") or "")
    if "prefix" not in document or document.get("prefix") is None:
        return f"{settings.container_prefix_default}-{lab_name}"
    prefix = str(document.get("prefix")).strip()
    if not prefix:
        return ""
    return f"{prefix}-{lab_name}"


def container_name(full_prefix: str, node_name: str) -> str:
    return f"{full_prefix}-{node_name}" if full_prefix else node_name


def endpoint_container_name(node: str, iface: str, full_prefix: str) -> str:
    """Long name for one side of a link; special endpoints keep their own id."""
    actual = resolve_actual_node(node, iface)
    if is_special_endpoint(actual):
        return actual
    return container_name(full_prefix, node)


def node_fqdn(node_name: str, lab_name: str) -> str:
    return f"{node_name}.{lab_name}.io"
