"""Node configuration inheritance.

A node's effective configuration is layered, lowest to highest precedence:
``defaults -> kinds[kind] -> groups[node.group] -> node``. Labels are merged
as their own sub-map in the same order instead of being replaced wholesale.
"""

from __future__ import annotations

from typing import Any, Mapping


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def merge_layers(layers: list[Mapping[str, Any]]) -> dict[str, Any]:
    """Merge mappings in precedence order; later layers win per key.

    ``labels`` is unioned across layers rather than overwritten.

    Args:
        layers: Mappings ordered lowest to highest precedence

    Returns:
        New merged dict; inputs are not modified
    """
    merged: dict[str, Any] = {}
    labels: dict[str, Any] = {}
    saw_labels = False
    for layer in layers:
        for key, value in layer.items():
            if key == "labels":
                if isinstance(value, Mapping):
                    labels.update(value)
                    saw_labels = True
                continue
            merged[key] = value
    if saw_labels:
        merged["labels"] = labels
    return merged


def resolve_kind_name(
    node: Mapping[str, Any],
    group_cfg: Mapping[str, Any],
    defaults: Mapping[str, Any],
) -> str | None:
    """Kind is taken from the node, else its group, else defaults."""
    return node.get("kind") or group_cfg.get("kind") or defaults.get("kind") or None


def resolve_node_config(topology: Mapping[str, Any] | None, node: Mapping[str, Any] | None) -> dict[str, Any]:
    """Resolve one node's effective configuration.

    Unknown kind or group names contribute an empty template.

    Args:
        topology: The ``topology`` section (``defaults``, ``kinds``, ``groups``)
        node: The node's own fields as written in the document

    Returns:
        Merged configuration with ``kind`` set to the resolved kind name
    """
    topology = _as_mapping(topology)
    node = _as_mapping(node)
    defaults = _as_mapping(topology.get("defaults"))
    kinds = _as_mapping(topology.get("kinds"))
    groups = _as_mapping(topology.get("groups"))

    group_name = node.get("group")
    group_cfg = _as_mapping(groups.get(group_name)) if group_name else {}
    kind_name = resolve_kind_name(node, group_cfg, defaults)
    kind_cfg = _as_mapping(kinds.get(kind_name)) if kind_name else {}

    merged = merge_layers([defaults, kind_cfg, group_cfg, node])
    if kind_name:
        merged["kind"] = kind_name
    return merged


def inherited_keys(resolved: Mapping[str, Any], node: Mapping[str, Any] | None) -> list[str]:
    """Keys present in the resolved config that the node did not set itself."""
    own = set(_as_mapping(node).keys())
    return [key for key in resolved.keys() if key not in own]
