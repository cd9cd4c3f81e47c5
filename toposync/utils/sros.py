"""Container and interface lookup for distributed SR-OS nodes.

A ``nokia_srsim`` node with ``components`` runs one container per card slot,
named ``<node>-<slot>``, and its interfaces use the ``e<card>-<mda>-<port>``
form of the SR-OS port names written in the topology.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from toposync.schemas import ContainerInfo, InterfaceInfo, Inventory

SROS_KIND = "nokia_srsim"

_PORT_RE = re.compile(r"^(\d+)/(?:x(\d+)/)?(\d+)(?:/c(\d+))?/(\d+)$")


def is_distributed_sros(resolved: Mapping[str, Any] | None) -> bool:
    if not resolved or resolved.get("kind") != SROS_KIND:
        return False
    components = resolved.get("components")
    return isinstance(components, list) and len(components) > 0


def map_sros_interface_name(name: str) -> str | None:
    """Container interface name for an SR-OS port, e.g. ``1/x2/3/c4/5`` -> ``e1-x2-3-c4-5``.

    ``eth*`` names are returned unchanged; anything else unrecognized gives None.
    """
    trimmed = (name or "").strip()
    if not trimmed:
        return None
    if trimmed.startswith("eth"):
        return trimmed
    match = _PORT_RE.match(trimmed)
    if not match:
        return None
    card, xiom, mda, connector, port = match.groups()
    parts = [f"e{card}"]
    if xiom:
        parts.append(f"x{xiom}")
    parts.append(mda)
    if connector:
        parts.append(f"c{connector}")
    parts.append(port)
    return "-".join(parts)


def candidate_interface_names(name: str) -> list[str]:
    candidates = [name] if name else []
    mapped = map_sros_interface_name(name)
    if mapped and mapped not in candidates:
        candidates.append(mapped)
    return candidates


def slot_priority(slot: str) -> int:
    """CPM slots A and B sort before line cards."""
    return {"a": 0, "b": 1}.get(slot.lower(), 2)


def component_slots(components: Iterable[Any]) -> list[str]:
    """Lowercased component slots, control cards first."""
    slots = []
    for comp in components:
        slot = comp.get("slot") if isinstance(comp, Mapping) else None
        if isinstance(slot, str) and slot.strip():
            slots.append(slot.strip().lower())
    return sorted(slots, key=slot_priority)


def distributed_container_names(base: str, full_prefix: str, components: Iterable[Any]) -> list[str]:
    """Container names to try for each component slot, long name first."""
    names: list[str] = []
    for slot in component_slots(components):
        short = f"{base}-{slot}"
        for name in (f"{full_prefix}-{short}" if full_prefix else short, short):
            if name not in names:
                names.append(name)
    return names


def _lab_containers(inventory: Inventory | None, lab_name: str, names: list[str]) -> list[ContainerInfo]:
    if not inventory:
        return []
    by_name = {c.name: c for c in inventory.get(lab_name, [])}
    return [by_name[name] for name in names if name in by_name]


def find_distributed_container(
    inventory: Inventory | None,
    lab_name: str,
    base: str,
    full_prefix: str,
    components: Iterable[Any],
) -> ContainerInfo | None:
    """First running component container of a distributed node."""
    found = _lab_containers(inventory, lab_name, distributed_container_names(base, full_prefix, components))
    return found[0] if found else None


def match_interface(container: ContainerInfo, name: str) -> InterfaceInfo | None:
    candidates = candidate_interface_names(name)
    for iface in container.interfaces:
        if iface.name in candidates or (iface.alias and iface.alias in candidates):
            return iface
    return None


def find_distributed_interface(
    inventory: Inventory | None,
    lab_name: str,
    base: str,
    iface: str,
    full_prefix: str,
    components: Iterable[Any],
) -> tuple[str, InterfaceInfo] | None:
    """Component container holding ``iface``, with the matched interface."""
    names = distributed_container_names(base, full_prefix, components)
    for container in _lab_containers(inventory, lab_name, names):
        matched = match_interface(container, iface)
        if matched is not None:
            return container.name, matched
    return None
