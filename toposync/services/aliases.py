"""Bridge alias resolution.

A bridge or ovs-bridge topology node often connects many containers. The
editor can draw it as several visual nodes, one per connected interface,
each with id ``<yamlNodeId>:<interface>``. Aliases exist only in the
annotation sidecar; the document keeps a single bridge node. This module
expands aliases when compiling and folds them back when saving.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from toposync.schemas import (
    EdgeElement,
    NodeAnnotation,
    NodeData,
    NodeElement,
    Position,
    TopologyAnnotations,
)
from toposync.state import BRIDGE_KINDS, NodeRole

logger = logging.getLogger(__name__)

CLASS_ALIASED_BASE = "aliased-base-bridge"


@dataclass
class AliasEntry:
    alias_id: str
    yaml_node_id: str
    interface: str
    annotation: NodeAnnotation


def alias_annotation_id(yaml_node_id: str, interface: str) -> str:
    return f"{yaml_node_id}:{interface}" if interface else yaml_node_id


# =============================================================================
# Compile side
# =============================================================================


def collect_alias_entries(
    annotations: TopologyAnnotations,
    resolved_nodes: Mapping[str, Mapping[str, Any]],
) -> list[AliasEntry]:
    """Alias annotations that point at an existing bridge-kind node."""
    entries: list[AliasEntry] = []
    for ann in annotations.node_annotations:
        yaml_id = (ann.yaml_node_id or "").strip()
        iface = (ann.yaml_interface or "").strip()
        if not yaml_id or not iface or ann.id == yaml_id:
            continue
        base = resolved_nodes.get(yaml_id)
        if base is None or base.get("kind") not in BRIDGE_KINDS:
            logger.debug(f"Ignoring alias {ann.id}: {yaml_id} is not a bridge node")
            continue
        entries.append(AliasEntry(alias_id=ann.id, yaml_node_id=yaml_id, interface=iface, annotation=ann))
    return entries


def build_alias_elements(
    entries: list[AliasEntry],
    annotations: TopologyAnnotations,
    resolved_nodes: Mapping[str, Mapping[str, Any]],
) -> list[NodeElement]:
    """Visual nodes for each alias, placed from its own or its base's annotation."""
    index = annotations.node_index()
    elements: list[NodeElement] = []
    seen: set[str] = set()
    for entry in entries:
        if entry.alias_id in seen:
            continue
        seen.add(entry.alias_id)
        ann = entry.annotation
        base_ann = index.get(entry.yaml_node_id)
        if ann.position is not None:
            position = ann.position.model_copy()
        elif base_ann is not None and base_ann.position is not None:
            position = base_ann.position.model_copy()
        else:
            position = Position()
        parent = ann.parent_id or (base_ann.parent_id if base_ann else None)
        label = (ann.label or "").strip() or entry.alias_id
        kind = resolved_nodes[entry.yaml_node_id].get("kind")
        elements.append(
            NodeElement(
                data=NodeData(
                    id=entry.alias_id,
                    name=label,
                    parent=parent,
                    topo_viewer_role=NodeRole.BRIDGE.value,
                    lat="",
                    lng="",
                    extra_data={
                        "id": entry.alias_id,
                        "name": label,
                        "kind": kind,
                        "extYamlNodeId": entry.yaml_node_id,
                        "yamlInterface": entry.interface,
                    },
                ),
                position=position,
            )
        )
    return elements


def rewire_edges(edges: list[EdgeElement], entries: list[AliasEntry]) -> None:
    """Point edges that touch an aliased bridge interface at the alias node."""
    mapping = {f"{e.yaml_node_id}|{e.interface}": e.alias_id for e in entries}
    if not mapping:
        return
    for edge in edges:
        data = edge.data
        source_alias = mapping.get(f"{data.source}|{data.source_endpoint}")
        if source_alias:
            data.source = source_alias
        target_alias = mapping.get(f"{data.target}|{data.target_endpoint}")
        if target_alias:
            data.target = target_alias


def hide_aliased_bases(nodes: list[NodeElement], edges: list[EdgeElement], entries: list[AliasEntry]) -> None:
    """Mark base bridges whose every edge moved to an alias."""
    bases = {e.yaml_node_id for e in entries}
    if not bases:
        return
    referenced: set[str] = set()
    for edge in edges:
        referenced.add(edge.data.source)
        referenced.add(edge.data.target)
    for node in nodes:
        if node.data.id in bases and node.data.id not in referenced:
            classes = node.classes.split()
            if CLASS_ALIASED_BASE not in classes:
                classes.append(CLASS_ALIASED_BASE)
            node.classes = " ".join(classes)


# =============================================================================
# Save side
# =============================================================================


def yaml_ref(node: NodeElement) -> str:
    return str(node.data.extra_data.get("extYamlNodeId") or "").strip()


def is_bridge_kind_node(node: NodeElement) -> bool:
    return node.data.extra_data.get("kind") in BRIDGE_KINDS


def node_yaml_key(node: NodeElement) -> str:
    """Document key a graph node is stored under.

    An explicit ``extYamlNodeId`` wins, then the node name. Bridges display
    their annotation label as the name, so their key stays the id.
    """
    ref = yaml_ref(node)
    if ref:
        return ref
    if is_bridge_kind_node(node):
        return node.data.id
    return (node.data.name or "").strip() or node.data.id


def follow_renames(key: str, renames: Mapping[str, str]) -> str:
    """Resolve a key through an old -> new rename chain."""
    seen: set[str] = set()
    while key in renames and key not in seen:
        seen.add(key)
        key = renames[key]
    return key


def is_bridge_alias_node(node: NodeElement) -> bool:
    """Alias visuals reference a different node id through ``extYamlNodeId``."""
    ref = yaml_ref(node)
    return (
        node.data.topo_viewer_role == NodeRole.BRIDGE.value
        and bool(ref)
        and ref != node.data.id
        and is_bridge_kind_node(node)
    )


def collect_alias_interfaces(edges: Iterable[EdgeElement]) -> dict[str, set[str]]:
    """Node id -> interfaces used on that node by any edge."""
    result: dict[str, set[str]] = {}
    for edge in edges:
        data = edge.data
        if data.source and data.source_endpoint:
            result.setdefault(data.source, set()).add(data.source_endpoint)
        if data.target and data.target_endpoint:
            result.setdefault(data.target, set()).add(data.target_endpoint)
    return result


def first_interface(interfaces: set[str] | None) -> str:
    if not interfaces:
        return ""
    return sorted(interfaces, key=str.casefold)[0]


def alias_base_set(nodes: Iterable[NodeElement]) -> set[str]:
    """YAML bridge ids that have at least one alias visual."""
    return {yaml_ref(node) for node in nodes if is_bridge_alias_node(node)}


def build_id_override(nodes: Iterable[NodeElement]) -> dict[str, str]:
    """Alias node id -> referenced YAML node id."""
    return {node.data.id: yaml_ref(node) for node in nodes if is_bridge_alias_node(node)}


def current_alias_base(alias_id: str, bridge_keys: Iterable[str]) -> str | None:
    """The bridge key an alias id was derived from (``<key>:<iface>``)."""
    matches = [key for key in bridge_keys if alias_id.startswith(f"{key}:")]
    if not matches:
        return None
    return max(matches, key=len)


def detect_alias_renames(
    nodes: Iterable[NodeElement],
    document_keys: set[str],
    bridge_keys: set[str],
) -> dict[str, str]:
    """Bridge renames requested by editing an alias's YAML reference.

    An alias whose reference names a node that does not exist yet, while its
    own id still derives from an existing bridge, renames that bridge.

    Returns:
        Old document key -> new document key
    """
    renames: dict[str, str] = {}
    for node in nodes:
        if not is_bridge_alias_node(node):
            continue
        ref = yaml_ref(node)
        base = current_alias_base(node.data.id, bridge_keys)
        if base is None or base == ref or ref in document_keys:
            continue
        previous = renames.get(base)
        if previous and previous != ref:
            logger.warning(f"Conflicting alias renames for {base}: {previous} vs {ref}; keeping {previous}")
            continue
        renames[base] = ref
    return renames
