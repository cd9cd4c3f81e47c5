"""Graph node and group element construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from toposync.schemas import (
    ContainerInfo,
    GroupData,
    GroupElement,
    Inventory,
    NodeAnnotation,
    NodeData,
    NodeElement,
    Position,
)
from toposync.state import BRIDGE_KINDS, NodeRole
from toposync.utils.inheritance import inherited_keys
from toposync.utils.naming import container_name, node_fqdn
from toposync.utils.sros import find_distributed_container, is_distributed_sros

logger = logging.getLogger(__name__)

LEGACY_LABEL_PREFIX = "graph-"
DEFAULT_GROUP_LEVEL = "1"


@dataclass
class NodeBuildContext:
    """Per-compile values shared by every node element."""

    lab_name: str
    full_prefix: str
    inventory: Inventory | None = None

    @property
    def include_runtime(self) -> bool:
        return self.inventory is not None


def find_container(inventory: Inventory | None, lab_name: str, name: str) -> ContainerInfo | None:
    """Look up a discovered container by its full name within one lab."""
    if not inventory:
        return None
    for container in inventory.get(lab_name, []):
        if container.name == name:
            return container
    return None


def find_node_container(ctx: NodeBuildContext, name: str, resolved: Mapping[str, Any]) -> ContainerInfo | None:
    """Runtime container for a node; distributed SR-OS nodes fall back to their component containers."""
    container = find_container(ctx.inventory, ctx.lab_name, container_name(ctx.full_prefix, name))
    if container is None and is_distributed_sros(resolved):
        container = find_distributed_container(
            ctx.inventory, ctx.lab_name, name, ctx.full_prefix, resolved["components"]
        )
    return container


def sanitize_labels(labels: Any) -> dict[str, Any]:
    """Drop legacy inline ``graph-*`` visual labels."""
    if not isinstance(labels, Mapping):
        return {}
    return {k: v for k, v in labels.items() if not str(k).startswith(LEGACY_LABEL_PREFIX)}


def resolve_parent(ann: NodeAnnotation | None, labels: Mapping[str, Any]) -> str | None:
    """Group container id ``<group>:<level>`` for a node, if it has a group.

    The annotation wins; legacy inline labels are the fallback.
    """
    group = (ann.group if ann else None) or labels.get("topoViewer-group") or labels.get("graph-group")
    if not group:
        return None
    level = (
        (ann.level if ann else None)
        or labels.get("topoViewer-groupLevel")
        or labels.get("graph-level")
        or DEFAULT_GROUP_LEVEL
    )
    return f"{group}:{level}"


def resolve_role(resolved: Mapping[str, Any], ann: NodeAnnotation | None, labels: Mapping[str, Any]) -> str:
    if ann and ann.icon:
        return ann.icon
    label_role = labels.get("topoViewer-role")
    if isinstance(label_role, str) and label_role:
        return label_role
    if resolved.get("kind") in BRIDGE_KINDS:
        return NodeRole.BRIDGE.value
    return NodeRole.ROUTER.value


def is_aliased_away(name: str, ann: NodeAnnotation | None, resolved: Mapping[str, Any]) -> bool:
    """A bridge whose own annotation points at another YAML node is drawn only via aliases."""
    return bool(
        ann is not None
        and ann.yaml_node_id
        and ann.yaml_node_id != name
        and resolved.get("kind") in BRIDGE_KINDS
    )


def build_node_extra_data(
    name: str,
    node: Mapping[str, Any],
    resolved: Mapping[str, Any],
    index: int,
    ctx: NodeBuildContext,
    container: ContainerInfo | None,
) -> dict[str, Any]:
    """Resolved configuration plus naming and runtime fields for the editor."""
    extra: dict[str, Any] = dict(resolved)
    full_prefix = ctx.full_prefix
    extra.update(
        {
            "inherited": inherited_keys(resolved, node),
            "fqdn": node_fqdn(name, ctx.lab_name),
            "group": resolved.get("group", "") or "",
            "id": name,
            "image": resolved.get("image", "") or "",
            "index": str(index),
            "kind": resolved.get("kind", "") or "",
            "type": resolved.get("type", "") or "",
            "labdir": f"{full_prefix}/" if full_prefix else "",
            "labels": sanitize_labels(resolved.get("labels")),
            "longname": container.name if container else container_name(full_prefix, name),
            "shortname": name,
            "name": name,
            "mgmtIpv4Address": container.ipv4_address if container else "",
            "mgmtIpv6Address": container.ipv6_address if container else "",
            "state": container.state if container else "",
        }
    )
    return extra


def build_node_element(
    name: str,
    node: Mapping[str, Any],
    resolved: Mapping[str, Any],
    ann: NodeAnnotation | None,
    index: int,
    ctx: NodeBuildContext,
) -> NodeElement:
    """Build the graph element for one topology node.

    Args:
        name: Node key in the document
        node: Fields written on the node itself
        resolved: Inherited configuration for the node
        ann: Saved annotation for the node, if any
        index: Position of the node in document order
        ctx: Shared compile values

    Returns:
        NodeElement with role, parent group, position and extra data set
    """
    labels = resolved.get("labels") if isinstance(resolved.get("labels"), Mapping) else {}
    container = None
    if ctx.include_runtime:
        container = find_node_container(ctx, name, resolved)

    is_bridge = resolved.get("kind") in BRIDGE_KINDS
    display_name = name
    if is_bridge and ann is not None and ann.label and ann.label.strip():
        display_name = ann.label.strip()

    data = NodeData(
        id=name,
        name=display_name,
        parent=resolve_parent(ann, labels),
        topo_viewer_role=resolve_role(resolved, ann, labels),
        lat="",
        lng="",
        extra_data=build_node_extra_data(name, node, resolved, index, ctx, container),
    )
    if ann is not None:
        if ann.icon_color and ann.icon_color.strip():
            data.icon_color = ann.icon_color.strip()
        if ann.icon_corner_radius is not None and ann.icon_corner_radius > 0:
            data.icon_corner_radius = ann.icon_corner_radius
        if ann.geo_coordinates is not None:
            data.lat = str(ann.geo_coordinates.lat)
            data.lng = str(ann.geo_coordinates.lng)
        if ann.group_label_pos:
            data.group_label_pos = ann.group_label_pos

    position = ann.position.model_copy() if ann is not None and ann.position is not None else Position()
    return NodeElement(data=data, position=position)


def build_group_elements(nodes: list[NodeElement]) -> list[GroupElement]:
    """One group container per distinct parent id, in first-seen order."""
    groups: dict[str, GroupElement] = {}
    for node in nodes:
        parent = node.data.parent
        if not parent or parent in groups:
            continue
        group_name, _, level = parent.partition(":")
        groups[parent] = GroupElement(
            data=GroupData(
                id=parent,
                name=group_name,
                extra_data={
                    "topoViewerGroup": group_name,
                    "topoViewerGroupLevel": level,
                },
            ),
            classes=node.data.group_label_pos or "",
        )
    return list(groups.values())
