"""Special-endpoint (cloud) node discovery.

Links can terminate on things that are not containers: the host namespace,
the management network, macvlan/vxlan attachments and dummy interfaces.
Each distinct attachment becomes one synthetic cloud node in the graph.
Bridge-kind topology nodes are tracked alongside them because edges treat
both the same way when computing link state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from toposync.schemas import NodeData, NodeElement, Position, TopologyAnnotations
from toposync.state import BRIDGE_KINDS, HOSTY_TYPES, VXLAN_TYPES, LinkType, NodeRole
from toposync.utils.link import (
    HOST,
    MGMT_NET,
    DummyContext,
    Endpoint,
    is_dummy_id,
    normalize_link,
    special_link_type,
)

logger = logging.getLogger(__name__)


@dataclass
class SpecialNodeInfo:
    type: str
    label: str
    from_topology: bool = False  # Bridge declared as a topology node


def determine_special_node(ep: Endpoint) -> tuple[str, str, str] | None:
    """Identify a special endpoint.

    Returns:
        ``(id, type, label)`` or None for regular container endpoints
    """
    if ep.node in (HOST, MGMT_NET):
        return f"{ep.node}:{ep.iface}", ep.node, f"{ep.node}:{ep.iface or ep.node}"
    link_type = special_link_type(ep.node)
    if link_type is None:
        return None
    label = LinkType.DUMMY.value if is_dummy_id(ep.node) else ep.node
    return ep.node, link_type, label


def special_link_props(link: Mapping[str, Any]) -> dict[str, Any]:
    """Extended link fields to prefill on the special endpoint's node."""
    link_type = str(link.get("type") or "")
    props: dict[str, Any] = {"extType": link_type}
    if link.get("mtu") is not None:
        props["extMtu"] = link["mtu"]
    if link.get("vars") is not None:
        props["extVars"] = link["vars"]
    if link.get("labels") is not None:
        props["extLabels"] = link["labels"]
    if link_type in HOSTY_TYPES:
        if link.get("host-interface") is not None:
            props["extHostInterface"] = link["host-interface"]
        if link_type == LinkType.MACVLAN.value and link.get("mode") is not None:
            props["extMode"] = link["mode"]
    if link_type in VXLAN_TYPES:
        if link.get("remote") is not None:
            props["extRemote"] = link["remote"]
        if link.get("vni") is not None:
            props["extVni"] = link["vni"]
        if link.get("udp-port") is not None:
            props["extUdpPort"] = link["udp-port"]
    endpoint = link.get("endpoint")
    if isinstance(endpoint, Mapping) and endpoint.get("mac") is not None:
        props["extMac"] = endpoint["mac"]
    return props


def collect_special_nodes(
    resolved_nodes: Mapping[str, Mapping[str, Any]],
    links: list[Any],
    ctx: DummyContext,
) -> tuple[dict[str, SpecialNodeInfo], dict[str, dict[str, Any]]]:
    """Register every special endpoint referenced by the links.

    Args:
        resolved_nodes: Node name -> resolved configuration
        links: Document links in declaration order
        ctx: Dummy allocator shared with the edge pass

    Returns:
        Tuple of (special node id -> info, special node id -> prefill props)
    """
    special: dict[str, SpecialNodeInfo] = {}
    for name, cfg in resolved_nodes.items():
        if cfg.get("kind") in BRIDGE_KINDS:
            special[name] = SpecialNodeInfo(type=str(cfg["kind"]), label=name, from_topology=True)

    props: dict[str, dict[str, Any]] = {}
    for link in links:
        norm = normalize_link(link, ctx)
        if norm is None:
            continue
        ids = []
        for ep in (norm.a, norm.b):
            info = determine_special_node(ep)
            if info is None:
                continue
            special_id, special_type, label = info
            special.setdefault(special_id, SpecialNodeInfo(type=special_type, label=label))
            ids.append(special_id)
        if norm.type != LinkType.VETH.value and isinstance(link, Mapping) and link.get("type"):
            link_props = special_link_props(link)
            for special_id in ids:
                props.setdefault(special_id, {}).update(link_props)
    return special, props


def build_cloud_nodes(
    special: Mapping[str, SpecialNodeInfo],
    props: Mapping[str, Mapping[str, Any]],
    annotations: TopologyAnnotations,
) -> list[NodeElement]:
    """One cloud node per special endpoint not already drawn as a topology node."""
    cloud_index = annotations.cloud_index()
    elements: list[NodeElement] = []
    for special_id, info in special.items():
        if info.from_topology:
            continue
        ann = cloud_index.get(special_id)
        position = Position()
        parent = None
        label = info.label
        if ann is not None:
            if ann.position is not None:
                position = ann.position.model_copy()
            parent = ann.parent_id
            if ann.label:
                label = ann.label
        extra: dict[str, Any] = {
            "id": special_id,
            "name": label,
            "kind": info.type,
            "type": info.type,
            "image": "",
            "group": "",
            "index": "999",
            "fqdn": "",
            "longname": "",
            "shortname": "",
        }
        extra.update(props.get(special_id, {}))
        elements.append(
            NodeElement(
                data=NodeData(
                    id=special_id,
                    name=label,
                    parent=parent,
                    topo_viewer_role=NodeRole.CLOUD.value,
                    lat="",
                    lng="",
                    extra_data=extra,
                ),
                position=position,
                classes="special-endpoint",
            )
        )
    return elements
