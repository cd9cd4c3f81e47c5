"""Graph edge construction, link state classes and link validation."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from toposync.schemas import EdgeData, EdgeElement, InterfaceInfo
from toposync.services.node_builder import NodeBuildContext, find_container
from toposync.state import BRIDGE_KINDS, HOSTY_TYPES, SINGLE_ENDPOINT_TYPES, VXLAN_TYPES, LinkType
from toposync.utils.link import (
    NormalizedLink,
    endpoint_mac,
    is_special_endpoint,
    resolve_actual_node,
    should_omit_endpoint,
)
from toposync.utils.naming import endpoint_container_name
from toposync.utils.sros import find_distributed_interface, is_distributed_sros

logger = logging.getLogger(__name__)

CLASS_LINK_UP = "link-up"
CLASS_LINK_DOWN = "link-down"
CLASS_STUB_LINK = "stub-link"


def is_special_node(name: str, resolved_nodes: Mapping[str, Mapping[str, Any]]) -> bool:
    """Bridges and synthetic attachment points have no interface state of their own."""
    cfg = resolved_nodes.get(name)
    if cfg is not None and cfg.get("kind") in BRIDGE_KINDS:
        return True
    return is_special_endpoint(name)


def class_from_state(state: str | None) -> str:
    if not state:
        return ""
    return CLASS_LINK_UP if state == "up" else CLASS_LINK_DOWN


def compute_edge_class(
    source_special: bool,
    target_special: bool,
    source_state: str | None,
    target_state: str | None,
) -> str:
    """Up/down class for an edge.

    A special side mirrors the other side's state; two regular sides must
    both report ``up``. Missing state yields no class.
    """
    if source_special and not target_special:
        return class_from_state(target_state)
    if target_special and not source_special:
        return class_from_state(source_state)
    if source_special and target_special:
        return CLASS_LINK_UP
    if source_state and target_state:
        return CLASS_LINK_UP if source_state == "up" and target_state == "up" else CLASS_LINK_DOWN
    return ""


def _is_endpoint_map(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value.get("node")) and value.get("interface") is not None


def validate_extended_link(link: Mapping[str, Any]) -> list[str]:
    """Required-field check for links written in extended form.

    Returns:
        Error codes; empty for valid or brief-form links
    """
    link_type = link.get("type") if isinstance(link.get("type"), str) else ""
    if not link_type:
        return []

    if link_type == LinkType.VETH.value:
        endpoints = link.get("endpoints")
        endpoints = endpoints if isinstance(endpoints, list) else []
        ok = len(endpoints) >= 2 and _is_endpoint_map(endpoints[0]) and _is_endpoint_map(endpoints[1])
        return [] if ok else ["invalid-veth-endpoints"]

    if link_type not in SINGLE_ENDPOINT_TYPES:
        return []

    errors: list[str] = []
    if not _is_endpoint_map(link.get("endpoint")):
        errors.append("invalid-endpoint")
    if link_type in HOSTY_TYPES and not link.get("host-interface"):
        errors.append("missing-host-interface")
    if link_type in VXLAN_TYPES:
        if not link.get("remote"):
            errors.append("missing-remote")
        if link.get("vni") in (None, ""):
            errors.append("missing-vni")
        if link.get("udp-port") in (None, ""):
            errors.append("missing-udp-port")
    return errors


def _ext_link_props(link: Mapping[str, Any], norm: NormalizedLink) -> dict[str, Any]:
    props: dict[str, Any] = {
        "extType": link.get("type") or "",
        "extMtu": link.get("mtu", ""),
        "extHostInterface": link.get("host-interface", ""),
        "extMode": link.get("mode", ""),
        "extRemote": link.get("remote", ""),
        "extVni": link.get("vni", ""),
        "extUdpPort": link.get("udp-port", ""),
        "extSourceMac": endpoint_mac(norm.raw_a),
        "extTargetMac": endpoint_mac(norm.raw_b),
        "extMac": endpoint_mac(link.get("endpoint")),
    }
    if link.get("vars") is not None:
        props["extVars"] = link["vars"]
    if link.get("labels") is not None:
        props["extLabels"] = link["labels"]
    return props


def _interface_fields(side: str, long_name: str, port: str, iface: InterfaceInfo | None) -> dict[str, Any]:
    return {
        f"clab{side}LongName": long_name,
        f"clab{side}Port": port,
        f"clab{side}MacAddress": iface.mac if iface else "",
        f"clab{side}InterfaceState": iface.state if iface else "",
        f"clab{side}Mtu": iface.mtu if iface else "",
        f"clab{side}Type": iface.type if iface else "",
    }


def _lookup_interface(
    ctx: NodeBuildContext, long_name: str, node: str, iface: str, resolved: Mapping[str, Any] | None
) -> tuple[str, InterfaceInfo | None]:
    """Container long name and runtime interface for one side of a link."""
    if not ctx.include_runtime:
        return long_name, None
    container = find_container(ctx.inventory, ctx.lab_name, long_name)
    found = container.interface(iface) if container else None
    if found is None and is_distributed_sros(resolved):
        match = find_distributed_interface(
            ctx.inventory, ctx.lab_name, node, iface, ctx.full_prefix, resolved["components"]
        )
        if match is not None:
            return match
    return long_name, found


def build_edge_element(
    index: int,
    link: Mapping[str, Any],
    norm: NormalizedLink,
    resolved_nodes: Mapping[str, Mapping[str, Any]],
    ctx: NodeBuildContext,
) -> EdgeElement:
    """Build the graph edge for one normalized link.

    Args:
        index: Sequence number of the edge within this compile (``Link<N>``)
        link: The document link as written
        norm: Two-endpoint form of the link
        resolved_nodes: Node name -> resolved configuration
        ctx: Shared compile values

    Returns:
        EdgeElement carrying link metadata in extra data
    """
    source_node, source_iface = norm.a.node, norm.a.iface
    target_node, target_iface = norm.b.node, norm.b.iface
    source = resolve_actual_node(source_node, source_iface)
    target = resolve_actual_node(target_node, target_iface)

    source_long = endpoint_container_name(source_node, source_iface, ctx.full_prefix)
    target_long = endpoint_container_name(target_node, target_iface, ctx.full_prefix)
    source_long, source_if = _lookup_interface(
        ctx, source_long, source_node, source_iface, resolved_nodes.get(source_node)
    )
    target_long, target_if = _lookup_interface(
        ctx, target_long, target_node, target_iface, resolved_nodes.get(target_node)
    )

    source_special = is_special_node(source_node, resolved_nodes)
    target_special = is_special_node(target_node, resolved_nodes)
    edge_class = ""
    if ctx.include_runtime:
        edge_class = compute_edge_class(
            source_special,
            target_special,
            source_if.state if source_if else None,
            target_if.state if target_if else None,
        )
    classes = [edge_class] if edge_class else []
    if source_special or target_special:
        classes.append(CLASS_STUB_LINK)

    extra: dict[str, Any] = {}
    extra.update(_interface_fields("Source", source_long, source_iface, source_if))
    extra.update(_interface_fields("Target", target_long, target_iface, target_if))
    extra.update(_ext_link_props(link, norm))
    extra["yamlFormat"] = "extended" if link.get("type") else "short"
    validation_errors = validate_extended_link(link)
    if validation_errors:
        logger.warning(
            f"Link {source}:{source_iface} <-> {target}:{target_iface} "
            f"failed validation: {', '.join(validation_errors)}"
        )
        extra["extValidationErrors"] = validation_errors
    extra["yamlSourceNodeId"] = source_node
    extra["yamlTargetNodeId"] = target_node

    edge_id = f"Link{index}"
    return EdgeElement(
        data=EdgeData(
            id=edge_id,
            name=edge_id,
            source=source,
            target=target,
            source_endpoint="" if should_omit_endpoint(source_node) else source_iface,
            target_endpoint="" if should_omit_endpoint(target_node) else target_iface,
            extra_data=extra,
        ),
        classes=" ".join(classes),
    )
