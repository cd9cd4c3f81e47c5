"""Graph -> topology writer.

Applies an edited graph payload onto the live round-trip document with the
smallest possible change set:

- Bridge renames requested through alias visuals are applied first; the
  resulting old -> new chain is used by every later step
- Node fields are written only where they differ from the inherited value
- Nodes created in the editor get a minimal entry; nodes gone from the
  payload are removed
- Links are matched by canonical key; a matched link is rewritten only when
  the new form differs, so untouched links keep their original formatting
- The document is written only when it differs structurally from disk
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.scalarstring import DoubleQuotedScalarString

from toposync.config import settings
from toposync.errors import DocumentNotLoadedError
from toposync.schemas import EdgeElement, GroupElement, NodeElement
from toposync.services.aliases import (
    build_id_override,
    detect_alias_renames,
    follow_renames,
    is_bridge_alias_node,
    node_yaml_key,
)
from toposync.services.document import TopologyDocument, canonical_form, to_plain, write_document
from toposync.services.topology import resolve_all_nodes
from toposync.state import BRIDGE_KINDS, HOSTY_TYPES, VXLAN_TYPES, LinkType, NodeRole
from toposync.utils.inheritance import resolve_node_config
from toposync.utils.link import (
    CanonicalLinkKey,
    Endpoint,
    canonical_from_link,
    canonical_from_pair,
    is_special_endpoint,
    parse_special_id,
    special_link_type,
)

logger = logging.getLogger(__name__)

# Optional container properties compared against their inherited value
EXTRA_PROPS = (
    "startup-config",
    "enforce-startup-config",
    "suppress-startup-config",
    "license",
    "binds",
    "env",
    "env-files",
    "labels",
    "user",
    "entrypoint",
    "cmd",
    "exec",
    "restart-policy",
    "auto-remove",
    "startup-delay",
    "mgmt-ipv4",
    "mgmt-ipv6",
    "network-mode",
    "ports",
    "dns",
    "aliases",
    "memory",
    "cpu",
    "cpu-set",
    "shm-size",
    "cap-add",
    "sysctls",
    "devices",
    "certificate",
    "healthcheck",
    "image-pull-policy",
    "runtime",
    "components",
    "stages",
)

NON_WRITABLE_ROLES = {
    NodeRole.GROUP.value,
    NodeRole.FREE_TEXT.value,
    NodeRole.FREE_SHAPE.value,
    NodeRole.CLOUD.value,
}

EXTENDED_SCALAR_PROPS = (
    "extMtu",
    "extSourceMac",
    "extTargetMac",
    "extMac",
    "extHostInterface",
    "extRemote",
    "extVni",
    "extUdpPort",
    "extMode",
)

# Types that cannot be expressed as a brief endpoints pair
ALWAYS_EXTENDED_TYPES = {LinkType.DUMMY.value, *VXLAN_TYPES}

SINGLE_FIELD_KEYS = ("host-interface", "mode", "remote", "vni", "udp-port")
BRIEF_REMOVE_KEYS = (*SINGLE_FIELD_KEYS, "mtu", "vars", "labels")
VETH_REMOVE_KEYS = SINGLE_FIELD_KEYS

LINK_TYPE_VALUES = {t.value for t in LinkType}


@dataclass
class WriteOutcome:
    """What a writer pass changed."""

    document_written: bool = False
    renamed_nodes: dict[str, str] = field(default_factory=dict)
    skipped_links: list[str] = field(default_factory=list)
    synthesized_nodes: list[str] = field(default_factory=list)
    removed_nodes: list[str] = field(default_factory=list)
    node_keys: dict[str, str] = field(default_factory=dict)  # graph node id -> document key


# =============================================================================
# Value helpers
# =============================================================================


def is_present(value: Any) -> bool:
    """Values worth persisting; None, "" and empty containers are not."""
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) > 0
    return True


def deep_equal(left: Any, right: Any) -> bool:
    return canonical_form(to_plain(left)) == canonical_form(to_plain(right))


def coerce_number(value: Any) -> Any:
    """Digit-only strings from the editor become integers."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def to_yaml_value(value: Any) -> Any:
    """Convert builtin containers to block-style round-trip containers."""
    if isinstance(value, Mapping):
        cmap = CommentedMap()
        for key, item in value.items():
            cmap[key] = to_yaml_value(item)
        cmap.fa.set_block_style()
        return cmap
    if isinstance(value, (list, tuple)):
        seq = CommentedSeq(to_yaml_value(item) for item in value)
        seq.fa.set_block_style()
        return seq
    return value


def delete_keys(cmap: CommentedMap, keys: Iterable[str]) -> None:
    for key in keys:
        if key in cmap:
            del cmap[key]


def set_or_delete(cmap: CommentedMap, key: str, value: Any) -> None:
    """Write ``value`` under ``key``, or drop the key when the value is empty."""
    if not is_present(value):
        delete_keys(cmap, (key,))
        return
    current = cmap.get(key)
    if current is not None and deep_equal(current, value):
        return
    cmap[key] = to_yaml_value(value)


def rename_key(cmap: CommentedMap, old: str, new: str) -> None:
    """Rename a mapping key in place, keeping its position."""
    if old == new or old not in cmap:
        return
    if new in cmap:
        logger.warning(f"Node {new} already exists; replacing it with renamed node {old}")
        del cmap[new]
    position = list(cmap.keys()).index(old)
    value = cmap[old]
    del cmap[old]
    cmap.insert(position, new, value)


def label_overrides(labels: Any, inherited: Any) -> dict[str, Any]:
    """Labels that differ from the inherited label map."""
    if not isinstance(labels, Mapping):
        return {}
    inherited = inherited if isinstance(inherited, Mapping) else {}
    return {
        key: value
        for key, value in labels.items()
        if key not in inherited or not deep_equal(inherited[key], value)
    }


def is_writable_node(element: Any) -> bool:
    """Graph nodes that map onto a document node entry."""
    if not isinstance(element, NodeElement):
        return False
    data = element.data
    if data.topo_viewer_role in NON_WRITABLE_ROLES:
        return False
    if is_special_endpoint(data.id):
        return False
    return not is_bridge_alias_node(element)


def synthesize_node(extra: Mapping[str, Any]) -> CommentedMap:
    """Minimal document entry for a node created in the editor."""
    node_map = CommentedMap()
    kind = extra.get("kind")
    node_map["kind"] = kind.strip() if isinstance(kind, str) and kind.strip() else settings.default_node_kind
    for key in ("type", "image", "mgmt-ipv4"):
        value = extra.get(key)
        if isinstance(value, str) and value.strip():
            node_map[key] = value.strip()
    node_map.fa.set_block_style()
    return node_map


# =============================================================================
# Link form selection
# =============================================================================


def has_extended_properties(extra: Mapping[str, Any]) -> bool:
    if any(is_present(extra.get(key)) for key in EXTENDED_SCALAR_PROPS):
        return True
    return any(
        isinstance(extra.get(key), Mapping) and len(extra[key]) > 0
        for key in ("extVars", "extLabels")
    )


def choose_link_type(key: CanonicalLinkKey, extra: Mapping[str, Any]) -> str:
    ext_type = extra.get("extType")
    if isinstance(ext_type, str) and ext_type in LINK_TYPE_VALUES:
        return ext_type
    return key.type


def wants_extended(link_type: str, extra: Mapping[str, Any]) -> bool:
    """Extended form for extended fields, for types with no brief form, and
    for links that were already written extended."""
    if has_extended_properties(extra) or link_type in ALWAYS_EXTENDED_TYPES:
        return True
    return bool(extra.get("extType")) and extra.get("yamlFormat") == "extended"


def _same_value(current: Any, desired: Any) -> bool:
    if not is_present(current) and not is_present(desired):
        return True
    return is_present(current) and is_present(desired) and deep_equal(current, desired)


def keeps_brief_form(link: Mapping[str, Any], link_type: str, extra: Mapping[str, Any]) -> bool:
    """True for an existing brief veth link whose only extended fields are
    unchanged ``mtu``, ``vars`` or ``labels`` keys.

    Brief links may carry these common keys; editing one of them, or adding
    any other extended field, still switches the link to extended form.
    """
    if link.get("type") or link_type != LinkType.VETH.value:
        return False
    endpoints = link.get("endpoints")
    if not isinstance(endpoints, list) or not all(isinstance(ep, str) for ep in endpoints):
        return False
    if any(is_present(extra.get(key)) for key in EXTENDED_SCALAR_PROPS if key != "extMtu"):
        return False
    return (
        _same_value(link.get("mtu"), coerce_number(extra.get("extMtu")))
        and _same_value(link.get("vars"), extra.get("extVars"))
        and _same_value(link.get("labels"), extra.get("extLabels"))
    )


def set_link_type(link: CommentedMap, link_type: str) -> None:
    """Set ``type``, placing it first when the link did not have one."""
    if "type" not in link:
        link.insert(0, "type", link_type)
    elif link["type"] != link_type:
        link["type"] = link_type


def endpoint_map(ep: Endpoint, mac: Any = None) -> CommentedMap:
    cmap = CommentedMap()
    cmap["node"] = ep.node
    cmap["interface"] = ep.iface
    if is_present(mac):
        cmap["mac"] = mac
    cmap.fa.set_block_style()
    return cmap


def is_special_side(ep: Endpoint) -> bool:
    return special_link_type(ep.node) is not None


def single_link_fields(link_type: str, special: Endpoint, extra: Mapping[str, Any]) -> dict[str, Any]:
    """Kind-specific fields for a single-endpoint link.

    Editor-supplied ``ext*`` values win; otherwise they are recovered from
    the special endpoint id.
    """
    derived = parse_special_id(special.node)
    fields: dict[str, Any] = {}
    if link_type in HOSTY_TYPES:
        fields["host-interface"] = extra.get("extHostInterface") or derived.get("host-interface", "")
    if link_type == LinkType.MACVLAN.value:
        fields["mode"] = extra.get("extMode") or ""
    if link_type in VXLAN_TYPES:
        fields["remote"] = extra.get("extRemote") or derived.get("remote", "")
        vni = extra.get("extVni")
        port = extra.get("extUdpPort")
        fields["vni"] = coerce_number(vni if is_present(vni) else derived.get("vni", ""))
        fields["udp-port"] = coerce_number(port if is_present(port) else derived.get("udp-port", ""))
    return fields


def missing_link_fields(link_type: str, fields: Mapping[str, Any]) -> list[str]:
    missing: list[str] = []
    if link_type in HOSTY_TYPES and not is_present(fields.get("host-interface")):
        missing.append("host-interface")
    if link_type in VXLAN_TYPES:
        missing.extend(key for key in ("remote", "vni", "udp-port") if not is_present(fields.get(key)))
    return missing


# =============================================================================
# Writer
# =============================================================================


class TopologyWriter:
    """Applies one graph payload onto a parsed document.

    A writer is single-use: construct it for one save, call :meth:`apply`,
    then read the outcome.
    """

    def __init__(self, doc: TopologyDocument):
        self.doc = doc
        snapshot = doc.snapshot()
        topology = snapshot.get("topology")
        self.topology: dict[str, Any] = topology if isinstance(topology, dict) else {}
        nodes = self.topology.get("nodes")
        self.document_keys: set[str] = set(nodes) if isinstance(nodes, dict) else set()
        self.bridge_keys: set[str] = {
            name for name, cfg in resolve_all_nodes(self.topology).items() if cfg.get("kind") in BRIDGE_KINDS
        }
        self.renames: dict[str, str] = {}
        self.id_override: dict[str, str] = {}
        self.outcome = WriteOutcome()

    def apply(self, elements: list[NodeElement | GroupElement | EdgeElement]) -> WriteOutcome:
        nodes = [el for el in elements if isinstance(el, NodeElement)]
        edges = [el for el in elements if isinstance(el, EdgeElement)]

        self._apply_alias_renames(nodes)
        self.id_override = build_id_override(nodes)
        self._write_nodes(nodes)
        self._write_links(edges)

        self.outcome.renamed_nodes = dict(self.renames)
        return self.outcome

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _apply_alias_renames(self, nodes: list[NodeElement]) -> None:
        renames = detect_alias_renames(nodes, self.document_keys, self.bridge_keys)
        if not renames:
            return
        nodes_map = self.doc.ensure_nodes()
        for old, new in renames.items():
            rename_key(nodes_map, old, new)
            self.renames[old] = new
            logger.info(f"Renamed bridge node {old} -> {new} from alias reference")

    def _write_nodes(self, nodes: list[NodeElement]) -> None:
        writable = [node for node in nodes if is_writable_node(node)]
        if not writable and not self.document_keys:
            return
        nodes_map = self.doc.ensure_nodes()
        # Bridges drawn only through aliases are absent from the payload
        keep: set[str] = set(self.id_override.values())

        for node in writable:
            extra = node.data.extra_data
            current = follow_renames(node.data.id, self.renames)
            desired = follow_renames(node_yaml_key(node), self.renames)
            if current not in nodes_map and desired in nodes_map:
                current = desired
            keep.add(desired)
            self.outcome.node_keys[node.data.id] = desired

            if current not in nodes_map:
                nodes_map[desired] = synthesize_node(extra)
                self.outcome.synthesized_nodes.append(desired)
                continue

            self._update_node(nodes_map, current, extra)
            if current != desired:
                rename_key(nodes_map, current, desired)
                self.renames[current] = desired
                logger.info(f"Renamed node {current} -> {desired}")

        for key in list(nodes_map.keys()):
            if str(key) not in keep:
                del nodes_map[key]
                self.outcome.removed_nodes.append(str(key))

        if self.outcome.synthesized_nodes:
            logger.warning(
                f"Synthesized {len(self.outcome.synthesized_nodes)} missing node entries: "
                f"{', '.join(self.outcome.synthesized_nodes)}"
            )
        if self.outcome.removed_nodes:
            logger.info(f"Removed nodes no longer in the graph: {', '.join(self.outcome.removed_nodes)}")

    def _update_node(self, nodes_map: CommentedMap, key: str, extra: Mapping[str, Any]) -> None:
        node_map = nodes_map[key]
        if not isinstance(node_map, CommentedMap):
            node_map = CommentedMap()
            node_map.fa.set_block_style()
            nodes_map[key] = node_map

        group = extra.get("group") if extra.get("group") is not None else node_map.get("group")
        kind = extra.get("kind") if extra.get("kind") is not None else node_map.get("kind")
        image = extra.get("image") if extra.get("image") is not None else node_map.get("image")

        base = {"group": group} if group else {}
        base_inherit = resolve_node_config(self.topology, base)
        inherit = resolve_node_config(self.topology, {**base, "kind": kind} if kind else base)

        self._set_scalar(node_map, "group", group)
        self._set_scalar(node_map, "kind", kind, base_inherit.get("kind"))
        self._set_scalar(node_map, "image", image, inherit.get("image"))
        self._apply_type(node_map, extra.get("type"), inherit.get("type"))
        for prop in EXTRA_PROPS:
            # Absent means not provided; only an explicit empty value clears it
            if prop not in extra:
                continue
            self._apply_extra_prop(node_map, prop, extra[prop], inherit.get(prop))

    @staticmethod
    def _set_scalar(node_map: CommentedMap, key: str, value: Any, inherited: Any = None) -> None:
        if value and value != inherited:
            if node_map.get(key) != value:
                node_map[key] = value
        elif key in node_map:
            del node_map[key]

    @staticmethod
    def _apply_type(node_map: CommentedMap, desired: Any, inherited: Any) -> None:
        current = node_map.get("type")
        if isinstance(desired, str):
            desired = desired.strip()
            if not desired or (inherited is not None and desired == inherited):
                delete_keys(node_map, ("type",))
            elif current != desired:
                node_map["type"] = desired
            return
        if not current or (inherited is not None and current == inherited):
            delete_keys(node_map, ("type",))

    @staticmethod
    def _apply_extra_prop(node_map: CommentedMap, prop: str, value: Any, inherited: Any) -> None:
        if prop == "labels" and value is not None:
            value = label_overrides(value, inherited)
            inherited = None
        if value is None or not is_present(value) or (inherited is not None and deep_equal(value, inherited)):
            delete_keys(node_map, (prop,))
            return
        current = node_map.get(prop)
        if current is not None and deep_equal(current, value):
            return
        node_map[prop] = to_yaml_value(value)

    # -------------------------------------------------------------------------
    # Links
    # -------------------------------------------------------------------------

    def _renamed(self, node: str) -> str:
        return follow_renames(node, self.renames)

    def _rewrite_endpoint_value(self, value: Any) -> Any:
        """Endpoint with renamed node references replaced, or None if unchanged."""
        if isinstance(value, Mapping):
            node = str(value.get("node") or "")
            target = self._renamed(node)
            if target != node:
                value["node"] = target
            return None
        text = str(value or "")
        node, sep, rest = text.partition(":")
        target = self._renamed(node)
        if target == node:
            return None
        return DoubleQuotedScalarString(f"{target}{sep}{rest}")

    def _rewrite_renamed_endpoints(self, links: CommentedSeq) -> None:
        if not self.renames:
            return
        for link in links:
            if not isinstance(link, CommentedMap):
                continue
            endpoints = link.get("endpoints")
            if isinstance(endpoints, list):
                for position, item in enumerate(endpoints):
                    replacement = self._rewrite_endpoint_value(item)
                    if replacement is not None:
                        endpoints[position] = replacement
            endpoint = link.get("endpoint")
            if isinstance(endpoint, Mapping):
                self._rewrite_endpoint_value(endpoint)

    def _edge_endpoints(self, edge: EdgeElement) -> tuple[Endpoint, Endpoint]:
        data = edge.data
        source = self._renamed(self.id_override.get(data.source, data.source))
        target = self._renamed(self.id_override.get(data.target, data.target))
        return Endpoint(source, data.source_endpoint or ""), Endpoint(target, data.target_endpoint or "")

    @staticmethod
    def _find_link(links: CommentedSeq, key: str) -> int | None:
        for position, link in enumerate(links):
            link_key = canonical_from_link(link)
            if link_key is not None and str(link_key) == key:
                return position
        return None

    def _write_links(self, edges: list[EdgeElement]) -> None:
        existing = self.doc.topology.get("links")
        if not edges and not existing:
            return
        links = self.doc.ensure_links()
        self._rewrite_renamed_endpoints(links)

        payload_keys: set[str] = set()
        for edge in edges:
            a, b = self._edge_endpoints(edge)
            if not a.node or not b.node:
                continue
            key = canonical_from_pair(a, b)
            key_str = str(key)
            payload_keys.add(key_str)
            extra = edge.data.extra_data
            link_type = choose_link_type(key, extra)

            position = self._find_link(links, key_str)
            if position is None:
                new_link = CommentedMap()
                new_link.fa.set_block_style()
                if self._render_link(new_link, a, b, link_type, extra, key_str):
                    links.append(new_link)
                continue

            current = links[position]
            updated = copy.deepcopy(current)
            if not self._render_link(updated, a, b, link_type, extra, key_str):
                continue
            # Leave identical links untouched so their formatting survives
            if to_plain(updated) != to_plain(current):
                links[position] = updated

        for position in reversed(range(len(links))):
            link_key = canonical_from_link(links[position])
            if link_key is not None and str(link_key) not in payload_keys:
                logger.debug(f"Removing link {link_key} no longer in the graph")
                del links[position]

    def _render_link(
        self,
        link: CommentedMap,
        a: Endpoint,
        b: Endpoint,
        link_type: str,
        extra: Mapping[str, Any],
        key: str,
    ) -> bool:
        """Write one edge into a link mapping in brief or extended form.

        Returns:
            False when the link was refused for missing required fields
        """
        if keeps_brief_form(link, link_type, extra):
            self._apply_brief(link, a, b, keep_common=True)
            return True
        if not wants_extended(link_type, extra):
            self._apply_brief(link, a, b)
            return True

        if link_type == LinkType.VETH.value:
            set_link_type(link, link_type)
            self._apply_extended_veth(link, a, b, extra)
        else:
            if is_special_side(a) and not is_special_side(b):
                container, special, selected_mac = b, a, extra.get("extTargetMac")
            else:
                container, special, selected_mac = a, b, extra.get("extSourceMac")
            fields = single_link_fields(link_type, special, extra)
            missing = missing_link_fields(link_type, fields)
            if missing:
                logger.warning(
                    f"Skipping write for link {key}: type {link_type} is missing {', '.join(missing)}"
                )
                self.outcome.skipped_links.append(key)
                return False
            set_link_type(link, link_type)
            self._apply_extended_single(link, container, extra.get("extMac") or selected_mac, fields)

        set_or_delete(link, "mtu", coerce_number(extra.get("extMtu")))
        set_or_delete(link, "vars", extra.get("extVars"))
        set_or_delete(link, "labels", extra.get("extLabels"))
        return True

    @staticmethod
    def _apply_brief(link: CommentedMap, a: Endpoint, b: Endpoint, keep_common: bool = False) -> None:
        delete_keys(link, ("type",))
        endpoints = CommentedSeq([DoubleQuotedScalarString(str(a)), DoubleQuotedScalarString(str(b))])
        endpoints.fa.set_flow_style()
        link["endpoints"] = endpoints
        delete_keys(link, ("endpoint", *(SINGLE_FIELD_KEYS if keep_common else BRIEF_REMOVE_KEYS)))

    @staticmethod
    def _apply_extended_veth(link: CommentedMap, a: Endpoint, b: Endpoint, extra: Mapping[str, Any]) -> None:
        endpoints = CommentedSeq(
            [endpoint_map(a, extra.get("extSourceMac")), endpoint_map(b, extra.get("extTargetMac"))]
        )
        endpoints.fa.set_block_style()
        link["endpoints"] = endpoints
        delete_keys(link, ("endpoint", *VETH_REMOVE_KEYS))

    @staticmethod
    def _apply_extended_single(
        link: CommentedMap,
        container: Endpoint,
        mac: Any,
        fields: Mapping[str, Any],
    ) -> None:
        link["endpoint"] = endpoint_map(container, mac)
        delete_keys(link, ("endpoints",))
        for key in SINGLE_FIELD_KEYS:
            if key in fields:
                set_or_delete(link, key, fields[key])
            else:
                delete_keys(link, (key,))


def apply_graph(
    doc: TopologyDocument | None,
    elements: list[NodeElement | GroupElement | EdgeElement],
) -> WriteOutcome:
    """Mutate the document to match a graph payload without writing it.

    Raises:
        DocumentNotLoadedError: If no document has been parsed
    """
    if doc is None:
        raise DocumentNotLoadedError("No parsed topology document is loaded")
    return TopologyWriter(doc).apply(elements)


def save_graph(
    doc: TopologyDocument | None,
    elements: list[NodeElement | GroupElement | EdgeElement],
) -> WriteOutcome:
    """Apply a graph payload and write the document if it changed."""
    outcome = apply_graph(doc, elements)
    outcome.document_written = write_document(doc)
    return outcome
