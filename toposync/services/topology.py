"""Topology -> graph compiler.

Turns a parsed topology document, the annotation sidecar and optional runtime
inventory into the element set the editor renders.

Key responsibilities:
- Nodes: inherited configuration, container naming, role and group parent
- Groups: one container element per distinct ``<group>:<level>``
- Special endpoints: one cloud node per host/mgmt-net/macvlan/vxlan/dummy attachment
- Edges: ``Link<N>`` ids in link order, state classes, extended-link validation
- Bridge aliases: per-interface bridge visuals and edge rewiring

Compilation is a pure function of its inputs; dummy endpoint ids are
allocated per call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from toposync.schemas import (
    EdgeElement,
    GroupElement,
    Inventory,
    NodeElement,
    TopologyAnnotations,
)
from toposync.services.aliases import (
    build_alias_elements,
    collect_alias_entries,
    hide_aliased_bases,
    rewire_edges,
)
from toposync.services.edge_builder import build_edge_element
from toposync.services.node_builder import (
    NodeBuildContext,
    build_group_elements,
    build_node_element,
    is_aliased_away,
)
from toposync.services.special_nodes import build_cloud_nodes, collect_special_nodes
from toposync.utils.inheritance import resolve_node_config
from toposync.utils.link import DummyContext, normalize_link
from toposync.utils.naming import compute_full_prefix

logger = logging.getLogger(__name__)


@dataclass
class CompiledTopology:
    """Result of compiling one document snapshot."""

    nodes: list[NodeElement] = field(default_factory=list)
    groups: list[GroupElement] = field(default_factory=list)
    edges: list[EdgeElement] = field(default_factory=list)
    preset_layout: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def elements(self) -> list[NodeElement | GroupElement | EdgeElement]:
        # Parents before children, nodes before the edges that reference them
        return [*self.groups, *self.nodes, *self.edges]


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def resolve_all_nodes(topology: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Node name -> resolved configuration for every node in the document."""
    nodes = _mapping(topology.get("nodes"))
    return {
        str(name): resolve_node_config(topology, _mapping(node))
        for name, node in nodes.items()
    }


def is_preset_layout(nodes: Mapping[str, Any], annotations: TopologyAnnotations) -> bool:
    """True when every topology node has a saved position."""
    if not nodes:
        return False
    index = annotations.node_index()
    return all(index.get(name) is not None and index[name].position is not None for name in nodes)


def compile_topology(
    document: Mapping[str, Any],
    annotations: TopologyAnnotations | None = None,
    inventory: Inventory | None = None,
) -> CompiledTopology:
    """Compile a topology document into graph elements.

    Args:
        document: Plain parsed document (``name``, ``prefix``, ``topology``)
        annotations: Sidecar annotations; positions default to (0, 0) without them
        inventory: Runtime containers per lab; None in editor-only mode

    Returns:
        CompiledTopology
    """
    annotations = annotations or TopologyAnnotations()
    topology = _mapping(document.get("topology"))
    doc_nodes = _mapping(topology.get("nodes"))
    links = topology.get("links") if isinstance(topology.get("links"), list) else []

    ctx = NodeBuildContext(
        lab_name=str(document.get("name") or ""),
        full_prefix=compute_full_prefix(document),
        inventory=inventory,
    )
    result = CompiledTopology()
    ann_index = annotations.node_index()
    resolved = resolve_all_nodes(topology)

    # 1. Topology nodes
    index = 0
    for name, node in doc_nodes.items():
        name = str(name)
        ann = ann_index.get(name)
        if is_aliased_away(name, ann, resolved[name]):
            continue
        result.nodes.append(build_node_element(name, _mapping(node), resolved[name], ann, index, ctx))
        index += 1

    # 2. Group containers derived from node membership
    result.groups = build_group_elements(result.nodes)

    # 3. Special endpoints, sharing the dummy allocator with the edge pass
    dummies = DummyContext()
    special, special_props = collect_special_nodes(resolved, links, dummies)
    result.nodes.extend(build_cloud_nodes(special, special_props, annotations))

    # 4-5. Edges with state classes and validation warnings
    edge_index = 0
    for position, link in enumerate(links):
        norm = normalize_link(link, dummies)
        if norm is None:
            message = f"Link #{position} does not have both endpoints; skipping"
            logger.warning(message)
            result.warnings.append(message)
            continue
        edge = build_edge_element(edge_index, _mapping(link), norm, resolved, ctx)
        errors = edge.data.extra_data.get("extValidationErrors")
        if errors:
            result.warnings.append(f"{edge.data.id}: {', '.join(errors)}")
        result.edges.append(edge)
        edge_index += 1

    # Bridge aliases
    entries = collect_alias_entries(annotations, resolved)
    if entries:
        result.nodes.extend(build_alias_elements(entries, annotations, resolved))
        rewire_edges(result.edges, entries)
        hide_aliased_bases(result.nodes, result.edges, entries)

    result.preset_layout = is_preset_layout(doc_nodes, annotations)
    logger.debug(
        f"Compiled {len(result.nodes)} nodes, {len(result.groups)} groups, "
        f"{len(result.edges)} edges for lab {ctx.lab_name!r}"
    )
    return result
