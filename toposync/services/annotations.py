"""Annotation sidecar storage and merge.

Visual metadata (positions, icons, group membership, bridge aliases) has no
place in the topology document. It lives in a JSON file next to it, named
``<topology file name>.annotations.json``, keyed by stable annotation id.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from toposync.config import settings
from toposync.errors import AnnotationsError
from toposync.schemas import (
    CloudNodeAnnotation,
    EdgeElement,
    GeoCoordinates,
    GroupElement,
    NodeAnnotation,
    NodeElement,
    Position,
    TopologyAnnotations,
)
from toposync.services.aliases import (
    alias_annotation_id,
    alias_base_set,
    collect_alias_interfaces,
    first_interface,
    follow_renames,
    is_bridge_alias_node,
    is_bridge_kind_node,
    yaml_ref,
)
from toposync.state import NodeRole
from toposync.utils.file_transaction import FileTransaction
from toposync.utils.link import is_special_endpoint

logger = logging.getLogger(__name__)

NON_ANNOTATED_ROLES = {
    NodeRole.GROUP.value,
    NodeRole.CLOUD.value,
    NodeRole.FREE_TEXT.value,
    NodeRole.FREE_SHAPE.value,
}


def annotations_path(yaml_path: Path | str) -> Path:
    yaml_path = Path(yaml_path)
    return yaml_path.with_name(f"{yaml_path.name}{settings.annotations_suffix}")


def serialize_annotations(annotations: TopologyAnnotations) -> str:
    return json.dumps(annotations.to_json_dict(), indent=settings.annotation_json_indent) + "\n"


class AnnotationStore:
    """Load and save the sidecar for one topology file."""

    def __init__(self, yaml_path: Path | str):
        self.yaml_path = Path(yaml_path)
        self.path = annotations_path(self.yaml_path)

    def load(self) -> TopologyAnnotations:
        """Read the sidecar; a missing file yields empty annotations.

        Raises:
            AnnotationsError: If the file is not valid annotation JSON
        """
        if not self.path.exists():
            return TopologyAnnotations()
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return TopologyAnnotations()
        try:
            raw = json.loads(text)
            annotations = TopologyAnnotations.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as e:
            raise AnnotationsError(f"Invalid annotations file {self.path}: {e}", path=str(self.path)) from e
        logger.debug(f"Loaded annotations from {self.path}")
        return annotations

    def stage(self, annotations: TopologyAnnotations, transaction: FileTransaction) -> bool:
        """Stage the sidecar change for a save.

        Unchanged content is not rewritten; empty annotations remove the file.

        Returns:
            True if a write or removal was staged
        """
        if annotations.is_empty():
            if self.path.exists():
                transaction.delete(self.path)
                return True
            return False

        content = serialize_annotations(annotations)
        if self.path.exists() and self.path.read_text(encoding="utf-8") == content:
            logger.debug(f"Annotations unchanged, skipping save for {self.path}")
            return False
        transaction.write(self.path, content)
        return True

    def save(self, annotations: TopologyAnnotations) -> bool:
        """Persist annotations on their own.

        Returns:
            True if the file was written or removed
        """
        transaction = FileTransaction()
        if not self.stage(annotations, transaction):
            return False
        transaction.commit()
        logger.info(f"Saved annotations to {self.path}")
        return True


# =============================================================================
# Merge from graph payload
# =============================================================================


def round_position(position: Position | None) -> Position:
    if position is None:
        return Position()
    # Half-up rounding, matching how the editor reports integral positions
    return Position(x=math.floor(position.x + 0.5), y=math.floor(position.y + 0.5))


def split_parent(parent: str | None) -> tuple[str | None, str | None]:
    if not parent:
        return None, None
    parts = parent.split(":")
    if len(parts) != 2:
        return None, None
    return parts[0], parts[1]


def parse_geo(lat: Any, lng: Any) -> GeoCoordinates | None:
    if lat in (None, "") or lng in (None, ""):
        return None
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if math.isnan(lat_f) or math.isnan(lng_f):
        return None
    return GeoCoordinates(lat=lat_f, lng=lng_f)


def is_annotated_node(node: NodeElement) -> bool:
    return node.data.topo_viewer_role not in NON_ANNOTATED_ROLES and not is_special_endpoint(node.data.id)


class AnnotationMerger:
    """Builds node and cloud annotations from one graph payload.

    Args:
        elements: Graph payload
        previous: Annotations loaded before the save
        node_keys: Graph node id -> document key, as resolved by the writer
        renames: Old -> new document key chain applied by the writer
    """

    def __init__(
        self,
        elements: list[NodeElement | GroupElement | EdgeElement],
        previous: TopologyAnnotations,
        node_keys: Mapping[str, str] | None = None,
        renames: Mapping[str, str] | None = None,
    ):
        self.nodes = [el for el in elements if isinstance(el, NodeElement)]
        self.edges = [el for el in elements if isinstance(el, EdgeElement)]
        self.previous = previous
        self.prev_by_id = previous.node_index()
        self.node_keys = dict(node_keys or {})
        self.renames = dict(renames or {})
        self.node_by_id = {node.data.id: node for node in self.nodes}
        self.alias_ifaces = collect_alias_interfaces(self.edges)
        self.alias_bases = alias_base_set(self.nodes)

    def document_key(self, node_id: str) -> str:
        return follow_renames(self.node_keys.get(node_id, node_id), self.renames)

    def stable_id(self, node_id: str) -> str:
        """Annotation id for a graph node: ``<yamlNodeId>:<iface>`` for aliases."""
        node = self.node_by_id.get(node_id)
        if node is None:
            return self.document_key(node_id)
        if is_bridge_alias_node(node):
            iface = first_interface(self.alias_ifaces.get(node_id))
            return alias_annotation_id(yaml_ref(node), iface) if iface else node_id
        return self.document_key(node_id)

    def _include(self, node: NodeElement) -> bool:
        if is_bridge_alias_node(node):
            return True
        # Bases with aliases are represented by their aliases
        if is_bridge_kind_node(node) and self.document_key(node.data.id) in self.alias_bases:
            return False
        return True

    def node_annotation(self, node: NodeElement) -> NodeAnnotation:
        data = node.data
        ann = NodeAnnotation(id=self.stable_id(data.id), icon=data.topo_viewer_role)

        color = data.icon_color.strip() if isinstance(data.icon_color, str) else ""
        if color:
            ann.icon_color = color
        radius = data.icon_corner_radius
        if isinstance(radius, (int, float)) and math.isfinite(radius) and radius > 0:
            ann.icon_corner_radius = radius

        label = (data.name or "").strip()
        if is_bridge_alias_node(node):
            ann.yaml_node_id = yaml_ref(node)
            iface = first_interface(self.alias_ifaces.get(data.id))
            if iface:
                ann.yaml_interface = iface
            if label and label != data.id:
                ann.label = label
        elif is_bridge_kind_node(node) and label and label != data.id:
            ann.label = label

        copy_from = str(data.extra_data.get("copyFrom") or "").strip()
        if copy_from:
            ann.copy_from = self.stable_id(copy_from)

        if data.geo_layout_active:
            prev = self.prev_by_id.get(ann.id)
            if prev is not None and prev.position is not None:
                ann.position = prev.position.model_copy()
        else:
            ann.position = round_position(node.position)

        ann.geo_coordinates = parse_geo(data.lat, data.lng)
        if data.group_label_pos:
            ann.group_label_pos = data.group_label_pos
        ann.group, ann.level = split_parent(data.parent)
        return ann

    def cloud_annotation(self, node: NodeElement) -> CloudNodeAnnotation:
        data = node.data
        group, level = split_parent(data.parent)
        return CloudNodeAnnotation(
            id=data.id,
            type=str(data.extra_data.get("kind") or "host"),
            label=data.name or data.id,
            position=Position(x=node.position.x or 0, y=node.position.y or 0),
            group=group,
            level=level,
        )

    def _edge_alias_annotation(self, node_id: str, iface: str) -> NodeAnnotation | None:
        node = self.node_by_id.get(node_id)
        iface = (iface or "").strip()
        if node is None or not iface or not is_bridge_kind_node(node):
            return None
        if is_bridge_alias_node(node):
            yaml_id = yaml_ref(node)
        else:
            yaml_id = self.document_key(node_id)
            if yaml_id not in self.alias_bases:
                return None
        ann_id = alias_annotation_id(yaml_id, iface)
        ann = NodeAnnotation(
            id=ann_id,
            icon=NodeRole.BRIDGE.value,
            yaml_node_id=yaml_id,
            yaml_interface=iface,
        )
        label = (node.data.name or "").strip()
        if label and label != node_id:
            ann.label = label
        prev = self.prev_by_id.get(ann_id)
        if prev is not None and prev.position is not None:
            ann.position = prev.position.model_copy()
        else:
            ann.position = round_position(node.position)
        return ann

    def edge_alias_annotations(self) -> list[NodeAnnotation]:
        """One alias annotation per aliased bridge interface seen on an edge."""
        found: dict[str, NodeAnnotation] = {}
        for edge in self.edges:
            data = edge.data
            for node_id, iface in ((data.source, data.source_endpoint), (data.target, data.target_endpoint)):
                ann = self._edge_alias_annotation(node_id, iface)
                if ann is not None:
                    found[ann.id] = ann
        return list(found.values())

    def merge(self) -> TopologyAnnotations:
        primary = [
            self.node_annotation(node)
            for node in self.nodes
            if is_annotated_node(node) and self._include(node)
        ]
        merged = merge_node_annotations(primary, self.edge_alias_annotations())
        clouds = [
            self.cloud_annotation(node)
            for node in self.nodes
            if node.data.topo_viewer_role == NodeRole.CLOUD.value
        ]
        result = self.previous.model_copy(deep=True)
        result.node_annotations = merged
        result.cloud_node_annotations = clouds
        return result


def merge_node_annotations(primary: list[NodeAnnotation], secondary: list[NodeAnnotation]) -> list[NodeAnnotation]:
    """Union by id; ``primary`` wins and ``secondary`` only fills gaps."""
    by_id: dict[str, NodeAnnotation] = {}
    for ann in primary:
        by_id[ann.id] = ann
    for ann in secondary:
        existing = by_id.get(ann.id)
        if existing is None:
            by_id[ann.id] = ann
            continue
        if existing.label is None and ann.label:
            existing.label = ann.label
        if existing.position is None and ann.position is not None:
            existing.position = ann.position
        if not existing.yaml_node_id and ann.yaml_node_id:
            existing.yaml_node_id = ann.yaml_node_id
        if not existing.yaml_interface and ann.yaml_interface:
            existing.yaml_interface = ann.yaml_interface
        if not existing.icon_color and ann.icon_color:
            existing.icon_color = ann.icon_color
        if existing.icon_corner_radius is None and ann.icon_corner_radius is not None:
            existing.icon_corner_radius = ann.icon_corner_radius
    return list(by_id.values())


def merge_from_payload(
    elements: list[NodeElement | GroupElement | EdgeElement],
    previous: TopologyAnnotations,
    node_keys: Mapping[str, str] | None = None,
    renames: Mapping[str, str] | None = None,
) -> TopologyAnnotations:
    """Recompute node and cloud annotations from a saved graph.

    Free-text, free-shape and group-style annotations, viewer settings and
    unknown top-level keys are carried over from ``previous`` unchanged.
    """
    return AnnotationMerger(elements, previous, node_keys, renames).merge()
