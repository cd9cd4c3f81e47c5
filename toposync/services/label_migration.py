"""One-time migration of legacy inline visual labels into annotations.

Older topologies stored editor positions and grouping as ``graph-*`` node
labels. When a node has no annotation yet, those labels seed one.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from toposync.schemas import GeoCoordinates, NodeAnnotation, Position, TopologyAnnotations

logger = logging.getLogger(__name__)

LABEL_POS_X = "graph-posX"
LABEL_POS_Y = "graph-posY"
LABEL_ICON = "graph-icon"
LABEL_GROUP = "graph-group"
LABEL_LEVEL = "graph-level"
LABEL_GROUP_LABEL_POS = "graph-groupLabelPos"
LABEL_GEO_LAT = "graph-geoCoordinateLat"
LABEL_GEO_LNG = "graph-geoCoordinateLng"


def _to_int(value: Any) -> int | None:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def legacy_annotation(node_name: str, labels: Any) -> NodeAnnotation | None:
    """Build an annotation from ``graph-*`` labels, or None if there are none."""
    if not isinstance(labels, Mapping):
        return None
    if not any(str(key).startswith("graph-") for key in labels):
        return None

    ann = NodeAnnotation(id=node_name)
    x = _to_int(labels.get(LABEL_POS_X))
    y = _to_int(labels.get(LABEL_POS_Y))
    if x is not None and y is not None:
        ann.position = Position(x=x, y=y)
    if labels.get(LABEL_ICON):
        ann.icon = str(labels[LABEL_ICON])
    if labels.get(LABEL_GROUP):
        ann.group = str(labels[LABEL_GROUP])
    if labels.get(LABEL_LEVEL) is not None:
        ann.level = str(labels[LABEL_LEVEL])
    if labels.get(LABEL_GROUP_LABEL_POS):
        ann.group_label_pos = str(labels[LABEL_GROUP_LABEL_POS])
    lat = _to_float(labels.get(LABEL_GEO_LAT))
    lng = _to_float(labels.get(LABEL_GEO_LNG))
    if lat is not None and lng is not None:
        ann.geo_coordinates = GeoCoordinates(lat=lat, lng=lng)
    return ann


def migrate_legacy_labels(document_nodes: Mapping[str, Any], annotations: TopologyAnnotations) -> list[str]:
    """Seed annotations from legacy labels for nodes that have none.

    Args:
        document_nodes: ``topology.nodes`` mapping
        annotations: Annotations to extend in place

    Returns:
        Names of nodes that received a migrated annotation
    """
    existing = {ann.id for ann in annotations.node_annotations}
    migrated: list[str] = []
    for name, node in document_nodes.items():
        if name in existing or not isinstance(node, Mapping):
            continue
        ann = legacy_annotation(name, node.get("labels"))
        if ann is None:
            continue
        annotations.node_annotations.append(ann)
        migrated.append(name)
    if migrated:
        logger.info(f"Migrated legacy graph labels to annotations for: {', '.join(migrated)}")
    return migrated
