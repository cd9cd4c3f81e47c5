"""Pydantic models for graph elements, annotations and inventory.

Graph payloads and the annotation sidecar use camelCase keys on the wire;
models expose snake_case attributes and serialize back with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    BeforeValidator,
)
from pydantic.alias_generators import to_camel

from toposync.errors import PayloadValidationError


class CamelModel(BaseModel):
    """Base model with camelCase aliases that keeps unknown keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Position(BaseModel):
    # int | float keeps integer coordinates integral on re-serialization
    x: int | float = 0
    y: int | float = 0


class GeoCoordinates(BaseModel):
    lat: float
    lng: float


# =============================================================================
# Annotation sidecar
# =============================================================================


def _level_to_str(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


LevelStr = Annotated[str | None, BeforeValidator(_level_to_str)]


class NodeAnnotation(CamelModel):
    """Visual metadata for one node, keyed by its stable annotation id."""

    id: str
    position: Position | None = None
    icon: str | None = None
    icon_color: str | None = None
    icon_corner_radius: int | float | None = None
    group: str | None = None
    level: LevelStr = None
    group_label_pos: str | None = None
    geo_coordinates: GeoCoordinates | None = None
    # Bridge alias fields: which YAML node/interface this visual stands for
    yaml_node_id: str | None = None
    yaml_interface: str | None = None
    label: str | None = None
    copy_from: str | None = None  # Annotation id the node was copied from

    @property
    def parent_id(self) -> str | None:
        if self.group and self.level:
            return f"{self.group}:{self.level}"
        return None


class CloudNodeAnnotation(CamelModel):
    """Position and grouping of a special-endpoint (cloud) node."""

    id: str
    type: str = "host"
    label: str | None = None
    position: Position | None = None
    group: str | None = None
    level: LevelStr = None

    @property
    def parent_id(self) -> str | None:
        if self.group and self.level:
            return f"{self.group}:{self.level}"
        return None


class TopologyAnnotations(CamelModel):
    """Full content of the ``<topology>.annotations.json`` sidecar."""

    free_text_annotations: list[dict[str, Any]] = Field(default_factory=list)
    free_shape_annotations: list[dict[str, Any]] = Field(default_factory=list)
    group_style_annotations: list[dict[str, Any]] = Field(default_factory=list)
    cloud_node_annotations: list[CloudNodeAnnotation] = Field(default_factory=list)
    node_annotations: list[NodeAnnotation] = Field(default_factory=list)
    viewer_settings: dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.free_text_annotations
            or self.free_shape_annotations
            or self.group_style_annotations
            or self.cloud_node_annotations
            or self.node_annotations
            or self.viewer_settings
        )

    def node_index(self) -> dict[str, NodeAnnotation]:
        return {ann.id: ann for ann in self.node_annotations}

    def cloud_index(self) -> dict[str, CloudNodeAnnotation]:
        return {ann.id: ann for ann in self.cloud_node_annotations}


# =============================================================================
# Graph elements
# =============================================================================


class NodeData(CamelModel):
    id: str
    name: str | None = None
    parent: str | None = None
    topo_viewer_role: str | None = None
    icon_color: str | None = None
    icon_corner_radius: int | float | None = None
    lat: str | float | None = None
    lng: str | float | None = None
    geo_layout_active: bool | None = None  # Positions are geographic; keep saved x/y
    group_label_pos: str | None = None
    extra_data: dict[str, Any] = Field(default_factory=dict)


class GroupData(CamelModel):
    id: str
    name: str | None = None
    parent: str | None = None
    topo_viewer_role: Literal["group"] = "group"
    extra_data: dict[str, Any] = Field(default_factory=dict)


class EdgeData(CamelModel):
    id: str
    source: str
    target: str
    source_endpoint: str = ""
    target_endpoint: str = ""
    name: str | None = None
    topo_viewer_role: str | None = "link"
    extra_data: dict[str, Any] = Field(default_factory=dict)


class NodeElement(CamelModel):
    group: Literal["nodes"] = "nodes"
    data: NodeData
    position: Position = Field(default_factory=Position)
    classes: str = ""


class GroupElement(CamelModel):
    group: Literal["nodes"] = "nodes"
    data: GroupData
    position: Position = Field(default_factory=Position)
    classes: str = ""


class EdgeElement(CamelModel):
    group: Literal["edges"] = "edges"
    data: EdgeData
    classes: str = ""


def _element_tag(value: Any) -> str:
    """Pick the union member for a raw or already-built element."""
    if isinstance(value, dict):
        group = value.get("group")
        data = value.get("data") or {}
        role = data.get("topoViewerRole", data.get("topo_viewer_role")) if isinstance(data, dict) else None
    else:
        group = getattr(value, "group", None)
        role = getattr(getattr(value, "data", None), "topo_viewer_role", None)
    if group == "edges":
        return "edge"
    if role == "group":
        return "group"
    return "node"


GraphElement = Annotated[
    Union[
        Annotated[NodeElement, Tag("node")],
        Annotated[GroupElement, Tag("group")],
        Annotated[EdgeElement, Tag("edge")],
    ],
    Discriminator(_element_tag),
]

_payload_adapter: TypeAdapter[list[GraphElement]] = TypeAdapter(list[GraphElement])


def parse_graph_payload(raw: Any) -> list[NodeElement | GroupElement | EdgeElement]:
    """Validate an editor payload into typed graph elements.

    Args:
        raw: Decoded JSON array of ``{group, data, position, classes}`` records

    Returns:
        List of NodeElement, GroupElement and EdgeElement instances

    Raises:
        PayloadValidationError: If the payload does not match the element shapes
    """
    try:
        return _payload_adapter.validate_python(raw)
    except ValidationError as e:
        raise PayloadValidationError(
            f"Invalid graph payload: {e.error_count()} error(s)",
            errors=e.errors(include_url=False),
        ) from e


def dump_graph_payload(elements: list[NodeElement | GroupElement | EdgeElement]) -> list[dict[str, Any]]:
    """Serialize graph elements to the editor's JSON shape."""
    return [element.to_json_dict() for element in elements]


# =============================================================================
# Runtime inventory (supplied by the container discovery collaborator)
# =============================================================================


class InterfaceInfo(CamelModel):
    name: str
    alias: str = ""
    state: str = ""
    mac: str = ""
    mtu: int | str = ""
    type: str = ""


class ContainerInfo(CamelModel):
    name: str
    state: str = ""
    ipv4_address: str = Field("", alias="IPv4Address")
    ipv6_address: str = Field("", alias="IPv6Address")
    interfaces: list[InterfaceInfo] = Field(default_factory=list)

    def interface(self, name: str) -> InterfaceInfo | None:
        for iface in self.interfaces:
            if iface.name == name:
                return iface
        return None


# Lab name -> discovered containers
Inventory = dict[str, list[ContainerInfo]]


# =============================================================================
# Session results
# =============================================================================


class CompileResult(BaseModel):
    """Outcome of one document -> graph pass."""

    success: bool = True
    elements: list[GraphElement] = Field(default_factory=list)
    preset_layout: bool = False  # Every node had a saved position
    queued: bool = False  # Coalesced into the pass already in flight
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class SaveResult(BaseModel):
    """Outcome of one graph -> document save."""

    success: bool = True
    document_written: bool = False  # False when the write was a no-op
    annotations_written: bool = False
    skipped_links: list[str] = Field(default_factory=list)  # Canonical keys refused by validation
    renamed_nodes: dict[str, str] = Field(default_factory=dict)  # old key -> new key
    error: str | None = None
