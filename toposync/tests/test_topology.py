"""Tests for the topology -> graph compiler."""
from __future__ import annotations

import pytest

from toposync.schemas import ContainerInfo, GroupElement, InterfaceInfo, TopologyAnnotations
from toposync.services.aliases import CLASS_ALIASED_BASE
from toposync.services.annotations import AnnotationStore
from toposync.services.document import load_document, parse_document_text
from toposync.services.edge_builder import compute_edge_class, validate_extended_link
from toposync.services.topology import compile_topology


def _compile(text: str, annotations: dict | None = None, inventory=None):
    doc = parse_document_text(text, "lab.clab.yml")
    anns = TopologyAnnotations.model_validate(annotations) if annotations else None
    return compile_topology(doc.snapshot(), anns, inventory)


def _inventory(states: dict[str, str]) -> dict[str, list[ContainerInfo]]:
    """Inventory for lab "demo" with interface e1-1 on each named container."""
    return {
        "demo": [
            ContainerInfo(
                name=f"clab-demo-{node}",
                state="running",
                interfaces=[InterfaceInfo(name="e1-1", state=state, mac=f"02:00:00:00:00:0{i}")],
            )
            for i, (node, state) in enumerate(states.items(), start=1)
        ]
    }


class TestSimpleTopology:
    """Two routers and one brief link."""

    def test_element_order_and_ids(self, simple_topology):
        compiled = compile_topology(load_document(simple_topology).snapshot())
        assert [el.data.id for el in compiled.elements] == ["srl1", "srl2", "Link0"]
        assert compiled.groups == []
        assert compiled.warnings == []
        assert compiled.preset_layout is False

    def test_node_data(self, simple_topology):
        compiled = compile_topology(load_document(simple_topology).snapshot())
        node = compiled.nodes[0]
        extra = node.data.extra_data
        assert node.data.topo_viewer_role == "router"
        assert node.data.parent is None
        assert (node.position.x, node.position.y) == (0, 0)
        assert extra["kind"] == "nokia_srlinux"
        assert extra["image"] == "ghcr.io/nokia/srlinux:latest"
        assert extra["longname"] == "clab-demo-srl1"
        assert extra["fqdn"] == "srl1.demo.io"
        assert extra["index"] == "0"
        assert extra["labdir"] == "clab-demo/"
        assert "image" in extra["inherited"]
        assert compiled.nodes[1].data.extra_data["index"] == "1"

    def test_edge_data(self, simple_topology):
        compiled = compile_topology(load_document(simple_topology).snapshot())
        edge = compiled.edges[0]
        assert (edge.data.source, edge.data.source_endpoint) == ("srl1", "e1-1")
        assert (edge.data.target, edge.data.target_endpoint) == ("srl2", "e1-1")
        assert edge.data.extra_data["clabSourceLongName"] == "clab-demo-srl1"
        assert edge.data.extra_data["clabTargetPort"] == "e1-1"
        assert edge.data.extra_data["yamlFormat"] == "short"
        assert edge.data.extra_data["extType"] == ""
        assert edge.classes == ""

    def test_compile_is_repeatable(self, simple_topology):
        snapshot = load_document(simple_topology).snapshot()
        first = compile_topology(snapshot)
        second = compile_topology(snapshot)
        assert [el.model_dump() for el in first.elements] == [el.model_dump() for el in second.elements]


class TestMixedTopology:
    """Inheritance, bridges and special endpoints."""

    def test_nodes_and_cloud_nodes(self, mixed_topology):
        compiled = compile_topology(load_document(mixed_topology).snapshot())
        ids = [node.data.id for node in compiled.nodes]
        assert ids == ["spine1", "leaf1", "br1", "host:veth-leaf1", "vxlan:10.0.0.2/100/4789", "dummy0"]
        roles = {node.data.id: node.data.topo_viewer_role for node in compiled.nodes}
        assert roles["br1"] == "bridge"
        assert roles["host:veth-leaf1"] == "cloud"
        assert roles["dummy0"] == "cloud"

    def test_inherited_fields(self, mixed_topology):
        compiled = compile_topology(load_document(mixed_topology).snapshot())
        spine = compiled.nodes[0].data.extra_data
        assert spine["kind"] == "nokia_srlinux"
        assert spine["type"] == "ixrd3"
        assert spine["group"] == "spines"
        assert spine["labels"] == {"vendor": "nokia", "role": "spine"}
        # Empty prefix drops the container prefix entirely
        assert spine["longname"] == "spine1"
        assert spine["labdir"] == ""

    def test_edges(self, mixed_topology):
        compiled = compile_topology(load_document(mixed_topology).snapshot())
        edges = {edge.data.id: edge for edge in compiled.edges}
        assert list(edges) == [f"Link{i}" for i in range(6)]

        assert edges["Link1"].classes == "stub-link"
        host = edges["Link2"]
        assert host.data.target == "host:veth-leaf1"
        assert host.data.target_endpoint == ""
        vxlan = edges["Link3"]
        assert vxlan.data.target == "vxlan:10.0.0.2/100/4789"
        assert vxlan.data.extra_data["extVni"] == 100
        assert vxlan.data.extra_data["yamlFormat"] == "extended"
        assert edges["Link4"].data.target == "dummy0"
        assert edges["Link5"].data.extra_data["extMtu"] == 9000
        assert compiled.warnings == []

    def test_cloud_node_prefill(self, mixed_topology):
        compiled = compile_topology(load_document(mixed_topology).snapshot())
        vxlan = next(node for node in compiled.nodes if node.data.id.startswith("vxlan:"))
        extra = vxlan.data.extra_data
        assert extra["extType"] == "vxlan"
        assert extra["extRemote"] == "10.0.0.2"
        assert extra["extUdpPort"] == 4789
        assert vxlan.classes == "special-endpoint"


class TestAnnotations:
    def test_positions_groups_and_icons(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    srl1: {}\n    srl2: {}\n",
            {
                "nodeAnnotations": [
                    {"id": "srl1", "position": {"x": 100, "y": 200}, "group": "pod1", "level": 2, "icon": "switch"},
                    {"id": "srl2", "position": {"x": 300, "y": 200}, "iconColor": "#ff0000", "iconCornerRadius": 4},
                ]
            },
        )
        srl1, srl2 = compiled.nodes
        assert (srl1.position.x, srl1.position.y) == (100, 200)
        assert srl1.data.parent == "pod1:2"
        assert srl1.data.topo_viewer_role == "switch"
        assert srl2.data.icon_color == "#ff0000"
        assert srl2.data.icon_corner_radius == 4
        assert compiled.preset_layout is True

        assert len(compiled.groups) == 1
        group = compiled.groups[0]
        assert isinstance(group, GroupElement)
        assert (group.data.id, group.data.name) == ("pod1:2", "pod1")
        assert compiled.elements[0] is group

    def test_preset_layout_needs_every_node(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    srl1: {}\n    srl2: {}\n",
            {"nodeAnnotations": [{"id": "srl1", "position": {"x": 1, "y": 1}}]},
        )
        assert compiled.preset_layout is False

    def test_legacy_group_labels_are_a_fallback(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    srl1:\n      labels:\n        graph-group: g\n        graph-level: 3\n"
            "        site: x\n"
        )
        node = compiled.nodes[0]
        assert node.data.parent == "g:3"
        assert node.data.extra_data["labels"] == {"site": "x"}

    def test_geo_coordinates(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    srl1: {}\n",
            {"nodeAnnotations": [{"id": "srl1", "geoCoordinates": {"lat": 48.1, "lng": 11.5}}]},
        )
        assert (compiled.nodes[0].data.lat, compiled.nodes[0].data.lng) == ("48.1", "11.5")

    def test_bridge_label_is_display_name(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    br1:\n      kind: bridge\n",
            {"nodeAnnotations": [{"id": "br1", "label": "Core Bridge"}]},
        )
        assert compiled.nodes[0].data.name == "Core Bridge"
        assert compiled.nodes[0].data.id == "br1"

    def test_cloud_annotation_position(self):
        compiled = _compile(
            'name: demo\ntopology:\n  nodes:\n    srl1: {}\n  links:\n    - endpoints: ["srl1:e1-1", "host:veth0"]\n',
            {"cloudNodeAnnotations": [{"id": "host:veth0", "position": {"x": 7, "y": 8}, "label": "uplink"}]},
        )
        cloud = compiled.nodes[1]
        assert cloud.data.id == "host:veth0"
        assert (cloud.position.x, cloud.position.y) == (7, 8)
        assert cloud.data.name == "uplink"


class TestBridgeAliases:
    def test_aliases_rewire_edges(self, bridge_topology):
        annotations = AnnotationStore(bridge_topology).load()
        compiled = compile_topology(load_document(bridge_topology).snapshot(), annotations)
        by_id = {node.data.id: node for node in compiled.nodes}

        alias = by_id["br1:eth1"]
        assert alias.data.topo_viewer_role == "bridge"
        assert alias.data.extra_data["extYamlNodeId"] == "br1"
        assert (alias.position.x, alias.position.y) == (10, 20)

        targets = [edge.data.target for edge in compiled.edges]
        assert targets == ["br1:eth1", "br1:eth2"]
        assert CLASS_ALIASED_BASE in by_id["br1"].classes.split()

    def test_alias_to_non_bridge_is_ignored(self, simple_topology):
        compiled = compile_topology(
            load_document(simple_topology).snapshot(),
            TopologyAnnotations.model_validate(
                {"nodeAnnotations": [{"id": "srl2:e1-1", "yamlNodeId": "srl2", "yamlInterface": "e1-1"}]}
            ),
        )
        assert [node.data.id for node in compiled.nodes] == ["srl1", "srl2"]
        assert compiled.edges[0].data.target == "srl2"


class TestWarnings:
    def test_link_without_both_endpoints(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    a: {}\n    b: {}\n  links:\n"
            '    - endpoints: ["a:e1"]\n'
            '    - endpoints: ["a:e2", "b:e2"]\n'
        )
        assert compiled.warnings == ["Link #0 does not have both endpoints; skipping"]
        assert [edge.data.id for edge in compiled.edges] == ["Link0"]

    def test_invalid_extended_link_is_still_drawn(self):
        compiled = _compile(
            "name: demo\ntopology:\n  nodes:\n    a: {}\n  links:\n"
            "    - type: host\n      endpoint:\n        node: a\n        interface: e1\n"
        )
        edge = compiled.edges[0]
        assert edge.data.extra_data["extValidationErrors"] == ["missing-host-interface"]
        assert compiled.warnings == ["Link0: missing-host-interface"]


class TestRuntimeState:
    def test_both_up(self, simple_topology):
        compiled = compile_topology(
            load_document(simple_topology).snapshot(), inventory=_inventory({"srl1": "up", "srl2": "up"})
        )
        edge = compiled.edges[0]
        assert edge.classes == "link-up"
        assert edge.data.extra_data["clabSourceMacAddress"] == "02:00:00:00:00:01"
        assert edge.data.extra_data["clabTargetInterfaceState"] == "up"
        assert compiled.nodes[0].data.extra_data["state"] == "running"

    def test_one_down(self, simple_topology):
        compiled = compile_topology(
            load_document(simple_topology).snapshot(), inventory=_inventory({"srl1": "up", "srl2": "down"})
        )
        assert compiled.edges[0].classes == "link-down"

    def test_missing_container_has_no_state(self, simple_topology):
        compiled = compile_topology(load_document(simple_topology).snapshot(), inventory=_inventory({"srl1": "up"}))
        assert compiled.edges[0].classes == ""

    def test_distributed_sros_uses_component_containers(self):
        text = (
            "name: demo\n"
            "topology:\n"
            "  nodes:\n"
            "    sr1:\n"
            "      kind: nokia_srsim\n"
            "      components:\n"
            "        - slot: A\n"
            "        - slot: \"1\"\n"
            "    srl2:\n"
            "      kind: nokia_srlinux\n"
            "  links:\n"
            '    - endpoints: ["sr1:1/1/c1/1", "srl2:e1-1"]\n'
        )
        inventory = _inventory({"srl2": "up"})
        inventory["demo"] += [
            ContainerInfo(name="clab-demo-sr1-a", state="running"),
            ContainerInfo(
                name="clab-demo-sr1-1",
                state="running",
                interfaces=[InterfaceInfo(name="e1-1-c1-1", state="up")],
            ),
        ]
        compiled = _compile(text, inventory=inventory)

        assert compiled.nodes[0].data.extra_data["state"] == "running"
        edge = compiled.edges[0]
        assert edge.classes == "link-up"
        assert edge.data.extra_data["clabSourceLongName"] == "clab-demo-sr1-1"
        assert edge.data.extra_data["clabSourceInterfaceState"] == "up"
        assert edge.data.source_endpoint == "1/1/c1/1"


@pytest.mark.parametrize(
    "source_special,target_special,source_state,target_state,expected",
    [
        (False, False, "up", "up", "link-up"),
        (False, False, "up", "down", "link-down"),
        (False, False, "up", None, ""),
        (True, False, None, "up", "link-up"),
        (True, False, None, "down", "link-down"),
        (False, True, "up", None, "link-up"),
        (False, True, None, None, ""),
        (True, True, None, None, "link-up"),
    ],
)
def test_compute_edge_class(source_special, target_special, source_state, target_state, expected):
    assert compute_edge_class(source_special, target_special, source_state, target_state) == expected


@pytest.mark.parametrize(
    "link,expected",
    [
        ({"endpoints": ["a:e1", "b:e1"]}, []),
        ({"type": "veth", "endpoints": ["a:e1", "b:e1"]}, ["invalid-veth-endpoints"]),
        (
            {"type": "veth", "endpoints": [{"node": "a", "interface": "e1"}, {"node": "b", "interface": "e1"}]},
            [],
        ),
        ({"type": "mgmt-net", "endpoint": {"node": "a", "interface": "e1"}}, ["missing-host-interface"]),
        ({"type": "dummy", "endpoint": "a:e1"}, ["invalid-endpoint"]),
        (
            {"type": "vxlan", "endpoint": {"node": "a", "interface": "e1"}, "remote": "1.1.1.1"},
            ["missing-vni", "missing-udp-port"],
        ),
        (
            {"type": "vxlan-stitch", "endpoint": {"node": "a", "interface": "e1"}, "vni": 0, "udp-port": 4789},
            ["missing-remote"],
        ),
    ],
)
def test_validate_extended_link(link, expected):
    assert validate_extended_link(link) == expected
