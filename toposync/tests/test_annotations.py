"""Tests for annotation sidecar storage and merging."""
from __future__ import annotations

import json

import pytest

from toposync.errors import AnnotationsError
from toposync.schemas import NodeAnnotation, Position, TopologyAnnotations, parse_graph_payload
from toposync.services.annotations import (
    AnnotationStore,
    annotations_path,
    merge_from_payload,
    merge_node_annotations,
    parse_geo,
    round_position,
    split_parent,
)
from toposync.services.writer import apply_graph
from toposync.utils.file_transaction import FileTransaction


class TestStore:
    def test_sidecar_path(self, tmp_path):
        assert annotations_path(tmp_path / "lab.clab.yml") == tmp_path / "lab.clab.yml.annotations.json"

    def test_missing_file_is_empty(self, simple_topology):
        assert AnnotationStore(simple_topology).load().is_empty()

    def test_blank_file_is_empty(self, simple_topology):
        store = AnnotationStore(simple_topology)
        store.path.write_text("  \n")
        assert store.load().is_empty()

    @pytest.mark.parametrize("content", ["{not json", '{"nodeAnnotations": [{"position": {"x": 1}}]}'])
    def test_invalid_file(self, simple_topology, content):
        store = AnnotationStore(simple_topology)
        store.path.write_text(content)
        with pytest.raises(AnnotationsError) as exc_info:
            store.load()
        assert exc_info.value.path == str(store.path)

    def test_save_and_load(self, simple_topology):
        store = AnnotationStore(simple_topology)
        annotations = TopologyAnnotations(node_annotations=[NodeAnnotation(id="srl1", position=Position(x=1, y=2))])
        assert store.save(annotations) is True
        raw = json.loads(store.path.read_text())
        assert raw["nodeAnnotations"] == [{"id": "srl1", "position": {"x": 1, "y": 2}}]
        assert store.load().node_annotations[0].position == Position(x=1, y=2)

    def test_unchanged_content_is_not_rewritten(self, simple_topology):
        store = AnnotationStore(simple_topology)
        annotations = TopologyAnnotations(node_annotations=[NodeAnnotation(id="srl1")])
        assert store.save(annotations) is True
        assert store.save(annotations) is False

    def test_empty_annotations_remove_file(self, simple_topology):
        store = AnnotationStore(simple_topology)
        store.save(TopologyAnnotations(node_annotations=[NodeAnnotation(id="srl1")]))
        assert store.save(TopologyAnnotations()) is True
        assert not store.path.exists()
        assert store.save(TopologyAnnotations()) is False

    def test_unknown_keys_are_preserved(self, simple_topology):
        store = AnnotationStore(simple_topology)
        store.path.write_text(json.dumps({"nodeAnnotations": [{"id": "srl1", "custom": 1}], "futureKey": {"a": 1}}))
        annotations = store.load()
        store.path.unlink()
        store.save(annotations)
        raw = json.loads(store.path.read_text())
        assert raw["futureKey"] == {"a": 1}
        assert raw["nodeAnnotations"][0]["custom"] == 1

    def test_integer_corner_radius_is_not_rewritten(self, simple_topology):
        store = AnnotationStore(simple_topology)
        raw = {
            "freeTextAnnotations": [],
            "freeShapeAnnotations": [],
            "groupStyleAnnotations": [],
            "cloudNodeAnnotations": [],
            "nodeAnnotations": [{"id": "srl1", "iconCornerRadius": 8}],
            "viewerSettings": {},
        }
        store.path.write_text(json.dumps(raw, indent=2) + "\n")
        annotations = store.load()
        assert store.save(annotations) is False
        assert json.loads(store.path.read_text())["nodeAnnotations"][0]["iconCornerRadius"] == 8

    def test_stage_defers_the_write(self, simple_topology):
        store = AnnotationStore(simple_topology)
        transaction = FileTransaction()
        assert store.stage(TopologyAnnotations(node_annotations=[NodeAnnotation(id="srl1")]), transaction) is True
        assert not store.path.exists()
        transaction.commit()
        assert store.load().node_index()["srl1"].id == "srl1"


class TestHelpers:
    def test_round_position_half_up(self):
        assert round_position(Position(x=10.5, y=-0.5)) == Position(x=11, y=0)
        assert round_position(Position(x=3.49, y=7)) == Position(x=3, y=7)
        assert round_position(None) == Position(x=0, y=0)

    def test_split_parent(self):
        assert split_parent("pod1:2") == ("pod1", "2")
        assert split_parent("pod1") == (None, None)
        assert split_parent("a:b:c") == (None, None)
        assert split_parent(None) == (None, None)

    def test_parse_geo(self):
        geo = parse_geo("48.1", "11.5")
        assert (geo.lat, geo.lng) == (48.1, 11.5)
        assert parse_geo("", "11.5") is None
        assert parse_geo("north", "11.5") is None
        assert parse_geo("nan", "1") is None

    def test_merge_node_annotations_primary_wins(self):
        primary = [NodeAnnotation(id="a", position=Position(x=1, y=1))]
        secondary = [
            NodeAnnotation(id="a", position=Position(x=9, y=9), label="from-edge", yaml_node_id="br1"),
            NodeAnnotation(id="b"),
        ]
        merged = merge_node_annotations(primary, secondary)
        assert [ann.id for ann in merged] == ["a", "b"]
        assert merged[0].position == Position(x=1, y=1)
        assert merged[0].label == "from-edge"
        assert merged[0].yaml_node_id == "br1"


class TestMergeFromPayload:
    def test_positions_icons_and_groups(self, simple_topology, load_doc, graph_payload, find_element):
        payload = graph_payload(load_doc(simple_topology))
        srl1 = find_element(payload, "srl1")
        srl1["position"] = {"x": 100.4, "y": 50.6}
        srl1["data"].update({"parent": "pod:1", "iconColor": " #00ff00 ", "iconCornerRadius": 0, "lat": "1.5", "lng": "2"})

        merged = merge_from_payload(parse_graph_payload(payload), TopologyAnnotations())
        by_id = merged.node_index()
        assert set(by_id) == {"srl1", "srl2"}
        ann = by_id["srl1"]
        assert ann.position == Position(x=100, y=51)
        assert ann.icon == "router"
        assert ann.icon_color == "#00ff00"
        assert ann.icon_corner_radius is None
        assert (ann.group, ann.level) == ("pod", "1")
        assert (ann.geo_coordinates.lat, ann.geo_coordinates.lng) == (1.5, 2.0)

    def test_geo_layout_keeps_previous_position(self, simple_topology, load_doc, graph_payload, find_element):
        payload = graph_payload(load_doc(simple_topology))
        srl1 = find_element(payload, "srl1")
        srl1["position"] = {"x": 999, "y": 999}
        srl1["data"]["geoLayoutActive"] = True
        previous = TopologyAnnotations(node_annotations=[NodeAnnotation(id="srl1", position=Position(x=5, y=6))])

        merged = merge_from_payload(parse_graph_payload(payload), previous)
        assert merged.node_index()["srl1"].position == Position(x=5, y=6)

    def test_non_node_annotations_survive(self, simple_topology, load_doc, graph_payload):
        previous = TopologyAnnotations.model_validate(
            {
                "freeTextAnnotations": [{"id": "t1", "text": "hello"}],
                "viewerSettings": {"gridSize": 10},
                "nodeAnnotations": [{"id": "gone", "position": {"x": 1, "y": 1}}],
            }
        )
        merged = merge_from_payload(parse_graph_payload(graph_payload(load_doc(simple_topology))), previous)
        assert merged.free_text_annotations == [{"id": "t1", "text": "hello"}]
        assert merged.viewer_settings == {"gridSize": 10}
        assert "gone" not in merged.node_index()
        # The previous object is not modified
        assert [ann.id for ann in previous.node_annotations] == ["gone"]

    def test_cloud_nodes(self, mixed_topology, load_doc, graph_payload, find_element):
        payload = graph_payload(load_doc(mixed_topology))
        host = find_element(payload, "host:veth-leaf1")
        host["position"] = {"x": 12, "y": 34}
        host["data"]["parent"] = "edge:1"

        merged = merge_from_payload(parse_graph_payload(payload), TopologyAnnotations())
        clouds = merged.cloud_index()
        assert set(clouds) == {"host:veth-leaf1", "vxlan:10.0.0.2/100/4789", "dummy0"}
        ann = clouds["host:veth-leaf1"]
        assert ann.type == "host"
        assert ann.position == Position(x=12, y=34)
        assert (ann.group, ann.level) == ("edge", "1")
        assert "host:veth-leaf1" not in merged.node_index()

    def test_copy_from_uses_stable_id(self, simple_topology, load_doc, graph_payload, find_element):
        payload = graph_payload(load_doc(simple_topology))
        find_element(payload, "srl2")["data"]["extraData"]["copyFrom"] = "srl1"
        merged = merge_from_payload(parse_graph_payload(payload), TopologyAnnotations())
        assert merged.node_index()["srl2"].copy_from == "srl1"


class TestBridgeAliases:
    def test_aliases_replace_base_annotation(self, bridge_topology, load_doc, graph_payload):
        store = AnnotationStore(bridge_topology)
        previous = store.load()
        payload = graph_payload(load_doc(bridge_topology), previous)

        merged = merge_from_payload(parse_graph_payload(payload), previous)
        by_id = merged.node_index()
        assert set(by_id) == {"srl1", "srl2", "br1:eth1", "br1:eth2"}
        alias = by_id["br1:eth1"]
        assert (alias.yaml_node_id, alias.yaml_interface) == ("br1", "eth1")
        assert alias.position == Position(x=10, y=20)
        assert alias.icon == "bridge"
        assert alias.label is None

    def test_rename_moves_alias_annotations(self, bridge_topology, load_doc, graph_payload, find_element):
        previous = AnnotationStore(bridge_topology).load()
        doc = load_doc(bridge_topology)
        payload = graph_payload(doc, previous)
        for alias_id in ("br1:eth1", "br1:eth2"):
            find_element(payload, alias_id)["data"]["extraData"]["extYamlNodeId"] = "br-core"
        elements = parse_graph_payload(payload)
        outcome = apply_graph(doc, elements)

        merged = merge_from_payload(elements, previous, outcome.node_keys, outcome.renamed_nodes)
        by_id = merged.node_index()
        assert set(by_id) == {"srl1", "srl2", "br-core:eth1", "br-core:eth2"}
        assert by_id["br-core:eth2"].yaml_node_id == "br-core"
        assert by_id["br-core:eth2"].position == Position(x=30, y=40)

    def test_renamed_node_annotation_follows_rename(self, simple_topology, load_doc, graph_payload, find_element):
        doc = load_doc(simple_topology)
        payload = graph_payload(doc)
        find_element(payload, "srl1")["data"]["name"] = "leaf1"
        elements = parse_graph_payload(payload)
        outcome = apply_graph(doc, elements)

        merged = merge_from_payload(elements, TopologyAnnotations(), outcome.node_keys, outcome.renamed_nodes)
        assert set(merged.node_index()) == {"leaf1", "srl2"}
