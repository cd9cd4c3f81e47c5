"""Shared pytest fixtures for sync engine tests."""
# ruff: noqa: E402  -- sys.path setup must run before package imports
from __future__ import annotations

import json
import logging
from pathlib import Path
import sys
from typing import Any, Callable

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from toposync.config import settings
from toposync.schemas import TopologyAnnotations, dump_graph_payload
from toposync.services.document import TopologyDocument, parse_document_text
from toposync.services.topology import compile_topology


SIMPLE_TOPOLOGY = """\
name: demo
topology:
  kinds:
    nokia_srlinux:
      image: ghcr.io/nokia/srlinux:latest
  nodes:
    srl1:
      kind: nokia_srlinux
    srl2:
      kind: nokia_srlinux
  links:
    - endpoints: ["srl1:e1-1", "srl2:e1-1"]
"""

# Exercises inheritance, comments, bridges and every link encoding at once
MIXED_TOPOLOGY = """\
name: lab
prefix: ""
topology:
  defaults:
    kind: nokia_srlinux
  kinds:
    nokia_srlinux:
      image: ghcr.io/nokia/srlinux
      labels:
        vendor: nokia
  groups:
    spines:
      type: ixrd3
  nodes:
    # spine layer
    spine1:
      group: spines
      labels:
        role: spine
    leaf1:
      type: ixrd2
      binds:
        - /tmp/a:/tmp/a
    br1:
      kind: bridge
  links:
    - endpoints: ["spine1:e1-1", "leaf1:e1-1"]
    - endpoints: ["leaf1:e1-2", "br1:eth1"]
    - endpoints: ["leaf1:e1-3", "host:veth-leaf1"]
    - type: vxlan
      endpoint:
        node: spine1
        interface: e1-10
      remote: 10.0.0.2
      vni: 100
      udp-port: 4789
    - type: dummy
      endpoint:
        node: leaf1
        interface: e1-20
    - type: veth
      mtu: 9000
      endpoints:
        - node: spine1
          interface: e1-2
        - node: leaf1
          interface: e1-4
"""

BRIDGE_TOPOLOGY = """\
name: demo
topology:
  nodes:
    srl1:
      kind: nokia_srlinux
    srl2:
      kind: nokia_srlinux
    br1:
      kind: bridge
  links:
    - endpoints: ["srl1:e1-1", "br1:eth1"]
    - endpoints: ["srl2:e1-1", "br1:eth2"]
"""

BRIDGE_ALIAS_ANNOTATIONS = {
    "nodeAnnotations": [
        {"id": "br1:eth1", "yamlNodeId": "br1", "yamlInterface": "eth1", "position": {"x": 10, "y": 20}},
        {"id": "br1:eth2", "yamlNodeId": "br1", "yamlInterface": "eth2", "position": {"x": 30, "y": 40}},
    ]
}


@pytest.fixture
def write_topology(tmp_path: Path) -> Callable[..., Path]:
    """Write topology text (and optionally annotations) into tmp_path."""

    def _write(text: str, name: str = "lab.clab.yml", annotations: dict | None = None) -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        if annotations is not None:
            sidecar = path.with_name(f"{path.name}{settings.annotations_suffix}")
            sidecar.write_text(json.dumps(annotations), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def simple_topology(write_topology) -> Path:
    return write_topology(SIMPLE_TOPOLOGY)


@pytest.fixture
def mixed_topology(write_topology) -> Path:
    return write_topology(MIXED_TOPOLOGY)


@pytest.fixture
def bridge_topology(write_topology) -> Path:
    return write_topology(BRIDGE_TOPOLOGY, annotations=BRIDGE_ALIAS_ANNOTATIONS)


@pytest.fixture
def load_doc() -> Callable[[Path], TopologyDocument]:
    def _load(path: Path) -> TopologyDocument:
        return parse_document_text(path.read_text(encoding="utf-8"), path)

    return _load


@pytest.fixture
def graph_payload() -> Callable[..., list[dict[str, Any]]]:
    """Editor-shaped JSON payload for a document, as the editor sends it back."""

    def _payload(doc: TopologyDocument, annotations: TopologyAnnotations | None = None) -> list[dict[str, Any]]:
        compiled = compile_topology(doc.snapshot(), annotations)
        return json.loads(json.dumps(dump_graph_payload(compiled.elements)))

    return _payload


@pytest.fixture
def find_element() -> Callable[[list[dict[str, Any]], str], dict[str, Any]]:
    def _find(payload: list[dict[str, Any]], element_id: str) -> dict[str, Any]:
        for element in payload:
            if element["data"]["id"] == element_id:
                return element
        raise AssertionError(f"element {element_id} not in payload")

    return _find


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by setup_logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
