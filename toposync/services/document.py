"""Topology document loading, serialization and change detection.

The editable document is kept as a ruamel.yaml round-trip tree so comments,
key order and quoting survive a save. Plain reads and the "did anything
actually change" check go through PyYAML, comparing parsed structures with
key order normalized away.
"""

from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError as RoundTripYAMLError
from ruamel.yaml.util import load_yaml_guess_indent

from toposync.config import settings
from toposync.errors import TopologyParseError
from toposync.utils.file_transaction import FileTransaction

logger = logging.getLogger(__name__)


@dataclass
class TopologyDocument:
    """A parsed topology file and the layout it was written with."""

    path: Path
    data: CommentedMap
    source_text: str = ""
    indent: int = field(default_factory=lambda: settings.yaml_indent)
    sequence_indent: int = field(default_factory=lambda: settings.yaml_sequence_indent)
    sequence_offset: int = field(default_factory=lambda: settings.yaml_sequence_offset)

    @property
    def name(self) -> str:
        return str(self.data.get("name") or "")

    @property
    def topology(self) -> CommentedMap:
        topology = self.data.get("topology")
        return topology if isinstance(topology, CommentedMap) else CommentedMap()

    def ensure_topology(self) -> CommentedMap:
        topology = self.data.get("topology")
        if not isinstance(topology, CommentedMap):
            topology = CommentedMap()
            self.data["topology"] = topology
        return topology

    def ensure_nodes(self) -> CommentedMap:
        topology = self.ensure_topology()
        nodes = topology.get("nodes")
        if not isinstance(nodes, CommentedMap):
            nodes = CommentedMap()
            topology["nodes"] = nodes
        nodes.fa.set_block_style()
        return nodes

    def ensure_links(self) -> CommentedSeq:
        topology = self.ensure_topology()
        links = topology.get("links")
        if not isinstance(links, CommentedSeq):
            links = CommentedSeq()
            topology["links"] = links
        links.fa.set_block_style()
        return links

    def snapshot(self) -> dict[str, Any]:
        """Plain-Python copy of the document for read-only passes."""
        return to_plain(self.data)


def to_plain(value: Any) -> Any:
    """Convert ruamel round-trip containers and scalars to builtin types."""
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    if isinstance(value, bool):
        return bool(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, str):
        return str(value)
    return value


def make_round_trip_yaml(
    indent: int | None = None,
    sequence_indent: int | None = None,
    sequence_offset: int | None = None,
) -> YAML:
    rt = YAML(typ="rt")
    rt.preserve_quotes = True
    rt.width = 4096
    offset = settings.yaml_sequence_offset if sequence_offset is None else sequence_offset
    # Dash plus one space must fit inside the sequence indent
    seq_indent = max(sequence_indent or settings.yaml_sequence_indent, offset + 2)
    rt.indent(mapping=indent or settings.yaml_indent, sequence=seq_indent, offset=offset)
    return rt


def guess_mapping_indent(text: str) -> int | None:
    """Indent of the first nested block mapping, or None when there is none."""
    parent: int | None = None
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        column = len(line) - len(line.lstrip(" "))
        if parent is not None and column > parent and not stripped.startswith("-"):
            return column - parent
        key_only = stripped.split(" #", 1)[0].rstrip().endswith(":")
        parent = column if key_only and not stripped.startswith("-") else None
    return None


def _validate_structure(data: Any, path: str) -> CommentedMap:
    if data is None:
        data = CommentedMap()
    if not isinstance(data, CommentedMap):
        raise TopologyParseError("Topology document root must be a mapping", path=path)
    topology = data.get("topology")
    if topology is None:
        return data
    if not isinstance(topology, dict):
        raise TopologyParseError("'topology' must be a mapping", path=path)
    nodes = topology.get("nodes")
    if nodes is not None and not isinstance(nodes, dict):
        raise TopologyParseError("'topology.nodes' must be a mapping", path=path)
    links = topology.get("links")
    if links is not None and not isinstance(links, list):
        raise TopologyParseError("'topology.links' must be a sequence", path=path)
    return data


def parse_document_text(text: str, path: Path | str) -> TopologyDocument:
    """Parse topology text into an editable round-trip document.

    Args:
        text: YAML source
        path: File the text came from (used for writes and error messages)

    Returns:
        TopologyDocument

    Raises:
        TopologyParseError: If the text is not valid YAML or has the wrong shape
    """
    path = Path(path)
    try:
        _, guessed_indent, guessed_offset = load_yaml_guess_indent(text) if text.strip() else (None, None, None)
        data = make_round_trip_yaml().load(text)
    except RoundTripYAMLError as e:
        raise TopologyParseError(f"Invalid YAML in {path}: {e}", path=str(path)) from e

    data = _validate_structure(data, str(path))
    doc = TopologyDocument(path=path, data=data, source_text=text)
    mapping_indent = guess_mapping_indent(text)
    if mapping_indent:
        doc.indent = mapping_indent
    # ruamel measures its guess on the first block sequence item when there is one
    if guessed_indent:
        doc.sequence_indent = guessed_indent
    if guessed_offset is not None:
        doc.sequence_offset = guessed_offset
    return doc


def load_document(path: Path | str) -> TopologyDocument:
    """Read and parse a topology file. OSError propagates to the caller."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse_document_text(text, path)


def read_plain(text: str) -> Any:
    """Parse YAML into builtin types with PyYAML."""
    return yaml.safe_load(text)


def serialize_document(doc: TopologyDocument) -> str:
    stream = io.StringIO()
    make_round_trip_yaml(doc.indent, doc.sequence_indent, doc.sequence_offset).dump(doc.data, stream)
    return stream.getvalue()


def canonical_form(value: Any) -> str:
    """Order-independent text form of parsed YAML used for equality checks."""
    return json.dumps(value, sort_keys=True, default=str)


def documents_equivalent(left: str, right: str) -> bool:
    """True when two YAML texts parse to the same structure."""
    try:
        return canonical_form(read_plain(left)) == canonical_form(read_plain(right))
    except yaml.YAMLError:
        return False


def stage_document(doc: TopologyDocument, transaction: FileTransaction) -> str | None:
    """Stage the serialized document unless the file already matches.

    Returns:
        The staged text, or None for a no-op save
    """
    new_text = serialize_document(doc)
    current_text = doc.path.read_text(encoding="utf-8") if doc.path.exists() else None
    if current_text is not None and documents_equivalent(current_text, new_text):
        logger.info(f"No YAML changes detected for {doc.path}; skipping save")
        doc.source_text = current_text
        return None
    transaction.write(doc.path, new_text)
    return new_text


def write_document(doc: TopologyDocument) -> bool:
    """Serialize and write the document unless the file already matches.

    Returns:
        True if the file was written, False for a no-op save
    """
    transaction = FileTransaction()
    new_text = stage_document(doc, transaction)
    if new_text is None:
        return False
    transaction.commit()
    doc.source_text = new_text
    logger.info(f"Saved topology document {doc.path}")
    return True
