"""Editing session coordination.

A session owns one topology file, its parsed document and its annotations.
It serializes compiles and saves, coalesces refresh requests that arrive
while busy into one pending slot, and ignores file-change notifications
caused by its own writes.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any

from toposync.errors import (
    DocumentNotLoadedError,
    PayloadValidationError,
    TopologySyncError,
)
from toposync.schemas import (
    CompileResult,
    EdgeElement,
    GroupElement,
    Inventory,
    NodeElement,
    SaveResult,
    TopologyAnnotations,
    parse_graph_payload,
)
from toposync.services.annotations import AnnotationStore, merge_from_payload
from toposync.services.document import TopologyDocument, load_document, stage_document
from toposync.services.label_migration import migrate_legacy_labels
from toposync.services.state_machine import SessionStateMachine
from toposync.services.topology import compile_topology
from toposync.services.writer import apply_graph
from toposync.state import EditorMode, SessionState
from toposync.utils.file_transaction import FileTransaction

logger = logging.getLogger(__name__)


def _read_text(path: Path) -> str | None:
    return path.read_text(encoding="utf-8") if path.exists() else None


class TopologySession:
    """Async editing session for one topology file.

    Args:
        yaml_path: Topology document path
        inventory: Runtime containers per lab, or None for editor-only mode
        mode: Initial editor mode
    """

    def __init__(
        self,
        yaml_path: Path | str,
        inventory: Inventory | None = None,
        mode: EditorMode = EditorMode.EDIT,
    ):
        self.yaml_path = Path(yaml_path)
        self.inventory = inventory
        self.mode = EditorMode(mode)
        self.store = AnnotationStore(self.yaml_path)
        self.state = SessionState.IDLE
        self.document: TopologyDocument | None = None
        self.annotations = TopologyAnnotations()
        self.last_result: CompileResult | None = None
        self.pending_refresh = False
        self.internal_update = False
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _enter(self, target: SessionState) -> None:
        self.state = SessionStateMachine.transition(self.state, target)

    def _leave(self) -> None:
        self.state = SessionStateMachine.transition(self.state, SessionState.IDLE)

    @property
    def busy(self) -> bool:
        return SessionStateMachine.is_busy(self.state) or self._lock.locked()

    # -------------------------------------------------------------------------
    # Document -> graph
    # -------------------------------------------------------------------------

    async def load(self) -> CompileResult:
        """Parse the document and produce the initial graph."""
        return await self.refresh()

    async def refresh(self) -> CompileResult:
        """Recompile from disk, or queue one recompile if the session is busy."""
        if self.busy or not SessionStateMachine.accepts_updates(self.state):
            self.pending_refresh = True
            logger.debug(f"Session busy ({self.state.value}); refresh queued")
            return CompileResult(queued=True)

        async with self._lock:
            self.pending_refresh = False
            result = await self._compile()
            while SessionStateMachine.next_after(self.pending_refresh):
                self.pending_refresh = False
                result = await self._compile()
        return result

    async def _compile(self) -> CompileResult:
        self._enter(SessionState.COMPILING)
        warnings: list[str] = []
        try:
            doc = await asyncio.to_thread(load_document, self.yaml_path)
            annotations = await self._load_annotations(warnings)
            snapshot = doc.snapshot()
            topology = snapshot.get("topology") or {}
            nodes = topology.get("nodes") or {}
            if migrate_legacy_labels(nodes, annotations):
                await self._persist_migrated(annotations)
            compiled = compile_topology(snapshot, annotations, self.inventory)
        except (TopologySyncError, OSError) as e:
            logger.error(f"Failed to compile {self.yaml_path}: {e}")
            return CompileResult(success=False, error=str(e))
        finally:
            self._leave()

        self.document = doc
        self.annotations = annotations
        result = CompileResult(
            elements=compiled.elements,
            preset_layout=compiled.preset_layout,
            warnings=warnings + compiled.warnings,
        )
        self.last_result = result
        return result

    async def _load_annotations(self, warnings: list[str]) -> TopologyAnnotations:
        try:
            return await asyncio.to_thread(self.store.load)
        except TopologySyncError as e:
            logger.warning(f"{e.message}; continuing without annotations")
            warnings.append(e.message)
            return TopologyAnnotations()

    async def _persist_migrated(self, annotations: TopologyAnnotations) -> None:
        # Migration is best effort; the compile continues with in-memory annotations
        try:
            await asyncio.to_thread(self.store.save, annotations)
        except OSError as e:
            logger.error(f"Failed to write migrated annotations to {self.store.path}: {e}")

    # -------------------------------------------------------------------------
    # Graph -> document
    # -------------------------------------------------------------------------

    async def save(self, payload: Any, mode: EditorMode | None = None) -> SaveResult:
        """Apply an edited graph.

        Args:
            payload: Graph elements, as JSON text, decoded JSON or models
            mode: Overrides the session mode for this save

        Returns:
            SaveResult; failures leave the in-memory document unchanged
        """
        try:
            if isinstance(payload, (str, bytes)):
                payload = json.loads(payload)
            elements = parse_graph_payload(payload)
        except json.JSONDecodeError as e:
            logger.error(f"Graph payload is not valid JSON: {e}")
            return SaveResult(success=False, error=f"Invalid payload JSON: {e}")
        except PayloadValidationError as e:
            logger.error(f"{e.message}: {e.errors}")
            return SaveResult(success=False, error=e.message)

        save_mode = EditorMode(mode) if mode is not None else self.mode
        async with self._lock:
            result = await self._save(elements, save_mode)

        if self.pending_refresh:
            await self.refresh()
        return result

    async def _save(
        self,
        elements: list[NodeElement | GroupElement | EdgeElement],
        mode: EditorMode,
    ) -> SaveResult:
        self._enter(SessionState.WRITING)
        try:
            if mode == EditorMode.VIEW:
                logger.info("View mode: saving annotations only")
                annotations = merge_from_payload(elements, self.annotations)
                written = await asyncio.to_thread(self.store.save, annotations)
                self.annotations = annotations
                return SaveResult(annotations_written=written)

            if self.document is None:
                raise DocumentNotLoadedError("No parsed topology document is loaded", path=str(self.yaml_path))

            working = copy.deepcopy(self.document)
            outcome = apply_graph(working, elements)
            annotations = merge_from_payload(
                elements, self.annotations, outcome.node_keys, outcome.renamed_nodes
            )
            self.internal_update = True
            try:
                document_written, annotations_written = await asyncio.to_thread(
                    self._commit_files, working, annotations
                )
            finally:
                self.internal_update = False
        except (TopologySyncError, OSError) as e:
            logger.error(f"Save failed for {self.yaml_path}: {e}")
            return SaveResult(success=False, error=str(e))
        finally:
            self._leave()

        self.document = working
        self.annotations = annotations
        return SaveResult(
            document_written=document_written,
            annotations_written=annotations_written,
            skipped_links=outcome.skipped_links,
            renamed_nodes=outcome.renamed_nodes,
        )

    def _commit_files(self, working: TopologyDocument, annotations: TopologyAnnotations) -> tuple[bool, bool]:
        """Write the document and the sidecar together, or neither.

        Returns:
            (document_written, annotations_written)
        """
        transaction = FileTransaction()
        annotations_staged = self.store.stage(annotations, transaction)
        new_text = stage_document(working, transaction)
        if len(transaction):
            transaction.commit()
        if new_text is not None:
            working.source_text = new_text
            logger.info(f"Saved topology document {working.path}")
        return new_text is not None, annotations_staged

    # -------------------------------------------------------------------------
    # Mode and file watching
    # -------------------------------------------------------------------------

    async def switch_mode(self, mode: EditorMode) -> CompileResult:
        """Switch between edit and view mode, then re-render."""
        async with self._lock:
            self._enter(SessionState.SWITCHING_MODE)
            try:
                previous, self.mode = self.mode, EditorMode(mode)
                logger.info(f"Switched editor mode {previous.value} -> {self.mode.value}")
            finally:
                self._leave()
        return await self.refresh()

    async def on_file_changed(self) -> CompileResult | None:
        """Handle an external change notification for the topology file.

        Returns:
            The new compile result, or None when the change was our own write
        """
        if self.internal_update:
            logger.debug(f"Ignoring change to {self.yaml_path} from our own save")
            return None
        if self.document is not None:
            text = await asyncio.to_thread(_read_text, self.yaml_path)
            if text == self.document.source_text:
                logger.debug(f"{self.yaml_path} unchanged since last sync")
                return None
        return await self.refresh()
