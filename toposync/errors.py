"""Exception hierarchy for the topology sync engine."""

from __future__ import annotations


class TopologySyncError(Exception):
    """Base exception for sync engine failures."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.message = message
        self.path = path


class TopologyParseError(TopologySyncError):
    """The topology document is malformed or structurally invalid."""
    pass


class DocumentNotLoadedError(TopologySyncError):
    """A save was attempted before the document was parsed."""
    pass


class AnnotationsError(TopologySyncError):
    """The annotation sidecar could not be decoded."""
    pass


class PayloadValidationError(TopologySyncError):
    """The graph payload received from the editor failed validation."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []
