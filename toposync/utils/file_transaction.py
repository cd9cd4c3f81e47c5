"""Commit several text file writes together.

Each staged write goes to a temp file in the target's directory first. Targets
are replaced with ``os.replace`` only once every temp file was written, and
targets already replaced are restored if a later step fails.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class _StagedFile:
    target: Path
    content: str | None  # None removes the target
    temp_path: Path | None = None
    previous: str | None = None


class FileTransaction:
    """Stage writes and deletions, then apply them all or none."""

    def __init__(self) -> None:
        self._staged: list[_StagedFile] = []

    def __len__(self) -> int:
        return len(self._staged)

    def write(self, path: Path | str, content: str) -> None:
        self._staged.append(_StagedFile(Path(path), content))

    def delete(self, path: Path | str) -> None:
        self._staged.append(_StagedFile(Path(path), None))

    def commit(self) -> None:
        """Apply every staged change.

        Raises:
            OSError: If any step fails; targets are left as they were
        """
        try:
            for staged in self._staged:
                if staged.target.exists():
                    staged.previous = staged.target.read_text(encoding="utf-8")
                if staged.content is not None:
                    staged.temp_path = self._write_temp(staged.target, staged.content)
        except OSError:
            self._discard_temps()
            self._staged = []
            raise

        applied: list[_StagedFile] = []
        try:
            for staged in self._staged:
                if staged.temp_path is not None:
                    os.replace(staged.temp_path, staged.target)
                    staged.temp_path = None
                elif staged.target.exists():
                    staged.target.unlink()
                applied.append(staged)
        except OSError as e:
            logger.error(f"File commit failed, restoring {len(applied)} file(s): {e}")
            self._rollback(applied)
            self._discard_temps()
            raise
        finally:
            self._staged = []

    @staticmethod
    def _write_temp(target: Path, content: str) -> Path:
        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if target.exists():
                shutil.copymode(target, temp_path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path

    def _discard_temps(self) -> None:
        for staged in self._staged:
            if staged.temp_path is not None:
                staged.temp_path.unlink(missing_ok=True)
                staged.temp_path = None

    @staticmethod
    def _rollback(applied: list[_StagedFile]) -> None:
        for staged in reversed(applied):
            try:
                if staged.previous is None:
                    staged.target.unlink(missing_ok=True)
                else:
                    staged.target.write_text(staged.previous, encoding="utf-8")
            except OSError as e:
                logger.error(f"Could not restore {staged.target}: {e}")
