# services/api/core/scratch.py
"""Per-request scratch directories, removed on every exit path."""
from __future__ import annotations

import logging
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

SCOPE_PREFIX = "pdf-email-"


def new_job_id() -> str:
    return uuid.uuid4().hex


class ScratchScope:
    """
    A job-private directory of transient files (fetched document, page images).

    Owned by exactly one pipeline run. close() is idempotent; only the first
    call removes anything.
    """

    def __init__(self, job_id: str, path: Path) -> None:
        self.job_id = job_id
        self._path = path
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def file(self, name: str) -> Path:
        # Names come from our own code (document.pdf, page-<n>.png) but never
        # let one escape the job directory.
        candidate = (self._path / name).resolve()
        if candidate.parent != self._path.resolve():
            raise ValueError(f"Invalid scratch file name: {name!r}")
        return candidate

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            shutil.rmtree(self._path)
            logger.info(f"Cleaned up scratch directory: {self._path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error cleaning up scratch directory {self._path}: {e}")


class ScratchManager:
    """Creates job-isolated scopes under a shared root."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def scope_path(self, job_id: str) -> Path:
        return self.root / f"{SCOPE_PREFIX}{job_id}"

    @contextmanager
    def open_scope(self, job_id: str) -> Iterator[ScratchScope]:
        """
        Create <root>/pdf-email-<job_id> and remove it when the block exits,
        whether it returns normally or raises.

        exist_ok=False: a colliding job id is a bug, not something to share.
        """
        path = self.scope_path(job_id)
        self.root.mkdir(parents=True, exist_ok=True)
        path.mkdir(exist_ok=False)
        logger.info(f"Created scratch directory: {path}")

        scope = ScratchScope(job_id, path)
        try:
            yield scope
        finally:
            scope.close()
