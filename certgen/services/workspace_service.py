"""
Workspace Service - Isolated per-request scratch directories.

Each request gets its own directory under the work root, named by a unique
request ID. All intermediate and output artifacts for that request live
inside it, and the whole tree is removed when the request ends.

Layout:
    {work_root}/{request_id}/
    ├── upload.jpg
    ├── Montserrat-Bold.ttf
    ├── overlay_600.png
    └── output.mp4
"""

import logging
import os
import shutil
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Union

from certgen.services.errors import ArtifactIOError

logger = logging.getLogger(__name__)


class WorkspaceManager:
    """
    Allocates and destroys per-request workspaces.

    Requests never share a directory, so no locking is needed between
    concurrent requests.
    """

    def __init__(self, work_root: Union[str, Path]):
        self.work_root = Path(work_root)

    @staticmethod
    def new_request_id() -> str:
        """Generate a unique request identifier."""
        return uuid.uuid4().hex

    def create_workspace(self, request_id: str) -> Path:
        """
        Create the workspace directory for a request.

        Args:
            request_id: Unique request identifier

        Returns:
            Path to a freshly created, writable directory

        Raises:
            ArtifactIOError: If the directory cannot be created or written
        """
        path = self.work_root / request_id
        try:
            self.work_root.mkdir(parents=True, exist_ok=True)
            # exist_ok=False: a reused ID must never share a workspace
            path.mkdir()
        except FileExistsError as e:
            raise ArtifactIOError(detail=f"Workspace already exists: {path}") from e
        except OSError as e:
            raise ArtifactIOError(detail=f"Cannot create workspace {path}: {e}") from e

        if not os.access(path, os.W_OK):
            shutil.rmtree(path, ignore_errors=True)
            raise ArtifactIOError(detail=f"Workspace is not writable: {path}")

        logger.debug(f"[{request_id}] Workspace created: {path}")
        return path

    def destroy_workspace(self, path: Union[str, Path]) -> bool:
        """
        Recursively remove a workspace. Safe to call on an absent path.

        Returns:
            True if a directory was removed, False if it was already gone
        """
        path = Path(path)
        if not path.exists():
            return False

        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            # Removed concurrently
            return False
        except OSError as e:
            logger.warning(f"Failed to clean up workspace {path}: {e}")
            raise ArtifactIOError(detail=f"Cannot remove workspace {path}: {e}") from e

        logger.debug(f"Workspace removed: {path}")
        return True

    @asynccontextmanager
    async def workspace(self, request_id: str) -> AsyncIterator["Workspace"]:
        """
        Scoped workspace: created on entry, destroyed on exit.

        A failure inside the block always destroys it, and a cleanup error is
        logged so the original failure is the one that propagates. On normal
        exit it survives only if hand_off() was called; its new owner must
        then call release().
        """
        lease = Workspace(request_id, self.create_workspace(request_id), self)
        try:
            yield lease
        except BaseException:
            self._discard(lease)
            raise
        if not lease.handed_off:
            lease.release()

    def _discard(self, lease: "Workspace") -> None:
        try:
            lease.release()
        except ArtifactIOError as e:
            logger.error(f"[{lease.request_id}] Workspace cleanup failed: {e.detail}")


@dataclass
class Workspace:
    """A live request workspace. Only the first release() has any effect."""

    request_id: str
    path: Path
    manager: WorkspaceManager = field(repr=False)
    handed_off: bool = False
    released: bool = False

    def hand_off(self) -> None:
        """Keep the workspace past the end of its scope."""
        self.handed_off = True

    def release(self) -> bool:
        if self.released:
            return False
        self.released = True
        return self.manager.destroy_workspace(self.path)
