"""
Workspace Manager - one isolated directory per build request.

Layout: <root>/<owner>+<name>-<unix_ts>[-<n>]/<owner>/<name>
The top-level directory is allocated atomically and removed as a whole.
"""
import logging
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

MAX_ALLOCATION_ATTEMPTS = 1000


class WorkspaceError(Exception):
    """Error allocating a workspace."""
    pass


@dataclass(frozen=True)
class Workspace:
    """An allocated workspace."""
    repository: str
    parent: Path  # unit of release
    path: Path  # clone target, <parent>/<owner>/<name>


def sanitize_repository(repository: str) -> str:
    """Flatten owner/name so it cannot nest or escape the workspace root."""
    return repository.replace("/", "+")


class WorkspaceManager:
    """Allocates and releases per-build workspaces."""

    def __init__(self, root: Path | str = "./workdir"):
        self._root = Path(root).absolute()

    @property
    def root(self) -> Path:
        return self._root

    def allocate(self, repository: str, timestamp: Optional[int] = None) -> Workspace:
        """
        Create a fresh workspace for a repository.

        The parent directory is created with mkdir (no exist_ok), so two
        allocations in the same second get different directories.
        The clone target itself is left for `git clone` to create.
        """
        ts = int(time.time()) if timestamp is None else timestamp
        base_name = f"{sanitize_repository(repository)}-{ts}"
        self._root.mkdir(parents=True, exist_ok=True)

        for attempt in range(MAX_ALLOCATION_ATTEMPTS):
            name = base_name if attempt == 0 else f"{base_name}-{attempt}"
            parent = self._root / name
            try:
                parent.mkdir()
            except FileExistsError:
                continue
            path = parent / repository
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                self.release(parent)
                raise
            logger.info(f"workspace_allocated workspace={parent.name}")
            return Workspace(repository=repository, parent=parent, path=path)

        raise WorkspaceError(f"Could not allocate workspace for {repository}")

    def release(self, parent: Path) -> bool:
        """
        Recursively remove an allocated workspace.

        Never raises: failure (including an already-removed path) is logged
        as a warning and reported as False.
        """
        try:
            shutil.rmtree(parent)
        except OSError as e:
            logger.warning(f"workspace_release_failed workspace={Path(parent).name} error={e}")
            return False
        logger.info(f"workspace_released workspace={Path(parent).name}")
        return True

    @contextmanager
    def workspace(self, repository: str) -> Iterator[Workspace]:
        """Allocate a workspace and release it on every exit path."""
        ws = self.allocate(repository)
        try:
            yield ws
        finally:
            self.release(ws.parent)

    def cleanup_stale(self, max_age_hours: int = 24) -> int:
        """Remove workspaces left behind by a crashed process."""
        if not self._root.is_dir():
            return 0
        try:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
            deleted = 0
            for item in self._root.iterdir():
                if item.is_dir():
                    mtime = datetime.fromtimestamp(item.stat().st_mtime, tz=timezone.utc)
                    if mtime < cutoff and self.release(item):
                        deleted += 1
            if deleted > 0:
                logger.info(f"cleanup_workspaces deleted={deleted}")
            return deleted
        except OSError as e:
            logger.warning(f"cleanup_workspaces_failed error_type={type(e).__name__}")
            return 0
