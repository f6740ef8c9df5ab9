"""
Tests for workspace allocation and release.
"""
import errno
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from app.core.workspace import WorkspaceManager, sanitize_repository


class TestAllocate:
    """Tests for workspace allocation."""

    def test_layout(self, workspaces, workdir_root):
        """Parent is named from the repo and timestamp; clone path nests owner/name."""
        ws = workspaces.allocate("acme/widget", timestamp=1700000000)
        assert ws.parent == workdir_root / "acme+widget-1700000000"
        assert ws.path == ws.parent / "acme" / "widget"
        assert ws.parent.is_dir()
        assert ws.path.parent.is_dir()
        # git clone creates the target itself
        assert not ws.path.exists()

    def test_same_timestamp_gets_distinct_directories(self, workspaces):
        """Two allocations in the same second never share a directory."""
        first = workspaces.allocate("acme/widget", timestamp=1700000000)
        second = workspaces.allocate("acme/widget", timestamp=1700000000)
        assert first.parent != second.parent
        assert second.parent.name == "acme+widget-1700000000-1"

    def test_failed_owner_directory_releases_parent(self, workspaces, workdir_root):
        """Allocation that fails halfway leaves nothing behind."""
        real_mkdir = Path.mkdir

        def mkdir(path, *args, **kwargs):
            if path.name == "acme":
                raise OSError(errno.ENOSPC, "No space left on device")
            return real_mkdir(path, *args, **kwargs)

        with patch.object(Path, "mkdir", mkdir):
            with pytest.raises(OSError):
                workspaces.allocate("acme/widget", timestamp=1700000000)

        assert list(workdir_root.iterdir()) == []

    def test_defaults_to_current_time(self, workspaces):
        """Without a timestamp the current unix time is used."""
        before = int(time.time())
        ws = workspaces.allocate("acme/widget")
        stamp = int(ws.parent.name.rsplit("-", 1)[1])
        assert stamp >= before

    def test_sanitize_repository(self):
        """Path separators cannot nest the parent directory."""
        assert sanitize_repository("acme/widget") == "acme+widget"


class TestRelease:
    """Tests for workspace removal."""

    def test_release_removes_tree(self, workspaces):
        """Release removes the whole parent, including checked-out files."""
        ws = workspaces.allocate("acme/widget")
        ws.path.mkdir()
        (ws.path / "file.txt").write_text("data")
        assert workspaces.release(ws.parent) is True
        assert not ws.parent.exists()

    def test_double_release_is_noop(self, workspaces):
        """Releasing an already-removed workspace warns instead of raising."""
        ws = workspaces.allocate("acme/widget")
        assert workspaces.release(ws.parent) is True
        assert workspaces.release(ws.parent) is False

    def test_context_manager_releases_on_error(self, workspaces):
        """The scoped workspace is removed even when the body raises."""
        with pytest.raises(RuntimeError):
            with workspaces.workspace("acme/widget") as ws:
                parent = ws.parent
                raise RuntimeError("boom")
        assert not parent.exists()

    def test_context_manager_releases_on_success(self, workspaces):
        """The scoped workspace is removed on normal exit."""
        with workspaces.workspace("acme/widget") as ws:
            assert ws.parent.is_dir()
        assert not ws.parent.exists()


class TestCleanupStale:
    """Tests for leftover workspace cleanup."""

    def test_removes_only_old_workspaces(self, workspaces):
        """Workspaces past the retention window are removed."""
        old = workspaces.allocate("acme/old", timestamp=1)
        fresh = workspaces.allocate("acme/fresh")
        two_days_ago = time.time() - 48 * 3600
        os.utime(old.parent, (two_days_ago, two_days_ago))

        assert workspaces.cleanup_stale(max_age_hours=24) == 1
        assert not old.parent.exists()
        assert fresh.parent.exists()

    def test_missing_root_is_fine(self, tmp_path):
        """Nothing to clean when the root was never created."""
        assert WorkspaceManager(tmp_path / "nope").cleanup_stale() == 0
