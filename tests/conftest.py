"""
Pytest configuration and fixtures.
"""
import os
import shutil
import sys
import tempfile

# Keep workspaces out of the checkout before importing app
SESSION_WORKDIR_ROOT = tempfile.mkdtemp(prefix="build-service-tests-")
os.environ["BUILD_WORKDIR_ROOT"] = SESSION_WORKDIR_ROOT

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from app.api.build import get_pipeline
from app.core.pipeline import BuildPipeline
from app.core.workspace import WorkspaceManager

from fakes import FakeGitRunner


@pytest.fixture(scope="session", autouse=True)
def session_workdir_root():
    """Remove the session workdir root once the tests are done."""
    yield SESSION_WORKDIR_ROOT
    shutil.rmtree(SESSION_WORKDIR_ROOT, ignore_errors=True)


@pytest.fixture
def workdir_root(tmp_path):
    """Root directory for workspaces of one test."""
    return tmp_path / "workdir"


@pytest.fixture
def workspaces(workdir_root):
    """Workspace manager rooted in a temp directory."""
    return WorkspaceManager(workdir_root)


@pytest.fixture
def make_pipeline(workspaces):
    """Factory for pipelines driven by a FakeGitRunner."""
    def _make(runner=None, **kwargs):
        return BuildPipeline(workspaces=workspaces, runner=runner or FakeGitRunner(), **kwargs)
    return _make


@pytest.fixture
def fake_runner():
    """Fake git runner whose clone contains one artifact."""
    return FakeGitRunner(files={"out.zip": b"PK\x03\x04zip-bytes", "README.md": "# widget\n"})


@pytest.fixture
def client(make_pipeline, fake_runner):
    """Create a test client whose builds use the fake git runner."""
    app.dependency_overrides[get_pipeline] = lambda: make_pipeline(fake_runner)
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
