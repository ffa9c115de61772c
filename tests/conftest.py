"""
Pytest configuration and shared fixtures for io_snapshot tests.
"""

import logging
import sys
import uuid
from pathlib import Path

import pytest

from io_snapshot import shim
from io_snapshot.backup import BackupStore
from io_snapshot.paths import SessionPaths
from io_snapshot.storage import SnapshotLog
from io_snapshot.transformer import Instrumenter


class RecordingTransport(shim.CaptureTransport):
    """Transport that keeps event lines in memory instead of posting them."""

    def __init__(self):
        super().__init__()
        self.lines = []

    def send(self, line):
        self.lines.append(line)


@pytest.fixture
def project_dir(tmp_path):
    """Create an empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def session_paths(tmp_path, project_dir):
    """Session paths with the temp session directory kept under tmp_path."""
    temp_root = tmp_path / "systemp"
    temp_root.mkdir()
    return SessionPaths(project_dir, temp_root=temp_root)


@pytest.fixture
def backups(session_paths):
    return BackupStore(session_paths)


@pytest.fixture
def instrumenter(backups):
    return Instrumenter(backups=backups)


@pytest.fixture
def snapshot_log(project_dir):
    return SnapshotLog(project_dir / ".snaps.jsonl")


@pytest.fixture
def module_name():
    """A module name no other test uses, so imports never collide."""
    return f"snapmod_{uuid.uuid4().hex[:10]}"


@pytest.fixture
def write_module(project_dir):
    """Write a source file into the project and return its path."""

    def _write(name, source):
        path = project_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source, encoding="utf-8")
        return path.resolve()

    return _write


@pytest.fixture
def recording_transport():
    """Route every wrapped call to an in-memory transport."""
    transport = RecordingTransport()
    previous = shim.set_transport(transport)
    yield transport
    shim.set_transport(previous)


@pytest.fixture(autouse=True)
def isolated_imports(monkeypatch):
    """Undo sys.path and sys.modules changes made by loading project files."""
    # Rewritten files can keep their size and mtime second; stale bytecode must not be reused
    monkeypatch.setattr(sys, "dont_write_bytecode", True)
    saved_path = list(sys.path)
    saved_modules = set(sys.modules)
    yield
    sys.path[:] = saved_path
    for name in set(sys.modules) - saved_modules:
        if name.startswith("snapmod_") or name.startswith("pkg_"):
            del sys.modules[name]


@pytest.fixture(autouse=True)
def package_logger():
    """Undo handlers and level set by command line entry points."""
    logger = logging.getLogger("io_snapshot")
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    yield logger
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)
