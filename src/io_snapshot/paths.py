"""
Deterministic locations for session state and backups.

The session directory lives under the system temp directory and is keyed by
an md5 of the project root, so concurrent sessions in different projects
never share state.
"""
from __future__ import annotations

import glob
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Optional

from .constants import (
    BACKUP_EXT,
    DEFAULT_PATTERN,
    IGNORED_DIRS,
    LOCAL_BACKUP_DIR,
    PID_FILE_NAME,
    TEMP_SESSION_DIR_PREFIX,
)


def project_hash(project_root: Path) -> str:
    """Return the md5 hex digest identifying a project root."""
    return hashlib.md5(str(project_root).encode("utf-8")).hexdigest()


class SessionPaths:
    """Resolves session, PID and backup paths for one project."""

    def __init__(self, project_root: Optional[Path] = None, temp_root: Optional[Path] = None):
        self.project_root = Path(project_root or Path.cwd()).resolve()
        self.temp_root = Path(temp_root or tempfile.gettempdir())

    @property
    def session_dir(self) -> Path:
        return self.temp_root / f"{TEMP_SESSION_DIR_PREFIX}{project_hash(self.project_root)}"

    @property
    def pid_file(self) -> Path:
        return self.session_dir / PID_FILE_NAME

    @property
    def primary_backup_dir(self) -> Path:
        return self.session_dir / "backup"

    @property
    def local_backup_dir(self) -> Path:
        return self.project_root / LOCAL_BACKUP_DIR

    def ensure_session_dir(self) -> Path:
        self.session_dir.mkdir(parents=True, exist_ok=True)
        return self.session_dir

    def relative_path(self, file_path: str | Path) -> Path:
        """Map a file path to its location relative to the project root.

        Files outside the project keep their absolute path with the anchor
        stripped, so they still map into the backup directories.
        """
        path = Path(file_path)
        if not path.is_absolute():
            path = self.project_root / path
        path = Path(os.path.normpath(path))
        try:
            return path.relative_to(self.project_root)
        except ValueError:
            return path.relative_to(path.anchor)

    def primary_backup_path(self, file_path: str | Path) -> Path:
        rel = self.relative_path(file_path)
        return self.primary_backup_dir / f"{rel}{BACKUP_EXT}"

    def local_backup_path(self, file_path: str | Path) -> Path:
        rel = self.relative_path(file_path)
        return self.local_backup_dir / f"{rel}{BACKUP_EXT}"

    def original_from_local_backup(self, backup_path: Path) -> Path:
        """Invert `local_backup_path` for a file found in the backup directory."""
        rel = Path(backup_path).relative_to(self.local_backup_dir)
        return self.project_root / str(rel)[: -len(BACKUP_EXT)]


def find_source_files(project_root: Path, pattern: Optional[str] = None) -> list[Path]:
    """Resolve a glob pattern to candidate Python source files.

    Backup artifacts and dependency or tooling directories are excluded. A
    pattern naming a directory matches every source file below it.
    """
    project_root = Path(project_root).resolve()
    pattern = pattern or DEFAULT_PATTERN
    full_pattern = pattern if os.path.isabs(pattern) else os.path.join(str(project_root), pattern)
    if os.path.isdir(full_pattern):
        full_pattern = os.path.join(full_pattern, DEFAULT_PATTERN)

    files = set()
    for match in glob.glob(full_pattern, recursive=True):
        path = Path(match).resolve()
        if not path.is_file() or path.suffix != ".py":
            continue
        try:
            parts = path.relative_to(project_root).parts
        except ValueError:
            parts = path.parts
        if any(part in IGNORED_DIRS for part in parts[:-1]):
            continue
        files.add(path)
    return sorted(files)
