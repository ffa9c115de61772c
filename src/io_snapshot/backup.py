"""
Backup store for instrumented files.

Every file is copied to two places before it is rewritten: a primary copy in
the per-project temp session directory and a fallback copy under the
project-local backup directory, which survives the OS purging temp files.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from .constants import BACKUP_EXT
from .paths import SessionPaths

logger = logging.getLogger(__name__)


class BackupStore:
    """Captures and restores pristine copies of source files."""

    def __init__(self, paths: Optional[SessionPaths] = None):
        self.paths = paths or SessionPaths()

    def primary_path(self, file_path: str | Path) -> Path:
        return self.paths.primary_backup_path(file_path)

    def fallback_path(self, file_path: str | Path) -> Path:
        return self.paths.local_backup_path(file_path)

    def has_backup(self, file_path: str | Path) -> bool:
        """True when a primary backup exists, i.e. the file counts as instrumented."""
        return self.primary_path(file_path).exists()

    def backup(self, file_path: str | Path) -> tuple[Path, Path]:
        """Copy the current content of a file to both backup locations."""
        source = self._resolve(file_path)
        primary = self.primary_path(source)
        fallback = self.fallback_path(source)

        for target in (primary, fallback):
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)

        logger.debug(f"Backed up {file_path} to {primary} and {fallback}")
        return primary, fallback

    def restore(self, file_path: str | Path) -> bool:
        """Restore a file from its primary backup, falling back to the local copy."""
        target = self._resolve(file_path)
        primary = self.primary_path(target)
        fallback = self.fallback_path(target)

        if primary.exists():
            shutil.copyfile(primary, target)
        elif fallback.exists():
            logger.warning(f"Primary backup not found for {file_path}. Restoring from local fallback.")
            shutil.copyfile(fallback, target)
        else:
            logger.error(f"No backup found for {file_path}.")
            return False
        return True

    def discard(self, file_path: str | Path) -> None:
        """Delete both backup copies of a file."""
        roots = (self.paths.primary_backup_dir, self.paths.local_backup_dir)
        for root, backup_path in zip(roots, (self.primary_path(file_path), self.fallback_path(file_path))):
            if backup_path.exists():
                backup_path.unlink()
            self._prune_empty_dirs(backup_path.parent, root)

    @staticmethod
    def _prune_empty_dirs(directory: Path, root: Path) -> None:
        """Remove empty directories from `directory` up to and including `root`."""
        while directory.exists() and not any(directory.iterdir()):
            directory.rmdir()
            if directory == root:
                break
            directory = directory.parent

    def backed_up_files(self) -> list[Path]:
        """Original paths of every file with a fallback backup."""
        backup_dir = self.paths.local_backup_dir
        if not backup_dir.exists():
            return []
        return sorted(
            self.paths.original_from_local_backup(bak)
            for bak in backup_dir.rglob(f"*{BACKUP_EXT}")
        )

    def cleanup(self) -> list[Path]:
        """Remove the session directory and the local backup directory."""
        removed = []
        for directory in (self.paths.session_dir, self.paths.local_backup_dir):
            if directory.exists():
                shutil.rmtree(directory, ignore_errors=True)
                removed.append(directory)
        return removed

    def _resolve(self, file_path: str | Path) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = self.paths.project_root / path
        return path
