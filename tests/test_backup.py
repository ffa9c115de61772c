"""Tests for session paths and the backup store."""

from pathlib import Path

from io_snapshot.paths import SessionPaths, find_source_files, project_hash


class TestSessionPaths:
    """Tests for deterministic session locations."""

    def test_session_dir_is_keyed_by_project(self, tmp_path):
        """Test that the session directory depends on the project root."""
        a = SessionPaths(tmp_path / "a", temp_root=tmp_path)
        b = SessionPaths(tmp_path / "b", temp_root=tmp_path)
        assert a.session_dir != b.session_dir
        assert a.session_dir.name == f"io-snapshot-session-{project_hash(a.project_root)}"
        assert a.session_dir == SessionPaths(tmp_path / "a", temp_root=tmp_path).session_dir

    def test_backup_paths(self, session_paths, project_dir):
        """Test the primary and fallback backup locations."""
        target = project_dir / "pkg" / "mod.py"
        assert session_paths.primary_backup_path(target) == (
            session_paths.session_dir / "backup" / "pkg" / "mod.py.snap.bak"
        )
        assert session_paths.local_backup_path("pkg/mod.py") == (
            project_dir / ".io-snapshot-backups" / "pkg" / "mod.py.snap.bak"
        )

    def test_original_from_local_backup(self, session_paths, project_dir):
        """Test mapping a fallback backup back to its source file."""
        target = project_dir / "pkg" / "mod.py"
        backup = session_paths.local_backup_path(target)
        assert session_paths.original_from_local_backup(backup) == target


class TestFindSourceFiles:
    """Tests for resolving file patterns."""

    def test_default_pattern_skips_ignored(self, project_dir, write_module):
        """Test that tooling directories and backups are excluded."""
        kept = write_module("pkg/mod.py", "")
        write_module(".venv/lib/dep.py", "")
        write_module("__pycache__/x.py", "")
        write_module(".io-snapshot-backups/mod.py.snap.bak", "")
        write_module("notes.txt", "")
        assert find_source_files(project_dir) == [kept]

    def test_directory_pattern(self, project_dir, write_module):
        """Test that a directory pattern matches files below it."""
        inner = write_module("src/a.py", "")
        write_module("other/b.py", "")
        assert find_source_files(project_dir, "src") == [inner]

    def test_no_match(self, project_dir):
        """Test that an unmatched pattern returns an empty list."""
        assert find_source_files(project_dir, "missing/**/*.py") == []


class TestBackupStore:
    """Tests for backing up and restoring files."""

    def test_backup_writes_both_copies(self, backups, write_module):
        """Test that a backup lands in both locations."""
        path = write_module("mod.py", "original\n")
        primary, fallback = backups.backup(path)
        assert primary.read_text() == "original\n"
        assert fallback.read_text() == "original\n"
        assert backups.has_backup(path)

    def test_restore_from_primary(self, backups, write_module):
        """Test restoring modified content from the primary copy."""
        path = write_module("mod.py", "original\n")
        backups.backup(path)
        path.write_text("changed\n")
        assert backups.restore(path) is True
        assert path.read_text() == "original\n"

    def test_restore_from_fallback(self, backups, write_module, caplog):
        """Test that a purged temp session falls back to the local copy."""
        path = write_module("mod.py", "original\n")
        primary, _ = backups.backup(path)
        primary.unlink()
        path.write_text("changed\n")

        assert backups.restore(path) is True
        assert path.read_text() == "original\n"
        assert "Restoring from local fallback" in caplog.text

    def test_restore_without_backup(self, backups, write_module, caplog):
        """Test that a missing backup is reported, not raised."""
        path = write_module("mod.py", "content\n")
        assert backups.restore(path) is False
        assert path.read_text() == "content\n"
        assert "No backup found" in caplog.text

    def test_discard_prunes_directories(self, backups, write_module, session_paths):
        """Test that discarding removes backups and empty directories."""
        path = write_module("deep/nested/mod.py", "x\n")
        backups.backup(path)
        backups.discard(path)
        assert not backups.has_backup(path)
        assert not session_paths.local_backup_dir.exists()
        assert not session_paths.primary_backup_dir.exists()

    def test_backed_up_files_and_cleanup(self, backups, write_module, session_paths):
        """Test listing backed-up files and removing all session state."""
        a = write_module("a.py", "a\n")
        b = write_module("pkg/b.py", "b\n")
        backups.backup(a)
        backups.backup(b)
        assert backups.backed_up_files() == sorted([a, b])

        removed = backups.cleanup()
        assert set(removed) == {session_paths.session_dir, session_paths.local_backup_dir}
        assert backups.backed_up_files() == []

    def test_relative_paths_resolve_against_project(self, backups, project_dir, write_module):
        """Test that relative file paths are taken from the project root."""
        write_module("rel.py", "r\n")
        backups.backup(Path("rel.py"))
        assert backups.has_backup(project_dir / "rel.py")
