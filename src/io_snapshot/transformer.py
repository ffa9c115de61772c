"""
Instrumentation engine.

This module rewrites Python source files so every exported function is
wrapped by the capture shim, and restores them from backup afterwards.

For an exported function ``f`` the rewrite produces::

    from io_snapshot.shim import record as _snap_record

    def _snap_f(...):
        ...
    f = _snap_record(_snap_f, 'f')

The shadow ``_snap_f`` starts with an underscore, so it is never exported.
A file is always backed up before it is touched and restored if anything goes
wrong while rewriting it.
"""
from __future__ import annotations

import ast
import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .backup import BackupStore
from .constants import DEFAULT_PATTERN, RECORDER_NAME, SHADOW_PREFIX, SHIM_MODULE
from .exports import FunctionNode, bound_names, exported_names
from .paths import SessionPaths, find_source_files
from .storage import SnapshotLog

logger = logging.getLogger(__name__)

BOOTSTRAP_SOURCE = f"from {SHIM_MODULE} import record as {RECORDER_NAME}"


class InjectionStatus(str, enum.Enum):
    INJECTED = "injected"
    UNCHANGED = "unchanged"  # nothing to wrap, file left as it was
    SKIPPED = "skipped"  # already injected and not forced
    FAILED = "failed"


@dataclass
class InjectionResult:
    """Outcome of instrumenting one file."""

    path: Path
    status: InjectionStatus
    wrapped: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class InjectionReport:
    """Outcome of instrumenting a set of files."""

    results: list[InjectionResult] = field(default_factory=list)

    def with_status(self, status: InjectionStatus) -> list[InjectionResult]:
        return [r for r in self.results if r.status is status]

    @property
    def injected(self) -> list[InjectionResult]:
        return self.with_status(InjectionStatus.INJECTED)

    @property
    def failed(self) -> list[InjectionResult]:
        return self.with_status(InjectionStatus.FAILED)

    def get_summary_stats(self) -> dict[str, int]:
        stats = {status.value: 0 for status in InjectionStatus}
        for result in self.results:
            stats[result.status.value] += 1
        stats["total"] = len(self.results)
        return stats


def has_bootstrap(tree: ast.Module) -> bool:
    """Check whether the recorder identifier is already bound at top level."""
    return any(RECORDER_NAME in bound_names(node) for node in tree.body)


def bootstrap_index(tree: ast.Module) -> int:
    """Index of the first statement that may follow the bootstrap.

    The module docstring and ``from __future__`` imports have to stay ahead
    of any other statement.
    """
    index = 0
    body = tree.body
    if body and isinstance(body[0], ast.Expr) and isinstance(body[0].value, ast.Constant) \
            and isinstance(body[0].value.value, str):
        index = 1
    while index < len(body) and isinstance(body[index], ast.ImportFrom) \
            and body[index].module == "__future__":
        index += 1
    return index


def _wrappable_name(node: ast.stmt, exported: set[str]) -> Optional[str]:
    """Return the exported function name a statement defines, if any."""
    name = None
    if isinstance(node, FunctionNode):
        name = node.name
    elif isinstance(node, ast.Assign):
        if len(node.targets) == 1 and isinstance(node.targets[0], ast.Name) \
                and isinstance(node.value, ast.Lambda):
            name = node.targets[0].id
    elif isinstance(node, ast.AnnAssign):
        if isinstance(node.target, ast.Name) and isinstance(node.value, ast.Lambda):
            name = node.target.id

    if name is None or name not in exported:
        return None
    # Never wrap a shadow again
    if name.startswith(SHADOW_PREFIX) or name == RECORDER_NAME:
        return None
    return name


def _wrapper_statement(name: str, shadow: str, anchor: ast.stmt) -> ast.Assign:
    """Build ``name = _snap_record(shadow, 'name')``."""
    call = ast.Call(
        func=ast.Name(id=RECORDER_NAME, ctx=ast.Load()),
        args=[ast.Name(id=shadow, ctx=ast.Load()), ast.Constant(value=name)],
        keywords=[],
    )
    statement = ast.Assign(targets=[ast.Name(id=name, ctx=ast.Store())], value=call)
    return ast.copy_location(statement, anchor)


def rewrite_tree(tree: ast.Module) -> list[str]:
    """Wrap every exported function of a parsed module in place.

    Returns the names that were wrapped. The bootstrap import is only added
    when at least one function was wrapped.
    """
    exported = exported_names(tree)
    new_body: list[ast.stmt] = []
    wrapped: list[str] = []

    for node in tree.body:
        name = _wrappable_name(node, exported)
        if name is None:
            new_body.append(node)
            continue

        shadow = f"{SHADOW_PREFIX}{name}"
        if isinstance(node, FunctionNode):
            node.name = shadow
        elif isinstance(node, ast.Assign):
            node.targets = [ast.copy_location(ast.Name(id=shadow, ctx=ast.Store()), node.targets[0])]
        else:
            node.target = ast.copy_location(ast.Name(id=shadow, ctx=ast.Store()), node.target)

        new_body.append(node)
        new_body.append(_wrapper_statement(name, shadow, node))
        wrapped.append(name)

    if not wrapped:
        return []

    tree.body = new_body
    if not has_bootstrap(tree):
        index = bootstrap_index(tree)
        tree.body[index:index] = ast.parse(BOOTSTRAP_SOURCE).body

    ast.fix_missing_locations(tree)
    return wrapped


def rewrite_source(source: str, filename: str = "<unknown>") -> tuple[Optional[str], list[str]]:
    """Instrument source text.

    Returns ``(new_source, wrapped_names)``; ``new_source`` is None when there
    was nothing to wrap. Raises SyntaxError when the source does not parse.
    """
    tree = ast.parse(source, filename=filename)
    wrapped = rewrite_tree(tree)
    if not wrapped:
        return None, []
    return ast.unparse(tree) + "\n", wrapped


class Instrumenter:
    """Injects the capture shim into source files and restores them."""

    def __init__(self, project_root: Optional[Path] = None, backups: Optional[BackupStore] = None):
        if backups is None:
            backups = BackupStore(SessionPaths(project_root))
        self.backups = backups
        self.project_root = backups.paths.project_root

    def find_files(self, pattern: Optional[str] = None) -> list[Path]:
        """Resolve a glob pattern to candidate source files."""
        return find_source_files(self.project_root, pattern)

    def display_path(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.project_root))
        except ValueError:
            return str(path)

    def inject(self, pattern: Optional[str] = None, force: bool = False) -> InjectionReport:
        """Instrument every file matching the pattern, one file at a time."""
        report = InjectionReport()
        files = self.find_files(pattern)

        if not files:
            logger.warning(f"No files found matching: {pattern or DEFAULT_PATTERN}")
            return report

        logger.info(f"Processing {len(files)} files...")
        for path in files:
            report.results.append(self.inject_file(path, force=force))
        return report

    def inject_file(self, path: Path, force: bool = False) -> InjectionResult:
        """Instrument one file; failures are restored and reported, never raised."""
        path = Path(path)
        if not path.is_absolute():
            path = self.project_root / path
        path = path.resolve()
        name = self.display_path(path)

        if self.backups.has_backup(path) and not force:
            logger.warning(f"Skipping {name} - already injected. Use --force to re-inject.")
            return InjectionResult(path, InjectionStatus.SKIPPED)

        # A forced run, or a purged temp session with only the fallback left,
        # finds the file possibly instrumented already
        had_backup = self.backups.has_backup(path) or self.backups.fallback_path(path).exists()
        try:
            if had_backup:
                self.backups.restore(path)
            self.backups.backup(path)
        except OSError as e:
            logger.error(f"Failed to back up {name}: {e}")
            if not had_backup:
                self.backups.discard(path)
            return InjectionResult(path, InjectionStatus.FAILED, error=str(e))

        try:
            with open(path, encoding="utf-8") as f:
                source = f.read()
            new_source, wrapped = rewrite_source(source, filename=str(path))
            if new_source is None:
                logger.info(f"No functions to inject in {name}, skipping.")
                self.backups.discard(path)
                return InjectionResult(path, InjectionStatus.UNCHANGED)

            with open(path, "w", encoding="utf-8") as f:
                f.write(new_source)
        except Exception as e:
            logger.error(f"Failed to inject {name}: {e}")
            self.backups.restore(path)
            self.backups.discard(path)
            return InjectionResult(path, InjectionStatus.FAILED, error=str(e))

        logger.info(f"Injected into {name}: {', '.join(wrapped)}")
        return InjectionResult(path, InjectionStatus.INJECTED, wrapped=wrapped)

    def restore(
        self,
        pattern: Optional[str] = None,
        keep_snapshots: bool = False,
        snapshot_log: Optional[SnapshotLog] = None,
    ) -> list[Path]:
        """Restore instrumented files and clean up backups.

        Without a pattern every backed-up file is restored and all session
        state is removed; with a pattern only the matching files are restored
        and only their backups discarded.
        """
        if pattern:
            candidates = self.find_files(pattern)
            files = [
                f for f in candidates
                if self.backups.has_backup(f) or self.backups.fallback_path(f).exists()
            ]
        else:
            files = self.backups.backed_up_files()

        if not files:
            logger.info("No instrumented files to restore.")

        restored = []
        for path in files:
            if self.backups.restore(path):
                logger.info(f"Restored {self.display_path(path)}")
                restored.append(path)

        if snapshot_log is not None and not keep_snapshots and snapshot_log.remove():
            logger.info(f"Removed {snapshot_log.path.name}")

        if pattern:
            for path in restored:
                self.backups.discard(path)
        else:
            for directory in self.backups.cleanup():
                logger.debug(f"Removed {directory}")

        return restored
