"""
Snapshot verification engine.

This module replays every recorded call from the snapshot log against the
current source code and reports structural drift between the recorded
result and the new one.
"""
from __future__ import annotations

import asyncio
import enum
import importlib.util
import inspect
import logging
import sys
import types
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from . import serializer
from .constants import SNAPSHOT_FILE
from .differ import Change, DiffConfig, Differ
from .errors import NoFilesMatchedError, NoSnapshotsError
from .exports import ExportScanner
from .paths import find_source_files
from .storage import CaptureEvent, SnapshotLog, group_events

logger = logging.getLogger(__name__)


class FunctionStatus(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"


@dataclass
class ReplayResult:
    """Outcome of replaying one capture event."""

    event: CaptureEvent
    changes: list[Change] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and not self.changes


@dataclass
class FunctionResult:
    """Outcome of replaying every capture event of one function."""

    fn_name: str
    status: FunctionStatus
    total: int = 0
    failed: int = 0
    source: Optional[Path] = None
    replays: list[ReplayResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status in (FunctionStatus.PASSED, FunctionStatus.SKIPPED)


@dataclass
class VerificationReport:
    """Outcome of a whole verification run."""

    results: list[FunctionResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and all(result.passed for result in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def count(self, status: FunctionStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    def to_summary(self) -> dict[str, Any]:
        """Summary suitable for writing as JSON."""
        return {
            "passed": self.passed,
            "error": self.error,
            "functions": len(self.results),
            "replays": sum(result.total for result in self.results),
            "failed_replays": sum(result.failed for result in self.results),
            "statuses": {status.value: self.count(status) for status in FunctionStatus},
            "results": [
                {
                    "fn_name": result.fn_name,
                    "status": result.status.value,
                    "total": result.total,
                    "failed": result.failed,
                    "source": str(result.source) if result.source else None,
                    "drift": [
                        {
                            "at": replay.event.at,
                            "error": replay.error,
                            "changes": [serializer.encode(change.to_dict()) for change in replay.changes],
                        }
                        for replay in result.replays
                        if not replay.passed
                    ],
                }
                for result in self.results
            ],
            "timestamp": datetime.now().isoformat(),
        }


class FunctionRegistry:
    """Maps recorded function names to callables loaded from current source.

    Built once per verification run: exported names are found statically and
    only the modules that export a wanted name are imported. Modules are
    registered under the name an ordinary import would give them, so values
    decoded later resolve their classes to the same module objects.
    """

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root).resolve()
        self._functions: dict[str, tuple[Callable, Path]] = {}
        self._module_cache: dict[Path, types.ModuleType] = {}

        # Add project directory (and a src/ layout) to Python path for imports
        for import_root in (self.project_root, self.project_root / "src"):
            if import_root.is_dir() and str(import_root) not in sys.path:
                sys.path.insert(0, str(import_root))

    def build(self, files: list[Path], names: list[str]) -> "FunctionRegistry":
        remaining = [name for name in names if name not in self._functions]

        for exports in ExportScanner().scan_files(files):
            if not remaining:
                break
            wanted = [name for name in remaining if exports.exports(name)]
            if not wanted:
                continue

            try:
                module = self.load_module(exports.path)
            except Exception as e:
                logger.warning(f"Could not load functions from {exports.path}: {e}")
                continue

            for name in wanted:
                fn = getattr(module, name, None)
                if callable(fn):
                    self._functions[name] = (fn, exports.path)
                    remaining.remove(name)
        return self

    def lookup(self, name: str) -> Optional[tuple[Callable, Path]]:
        return self._functions.get(name)

    def _locate(self, path: Path) -> tuple[str, Optional[Path]]:
        """Dotted module name of `path` and the sys.path entry it is relative to.

        The closest enclosing sys.path entry wins, so ``src/pkg/geo.py`` is
        ``pkg.geo`` once ``src`` is importable. Files outside every entry fall
        back to their bare stem.
        """
        best: Optional[tuple[list[str], Path]] = None
        for entry in sys.path:
            try:
                base = Path(entry or ".").resolve()
                rel = path.relative_to(base)
            except (OSError, ValueError):
                continue
            parts = list(rel.with_suffix("").parts)
            if len(parts) > 1 and parts[-1] == "__init__":
                parts = parts[:-1]
            if not parts or not all(part.isidentifier() for part in parts):
                continue
            if best is None or len(parts) < len(best[0]):
                best = (parts, base)

        if best is None:
            return path.stem, None
        return ".".join(best[0]), best[1]

    def module_name(self, path: Path) -> str:
        return self._locate(Path(path).resolve())[0]

    def load_module(self, path: Path) -> types.ModuleType:
        """Import a source file by path, with its package context set up.

        A module already imported from the same file is reused rather than
        executed a second time.
        """
        path = Path(path).resolve()
        if path in self._module_cache:
            return self._module_cache[path]

        module_name, base = self._locate(path)
        parts = module_name.split(".")

        existing = sys.modules.get(module_name)
        if existing is not None and _module_file(existing) == path:
            self._module_cache[path] = existing
            return existing

        # Ensure parent packages exist in sys.modules so relative imports work
        for i in range(1, len(parts)):
            pkg_name = ".".join(parts[:i])
            if pkg_name not in sys.modules:
                pkg = types.ModuleType(pkg_name)
                pkg_dir = base.joinpath(*parts[:i]) if base is not None else path.parent
                if pkg_dir.is_dir():
                    pkg.__path__ = [str(pkg_dir)]
                sys.modules[pkg_name] = pkg

        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Could not load module: {module_name}")

        module = importlib.util.module_from_spec(spec)
        if len(parts) > 1:
            module.__package__ = ".".join(parts[:-1])

        # Do not shadow an unrelated module that is already imported
        registered = existing is None
        if registered:
            sys.modules[module_name] = module

        try:
            spec.loader.exec_module(module)
        except Exception:
            if registered:
                sys.modules.pop(module_name, None)
            raise

        self._module_cache[path] = module
        return module


def _module_file(module: types.ModuleType) -> Optional[Path]:
    filename = getattr(module, "__file__", None)
    if not filename:
        return None
    try:
        return Path(filename).resolve()
    except OSError:
        return None


def _run_awaitable(awaitable: Any) -> Any:
    async def _await():
        return await awaitable

    return asyncio.run(_await())


class Verifier:
    """Replays captured calls and reports drift."""

    def __init__(
        self,
        project_root: Optional[Path] = None,
        snapshot_log: Optional[SnapshotLog] = None,
        diff_config: Optional[DiffConfig] = None,
    ):
        self.project_root = Path(project_root or Path.cwd()).resolve()
        self.snapshot_log = snapshot_log or SnapshotLog(self.project_root / SNAPSHOT_FILE)
        self.differ = Differ(diff_config)

    def replay(self, fn: Callable, event: CaptureEvent) -> ReplayResult:
        """Call `fn` with the recorded arguments and diff the result."""
        try:
            result = fn(*event.args, **event.kwargs)
            if inspect.isawaitable(result):
                result = _run_awaitable(result)
            new_result = serializer.normalize(result)
        except Exception as e:
            return ReplayResult(event, error=f"{type(e).__name__}: {e}")
        return ReplayResult(event, changes=self.differ.diff(event.result, new_result))

    def verify_function(self, fn: Callable, fn_name: str, events: list[CaptureEvent]) -> FunctionResult:
        """Replay every recorded call of one function."""
        if not events:
            logger.info(f"No snapshots found for function '{fn_name}'.")
            return FunctionResult(fn_name, FunctionStatus.SKIPPED)

        result = FunctionResult(fn_name, FunctionStatus.PASSED, total=len(events))
        for event in events:
            replay = self.replay(fn, event)
            result.replays.append(replay)

            if replay.passed:
                logger.info(f"  ✓ {fn_name} passed semantic check.")
                continue

            result.failed += 1
            if replay.error:
                logger.error(f"  ✗ {fn_name} raised during replay: {replay.error}")
            else:
                logger.error(f"  ✗ Drift detected in {fn_name}!")
                for change in replay.changes:
                    logger.error(f"    {change}")

        if result.failed:
            result.status = FunctionStatus.FAILED
        else:
            logger.info(f"All {result.total} snapshots passed for {fn_name}.")
        return result

    def verify(self, pattern: Optional[str] = None) -> VerificationReport:
        """Replay the whole snapshot log against the files matching `pattern`."""
        try:
            records = self.snapshot_log.read_records(required=True)
            files = find_source_files(self.project_root, pattern)
            if not files:
                raise NoFilesMatchedError("No source files found.")
        except (NoSnapshotsError, NoFilesMatchedError) as e:
            logger.error(str(e))
            return VerificationReport(error=str(e))

        names = list(OrderedDict.fromkeys(record["fn_name"] for record in records))
        registry = FunctionRegistry(self.project_root).build(files, names)

        # Arguments are rebuilt only now, against the modules the registry loaded
        events = self.snapshot_log.decode_records(records, reconstruct=True)
        groups: OrderedDict[str, list[CaptureEvent]] = group_events(events)
        logger.info(f"Verifying {len(groups)} functions against {len(events)} snapshots...")

        report = VerificationReport()

        for fn_name, fn_events in groups.items():
            entry = registry.lookup(fn_name)
            if entry is None:
                logger.warning(f"Function '{fn_name}' not found in any source file.")
                report.results.append(
                    FunctionResult(fn_name, FunctionStatus.NOT_FOUND, total=len(fn_events))
                )
                continue

            fn, source = entry
            logger.info(f"Checking function '{fn_name}' in {self._display(source)}")
            function_result = self.verify_function(fn, fn_name, fn_events)
            function_result.source = source
            report.results.append(function_result)

        return report

    def _display(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.project_root))
        except ValueError:
            return str(path)
