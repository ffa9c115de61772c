"""
Snapshot testing tool for zero-regression refactoring.

This package instruments a project's exported functions, records their real
inputs and outputs through a background collector, and replays the recorded
calls against refactored code to detect behavioral drift.
"""

import logging
import sys

__version__ = "0.1.0"

# Configure logging for the package
def configure_logging(level=logging.INFO):
    """Configure logging for the io_snapshot package."""
    # Configure the package-level logger
    logger = logging.getLogger('io_snapshot')

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(levelname)s: %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger

# Instrumented programs import this package; their output stays untouched
# until a command line entry point calls configure_logging()
logging.getLogger('io_snapshot').addHandler(logging.NullHandler())

# Import main classes for public API
from .backup import BackupStore
from .cli import SnapshotCLI, main
from .config import ConfigManager, SnapshotConfig
from .differ import Change, ChangeKind, DiffConfig, Differ, apply_changes, diff
from .errors import ConfigError, IOSnapshotError, NoFilesMatchedError, NoSnapshotsError
from .exports import ExportScanner, ModuleExports
from .shim import record
from .storage import CaptureEvent, SnapshotLog
from .transformer import InjectionReport, InjectionStatus, Instrumenter
from .verifier import FunctionStatus, VerificationReport, Verifier

__all__ = [
    # Version
    "__version__",
    "configure_logging",
    # Instrumentation
    "Instrumenter",
    "InjectionReport",
    "InjectionStatus",
    "BackupStore",
    "ExportScanner",
    "ModuleExports",
    # Capture
    "record",
    "CaptureEvent",
    "SnapshotLog",
    # Verification
    "Verifier",
    "VerificationReport",
    "FunctionStatus",
    # Differ
    "Change",
    "ChangeKind",
    "DiffConfig",
    "Differ",
    "apply_changes",
    "diff",
    # Config
    "ConfigManager",
    "SnapshotConfig",
    # Errors
    "IOSnapshotError",
    "NoSnapshotsError",
    "NoFilesMatchedError",
    "ConfigError",
    # CLI
    "SnapshotCLI",
    "main",
]
