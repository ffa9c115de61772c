"""
Exception types for io-snapshot.

Failures local to a single file or function are reported through result
objects; these exceptions cover the global preconditions that abort a whole
operation.
"""


class IOSnapshotError(Exception):
    """Base class for io-snapshot errors."""


class NoSnapshotsError(IOSnapshotError):
    """The snapshot log is missing or holds no capture events."""


class NoFilesMatchedError(IOSnapshotError):
    """A file pattern resolved to no candidate source files."""


class ConfigError(IOSnapshotError, ValueError):
    """An option or configuration value is invalid."""
