"""
Shared constants for io-snapshot.
"""

DEFAULT_PORT = 9444
DEFAULT_TIMEOUT = 30  # minutes of inactivity before the collector shuts down
DEFAULT_PATTERN = "**/*.py"
SNAPSHOT_FILE = ".snaps.jsonl"
CONFIG_FILE = ".iosnapshotrc.json"
BACKUP_EXT = ".snap.bak"

# Session and backup locations
TEMP_SESSION_DIR_PREFIX = "io-snapshot-session-"
PID_FILE_NAME = "io-snapshot.pid"
LOCAL_BACKUP_DIR = ".io-snapshot-backups"

# Instrumentation identifiers
SHADOW_PREFIX = "_snap_"
RECORDER_NAME = "_snap_record"
SHIM_MODULE = "io_snapshot.shim"

# Environment overrides
PORT_ENV_VAR = "IOSNAP_DAEMON_PORT"
CORS_ENV_VAR = "IOSNAP_DAEMON_CORS"

# Directories never scanned for source files
IGNORED_DIRS = {
    ".git",
    ".hg",
    ".tox",
    ".nox",
    ".venv",
    "venv",
    "env",
    ".eggs",
    "__pycache__",
    "site-packages",
    "node_modules",
    "build",
    "dist",
    LOCAL_BACKUP_DIR,
}
