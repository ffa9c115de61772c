"""
Collector process lifecycle.

This module keeps the collector's PID in the project's session directory,
spawns the collector as a detached background process, stops it, and talks
to its control endpoints over HTTP.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Optional

import requests

from .constants import PORT_ENV_VAR
from .paths import SessionPaths

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5.0


def save_pid(paths: SessionPaths, pid: int) -> None:
    paths.ensure_session_dir()
    paths.pid_file.write_text(str(pid), encoding="utf-8")


def get_saved_pid(paths: SessionPaths) -> Optional[int]:
    if not paths.pid_file.exists():
        return None
    try:
        return int(paths.pid_file.read_text(encoding="utf-8").strip())
    except ValueError:
        logger.warning(f"Ignoring corrupt PID file {paths.pid_file}")
        return None


def remove_pid(paths: SessionPaths) -> None:
    if paths.pid_file.exists():
        paths.pid_file.unlink()


def is_process_running(pid: int) -> bool:
    """Check whether a process exists without signalling it."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True


def spawn_collector(
    port: int,
    timeout: int,
    cors_origin: str,
    project_root: Path,
    snapshot_file: str,
) -> subprocess.Popen:
    """Start the collector as a detached background process."""
    env = dict(os.environ)
    env[PORT_ENV_VAR] = str(port)
    command = [
        sys.executable,
        "-m",
        "io_snapshot.collector",
        "--port",
        str(port),
        "--timeout",
        str(timeout),
        "--cors",
        cors_origin,
        "--project-root",
        str(project_root),
        "--snapshot-file",
        snapshot_file,
    ]
    return subprocess.Popen(
        command,
        cwd=str(project_root),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


def stop_process(pid: int) -> bool:
    """Send SIGTERM to a process; False when it was not running."""
    try:
        os.kill(pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        return False
    return True


class CollectorClient:
    """HTTP client for the collector's control endpoints."""

    def __init__(self, port: int, host: str = "localhost", timeout: float = REQUEST_TIMEOUT):
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout

    def request(self, endpoint: str, method: str = "POST") -> Any:
        """Call an endpoint and return its decoded JSON body.

        Raises requests.RequestException when the collector is unreachable.
        """
        response = requests.request(method, f"{self.base_url}{endpoint}", timeout=self.timeout)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return response.text

    def start_recording(self) -> Any:
        return self.request("/record")

    def stop_recording(self) -> Any:
        return self.request("/stop")

    def status(self) -> Any:
        return self.request("/status", method="GET")

    def wait_until_ready(self, timeout: float = 10.0, interval: float = 0.2) -> bool:
        """Poll /status until the collector answers or the timeout expires."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                self.status()
                return True
            except requests.RequestException:
                time.sleep(interval)
        return False
