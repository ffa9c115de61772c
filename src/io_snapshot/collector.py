"""
Collector service for capture events.

A small FastAPI application that instrumented programs post their capture
events to. Events are appended to the snapshot log only while recording is
switched on; the collector is the single writer of the log. The service shuts
itself down after a configurable number of idle minutes.

Run it with ``python -m io_snapshot.collector``.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import configure_logging
from .constants import CORS_ENV_VAR, DEFAULT_PORT, DEFAULT_TIMEOUT, SNAPSHOT_FILE
from .daemon import remove_pid, save_pid
from .paths import SessionPaths
from .storage import SnapshotLog

logger = logging.getLogger(__name__)

IDLE_CHECK_INTERVAL = 30.0  # seconds


@dataclass
class RecordingSession:
    """Recording flag plus the activity clock used for idle shutdown."""

    recording: bool = False
    last_activity_at: float = field(default_factory=time.time)
    started_at: float = field(default_factory=time.time)

    def start(self) -> None:
        self.recording = True
        self.touch()

    def stop(self) -> None:
        self.recording = False

    def touch(self) -> None:
        self.last_activity_at = time.time()

    def idle_minutes(self, now: Optional[float] = None) -> float:
        return ((now or time.time()) - self.last_activity_at) / 60

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at


@dataclass
class CollectorContext:
    """Everything the request handlers need, passed in explicitly."""

    snapshot_log: SnapshotLog
    session: RecordingSession = field(default_factory=RecordingSession)
    timeout_minutes: int = DEFAULT_TIMEOUT
    cors_origin: str = "*"
    check_interval: float = IDLE_CHECK_INTERVAL
    on_idle: Optional[Callable[[], None]] = None


async def watch_idle(context: CollectorContext) -> None:
    """Call `context.on_idle` once the session has been idle for too long."""
    while True:
        await asyncio.sleep(context.check_interval)
        if context.session.idle_minutes() >= context.timeout_minutes:
            logger.error(
                f"Collector auto-shutting down after {context.timeout_minutes} minutes of inactivity."
            )
            if context.on_idle is not None:
                context.on_idle()
            return


def create_app(context: CollectorContext) -> FastAPI:
    """Create the collector application bound to one context."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        watcher = None
        if context.on_idle is not None:
            watcher = asyncio.create_task(watch_idle(context))
        try:
            yield
        finally:
            if watcher is not None:
                watcher.cancel()

    app = FastAPI(title="io-snapshot collector", lifespan=lifespan)
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[context.cors_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/status")
    async def status():
        return {
            "is_recording": context.session.recording,
            "timeout": context.timeout_minutes,
            "uptime": context.session.uptime,
            "cors_origin": context.cors_origin,
        }

    @app.post("/record")
    async def start_recording():
        context.session.start()
        logger.info("Recording started.")
        return {"is_recording": True}

    @app.post("/stop")
    async def stop_recording():
        context.session.stop()
        logger.info("Recording stopped.")
        return {"is_recording": False}

    @app.post("/telemetry")
    async def telemetry(request: Request):
        body = await request.body()

        if not context.session.recording:
            return {"status": "ignored", "reason": "not_recording"}

        context.session.touch()
        try:
            context.snapshot_log.append_line(body.decode("utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to store capture event: {e}")
            return JSONResponse(status_code=500, content={"error": str(e)})
        return {"status": "captured"}

    return app


def run_collector(
    port: int = DEFAULT_PORT,
    timeout: int = DEFAULT_TIMEOUT,
    cors_origin: str = "*",
    project_root: Optional[Path] = None,
    snapshot_file: str = SNAPSHOT_FILE,
) -> int:
    """Serve the collector until it is stopped or goes idle."""
    paths = SessionPaths(project_root)
    context = CollectorContext(
        snapshot_log=SnapshotLog(paths.project_root / snapshot_file),
        timeout_minutes=timeout,
        cors_origin=cors_origin,
    )
    app = create_app(context)

    level = logging.getLogger("io_snapshot").getEffectiveLevel()
    for uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(uvicorn_logger).setLevel(level)

    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning"))

    def shutdown() -> None:
        server.should_exit = True

    context.on_idle = shutdown

    logger.info(f"Collector running on http://localhost:{port}")
    save_pid(paths, os.getpid())
    try:
        server.run()
    finally:
        remove_pid(paths)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="io-snapshot capture event collector")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument(
        "--timeout", type=int, default=DEFAULT_TIMEOUT, help="Idle minutes before shutting down"
    )
    parser.add_argument(
        "--cors", default=os.environ.get(CORS_ENV_VAR, "*"), help="Allowed CORS origin"
    )
    parser.add_argument("--project-root", type=Path, default=None, help="Project directory")
    parser.add_argument("--snapshot-file", default=SNAPSHOT_FILE, help="Snapshot log file name")
    args = parser.parse_args(argv)
    configure_logging()

    return run_collector(
        port=args.port,
        timeout=args.timeout,
        cors_origin=args.cors,
        project_root=args.project_root,
        snapshot_file=args.snapshot_file,
    )


if __name__ == "__main__":
    sys.exit(main())
