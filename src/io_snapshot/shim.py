"""
Runtime capture shim.

Instrumented modules import `record` under the name ``_snap_record`` and wrap
each exported function with it. A wrapped function behaves exactly like the
original: same arguments, same return value, same exceptions, and coroutine
functions stay coroutine functions. Arguments are serialized on entry, so a
call that mutates them still records what it was given. After each successful
call the result is serialized too and the event is handed to a background
worker that posts it to the collector; a collector that cannot be reached only
costs a dropped sample, reported once until delivery works again.
"""
from __future__ import annotations

import functools
import inspect
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

import requests

from . import serializer
from .constants import DEFAULT_PORT, PORT_ENV_VAR
from .storage import encode_arguments, record_line, utc_timestamp

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 2.0


def get_port() -> int:
    """Collector port, from the environment when set."""
    raw = os.environ.get(PORT_ENV_VAR)
    if raw:
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {PORT_ENV_VAR}={raw!r}")
    return DEFAULT_PORT


class CaptureTransport:
    """Posts serialized capture events to the collector off the caller's thread."""

    def __init__(self, port: Optional[int] = None, timeout: float = SEND_TIMEOUT):
        self.port = port
        self.timeout = timeout
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._warned = False

    @property
    def url(self) -> str:
        return f"http://localhost:{self.port or get_port()}/telemetry"

    def send(self, line: str) -> None:
        """Queue one event line for delivery; returns immediately."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="io-snapshot")
            future = self._executor.submit(self._post, line)
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _post(self, line: str) -> None:
        try:
            response = requests.post(
                self.url,
                data=line.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except Exception as e:
            # Warn once per outage
            if self._warned:
                logger.debug(f"Telemetry failed: {e}")
            else:
                logger.warning(f"Telemetry failed: {e}")
                self._warned = True
            return
        self._warned = False

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued event has been delivered or dropped."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)


_transport = CaptureTransport()


def set_transport(transport: CaptureTransport) -> CaptureTransport:
    """Replace the transport used by every wrapper; returns the previous one."""
    global _transport
    previous = _transport
    _transport = transport
    return previous


def flush(timeout: Optional[float] = None) -> None:
    _transport.flush(timeout)


def _snapshot_arguments(fn_name: str, args: tuple[Any, ...], kwargs: dict[str, Any]):
    """Encode the arguments as they are on entry, before the call can mutate them."""
    try:
        return encode_arguments(args, kwargs)
    except Exception as e:
        logger.warning(f"Failed to capture call to {fn_name}: {e}")
        return None


def _capture(fn_name: str, arguments, at: str, result: Any) -> None:
    if arguments is None:
        return
    try:
        args, kwargs = arguments
        line = record_line({
            "fn_name": fn_name,
            "args": args,
            "kwargs": kwargs,
            "result": serializer.encode(result),
            "at": at,
        })
        _transport.send(line)
    except Exception as e:
        logger.warning(f"Failed to capture call to {fn_name}: {e}")


def record(fn: Callable, fn_name: str) -> Callable:
    """Wrap `fn` so that every successful call is captured under `fn_name`."""
    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            at = utc_timestamp()
            arguments = _snapshot_arguments(fn_name, args, kwargs)
            result = await fn(*args, **kwargs)
            _capture(fn_name, arguments, at, result)
            return result

    else:

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            at = utc_timestamp()
            arguments = _snapshot_arguments(fn_name, args, kwargs)
            result = fn(*args, **kwargs)
            _capture(fn_name, arguments, at, result)
            return result

    # The shadow carries the prefixed name; callers see the original one
    wrapper.__name__ = fn_name
    wrapper.__qualname__ = fn_name
    return wrapper
