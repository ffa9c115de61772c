"""
Snapshot log storage.

This module defines the capture event record and handles the append-only
JSONL snapshot log: one serialized capture event per line.
"""
from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from . import serializer
from .errors import NoSnapshotsError

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_arguments(args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[list[Any], dict[str, Any]]:
    """Serialize call arguments, detached from the live objects."""
    return (
        [serializer.encode(arg) for arg in args],
        {key: serializer.encode(value) for key, value in kwargs.items()},
    )


def record_line(record: dict[str, Any]) -> str:
    """Render an encoded event record as one log line (without the newline)."""
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


@dataclass(frozen=True)
class CaptureEvent:
    """One recorded invocation of an instrumented function."""

    fn_name: str
    args: tuple[Any, ...]
    result: Any
    kwargs: dict[str, Any] = field(default_factory=dict)
    at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-compatible data, serializing values."""
        args, kwargs = encode_arguments(self.args, self.kwargs)
        return {
            "fn_name": self.fn_name,
            "args": args,
            "kwargs": kwargs,
            "result": serializer.encode(self.result),
            "at": self.at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], reconstruct: bool = False) -> "CaptureEvent":
        """Create from data produced by `to_dict`."""
        return cls(
            fn_name=data["fn_name"],
            args=tuple(serializer.decode(arg, reconstruct=reconstruct) for arg in data.get("args", [])),
            kwargs={
                key: serializer.decode(value, reconstruct=reconstruct)
                for key, value in (data.get("kwargs") or {}).items()
            },
            result=serializer.decode(data.get("result")),
            at=data.get("at", ""),
        )

    def to_line(self) -> str:
        """Serialize to a single log line (without the newline)."""
        return record_line(self.to_dict())


class SnapshotLog:
    """Append-only log of capture events for one recording session."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def clear(self) -> None:
        """Truncate the log for a fresh recording session."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")

    def append_line(self, line: str) -> None:
        """Append one already-serialized event."""
        line = line.strip()
        if not line:
            return
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def append(self, event: CaptureEvent) -> None:
        self.append_line(event.to_line())

    def remove(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            return True
        return False

    def read_records(self, required: bool = False) -> list[dict[str, Any]]:
        """Read the raw event records without decoding their values.

        Corrupt lines and records without a function name are skipped, the
        former with a warning. With `required`, a missing or empty log raises
        NoSnapshotsError.
        """
        if not self.path.exists():
            if required:
                raise NoSnapshotsError(f"No snapshots found at {self.path}. Run 'io-snapshot record' first.")
            return []

        records = []
        with open(self.path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except ValueError as e:
                    logger.warning(f"Failed to parse snapshot line {line_number}: {e}")
                    continue
                if isinstance(record, dict) and record.get("fn_name"):
                    records.append(record)

        if required and not records:
            raise NoSnapshotsError(f"Snapshot log {self.path} holds no capture events.")
        return records

    @staticmethod
    def decode_records(records: list[dict[str, Any]], reconstruct: bool = False) -> list[CaptureEvent]:
        """Turn raw records into events; undecodable records are skipped."""
        events = []
        for record in records:
            try:
                events.append(CaptureEvent.from_dict(record, reconstruct=reconstruct))
            except Exception as e:
                logger.warning(f"Failed to decode snapshot of {record.get('fn_name')}: {e}")
        return events

    def read(self) -> list[CaptureEvent]:
        """Read every event in plain mode; corrupt lines are skipped with a warning."""
        return self.decode_records(self.read_records())

    def group_by_function(self) -> "OrderedDict[str, list[CaptureEvent]]":
        """Group events by function name, in first-seen order."""
        return group_events(self.read())

    def get_stats(self) -> dict[str, Any]:
        """Get statistics about the stored events."""
        groups = self.group_by_function()
        return {
            "total_events": sum(len(events) for events in groups.values()),
            "functions": {name: len(events) for name, events in groups.items()},
            "size_bytes": self.path.stat().st_size if self.path.exists() else 0,
        }


def group_events(events: list[CaptureEvent]) -> "OrderedDict[str, list[CaptureEvent]]":
    groups: OrderedDict[str, list[CaptureEvent]] = OrderedDict()
    for event in events:
        groups.setdefault(event.fn_name, []).append(event)
    return groups
