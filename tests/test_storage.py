"""Tests for capture events and the snapshot log."""

import json

import pytest

from io_snapshot.errors import NoSnapshotsError
from io_snapshot.storage import CaptureEvent, SnapshotLog


class TestCaptureEvent:
    """Tests for the capture event record."""

    def test_line_round_trip(self):
        """Test that an event survives its log line form."""
        event = CaptureEvent("f", args=(1, (2, 3)), kwargs={"k": {4}}, result=[5])
        loaded = CaptureEvent.from_dict(json.loads(event.to_line()))
        assert loaded == event

    def test_line_is_single_line(self):
        """Test that serialized events never contain newlines."""
        event = CaptureEvent("f", args=("multi\nline",), result="x\ny")
        assert "\n" not in event.to_line()

    def test_missing_kwargs_default_to_empty(self):
        """Test that older records without kwargs still load."""
        event = CaptureEvent.from_dict(json.loads('{"fn_name": "f", "args": [1], "result": 2, "at": "t"}'))
        assert event.kwargs == {}
        assert event.args == (1,)


class TestSnapshotLog:
    """Tests for the JSONL snapshot log."""

    def test_append_and_read(self, snapshot_log):
        """Test that appended events read back in order."""
        snapshot_log.clear()
        snapshot_log.append(CaptureEvent("f", (1,), 1))
        snapshot_log.append(CaptureEvent("g", (2,), 2))
        snapshot_log.append(CaptureEvent("f", (3,), 3))

        assert [e.fn_name for e in snapshot_log.read()] == ["f", "g", "f"]
        groups = snapshot_log.group_by_function()
        assert list(groups) == ["f", "g"]
        assert [e.args for e in groups["f"]] == [(1,), (3,)]

    def test_corrupt_lines_are_skipped(self, snapshot_log, caplog):
        """Test that a bad line is reported and the rest still load."""
        snapshot_log.clear()
        snapshot_log.append(CaptureEvent("f", (1,), 1))
        snapshot_log.append_line("{not json")
        snapshot_log.append(CaptureEvent("f", (2,), 2))

        assert len(snapshot_log.read()) == 2
        assert "Failed to parse snapshot line 2" in caplog.text

    def test_blank_lines_are_ignored(self, snapshot_log):
        """Test that empty input lines are neither written nor read."""
        snapshot_log.clear()
        snapshot_log.append_line("   ")
        assert snapshot_log.path.read_text() == ""
        assert snapshot_log.read() == []

    def test_records_defer_decoding(self, snapshot_log):
        """Test that raw records keep tagged values until they are decoded."""
        snapshot_log.clear()
        snapshot_log.append(CaptureEvent("f", ((1, 2),), 3))
        snapshot_log.append_line('{"args": []}')

        [record] = snapshot_log.read_records()
        assert record["args"] == [{"__type__": "tuple", "items": [1, 2]}]

        [event] = snapshot_log.decode_records([record])
        assert event.args == ((1, 2),)

    def test_required_records_missing(self, snapshot_log):
        """Test that a missing log raises NoSnapshotsError."""
        with pytest.raises(NoSnapshotsError):
            snapshot_log.read_records(required=True)

    def test_required_records_empty(self, snapshot_log):
        """Test that an empty log raises NoSnapshotsError."""
        snapshot_log.clear()
        with pytest.raises(NoSnapshotsError):
            snapshot_log.read_records(required=True)

    def test_remove(self, snapshot_log):
        """Test removing the log file."""
        assert snapshot_log.remove() is False
        snapshot_log.clear()
        assert snapshot_log.remove() is True
        assert not snapshot_log.exists()

    def test_stats(self, snapshot_log):
        """Test event statistics."""
        snapshot_log.clear()
        snapshot_log.append(CaptureEvent("f", (), None))
        snapshot_log.append(CaptureEvent("f", (), None))
        stats = snapshot_log.get_stats()
        assert stats["total_events"] == 2
        assert stats["functions"] == {"f": 2}
        assert stats["size_bytes"] > 0

    def test_reconstruct_arguments(self, snapshot_log):
        """Test that arguments can be rebuilt while results stay plain."""
        from http import HTTPStatus

        snapshot_log.clear()
        snapshot_log.append(CaptureEvent("f", (HTTPStatus.OK,), HTTPStatus.OK))
        [event] = snapshot_log.decode_records(snapshot_log.read_records(), reconstruct=True)
        assert event.args == (HTTPStatus.OK,)
        assert event.result["name"] == "OK"
