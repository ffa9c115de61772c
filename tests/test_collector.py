"""Tests for the collector service."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from io_snapshot.collector import CollectorContext, RecordingSession, create_app, watch_idle
from io_snapshot.storage import CaptureEvent


@pytest.fixture
def context(snapshot_log):
    snapshot_log.clear()
    return CollectorContext(snapshot_log=snapshot_log, timeout_minutes=5, cors_origin="http://localhost:3000")


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as test_client:
        yield test_client


class TestControlEndpoints:
    """Tests for the recording switch and status."""

    def test_status(self, client):
        """Test the status payload."""
        response = client.get("/status")
        assert response.status_code == 200
        data = response.json()
        assert data["is_recording"] is False
        assert data["timeout"] == 5
        assert data["cors_origin"] == "http://localhost:3000"
        assert data["uptime"] >= 0

    def test_record_and_stop(self, client):
        """Test toggling the recording flag."""
        assert client.post("/record").json() == {"is_recording": True}
        assert client.get("/status").json()["is_recording"] is True
        assert client.post("/stop").json() == {"is_recording": False}
        assert client.get("/status").json()["is_recording"] is False

    def test_cors_header(self, client):
        """Test that the configured origin is allowed."""
        response = client.get("/status", headers={"Origin": "http://localhost:3000"})
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


class TestTelemetry:
    """Tests for ingesting capture events."""

    def test_ignored_when_not_recording(self, client, snapshot_log):
        """Test that events are dropped while recording is off."""
        line = CaptureEvent("f", (1,), 1).to_line()
        response = client.post("/telemetry", content=line)
        assert response.json() == {"status": "ignored", "reason": "not_recording"}
        assert snapshot_log.read() == []

    def test_captured_when_recording(self, client, snapshot_log):
        """Test that events are appended verbatim while recording."""
        client.post("/record")
        lines = [CaptureEvent("f", (n,), n * 2).to_line() for n in range(3)]
        for line in lines:
            assert client.post("/telemetry", content=line).json() == {"status": "captured"}

        assert snapshot_log.path.read_text().splitlines() == lines
        assert [e.result for e in snapshot_log.read()] == [0, 2, 4]

    def test_telemetry_refreshes_activity(self, client, context):
        """Test that captured events keep the collector alive."""
        client.post("/record")
        context.session.last_activity_at = 0
        client.post("/telemetry", content=CaptureEvent("f", (), None).to_line())
        assert context.session.idle_minutes() < 1

    def test_storage_failure_returns_500(self, client, context, tmp_path):
        """Test that a write error is reported to the sender."""
        client.post("/record")
        context.snapshot_log.path = tmp_path / "missing" / "dir" / "log.jsonl"
        response = client.post("/telemetry", content=CaptureEvent("f", (), None).to_line())
        assert response.status_code == 500
        assert "error" in response.json()


class TestIdleShutdown:
    """Tests for the inactivity watchdog."""

    def test_recording_session_idle_minutes(self):
        """Test the idle clock."""
        session = RecordingSession()
        session.last_activity_at = time.time() - 120
        assert session.idle_minutes() == pytest.approx(2, abs=0.1)
        session.start()
        assert session.recording is True
        assert session.idle_minutes() < 0.1

    def test_watch_idle_calls_shutdown(self, snapshot_log):
        """Test that an idle session triggers the shutdown callback."""
        calls = []
        context = CollectorContext(
            snapshot_log=snapshot_log,
            timeout_minutes=1,
            check_interval=0.01,
            on_idle=lambda: calls.append(True),
        )
        context.session.last_activity_at = time.time() - 61
        asyncio.run(asyncio.wait_for(watch_idle(context), timeout=5))
        assert calls == [True]

    def test_watch_idle_keeps_running_when_active(self, snapshot_log):
        """Test that an active session is not shut down."""
        calls = []
        context = CollectorContext(
            snapshot_log=snapshot_log,
            timeout_minutes=1,
            check_interval=0.01,
            on_idle=lambda: calls.append(True),
        )
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(watch_idle(context), timeout=0.1))
        assert calls == []
