from __future__ import annotations

from pathlib import Path

import pytest

from tracker_agent.agent import build_retry_buffer_from_env, build_scheduler_from_env
from tracker_agent.scheduler import SchedulerState


@pytest.fixture(autouse=True)
def _tracker_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in (
        "TRACKER_CONFIG_PATH",
        "TRACKER_SOURCE_BACKEND",
        "TRACKER_ERROR_LOG_PATH",
        "TRACKER_SENSOR_TIMEOUT_S",
        "TRACKER_LOCATION_TIMEOUT_S",
        "TRACKER_HTTP_TIMEOUT_S",
        "TRACKER_LOG_PAYLOADS",
        "BUFFER_RECOVER_CORRUPTION",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TRACKER_BUFFER_PATH", str(tmp_path / "buffer.sqlite"))
    monkeypatch.setenv("TRACKER_ENDPOINT", "https://collector.example/ingest")
    monkeypatch.setenv("TRACKER_NAME", "truck-7")


def test_build_scheduler_from_env_wires_defaults(tmp_path: Path) -> None:
    scheduler, summary = build_scheduler_from_env()

    assert scheduler.state is SchedulerState.IDLE
    assert summary["sources"] == "mock"
    assert summary["name"] == "truck-7"
    assert summary["backlog"] == 0
    assert summary["buffer"] == str(tmp_path / "buffer.sqlite")
    assert scheduler.assembler.location.timeout_s == 10.0
    assert scheduler.assembler.sensors.timeout_s == 10.0
    assert scheduler.delivery.timeout_s == 15.0


def test_sensor_timeout_zero_means_unbounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKER_SENSOR_TIMEOUT_S", "0")
    scheduler, _ = build_scheduler_from_env()
    assert scheduler.assembler.sensors.timeout_s is None


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("TRACKER_SOURCE_BACKEND", "carrier-pigeon"),
        ("TRACKER_HTTP_TIMEOUT_S", "-3"),
        ("TRACKER_LOG_PAYLOADS", "sometimes"),
    ],
)
def test_invalid_process_config_exits(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)
    with pytest.raises(SystemExit):
        build_scheduler_from_env()


def test_retry_buffer_env_pragmas(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUFFER_SQLITE_JOURNAL_MODE", "delete")
    monkeypatch.setenv("BUFFER_SQLITE_SYNCHRONOUS", "full")
    buf = build_retry_buffer_from_env()
    assert buf.journal_mode == "DELETE"
    assert buf.synchronous == "FULL"
