from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import pytest

from tracker_agent import backlog
from tracker_agent.delivery import DeliveryClient
from tracker_agent.model import TelemetrySample
from tracker_agent.retry_buffer import RetryBuffer


class _FakeResponse:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


class _FakeSession:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.bodies: List[Any] = []

    def post(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.bodies.append(json.loads(kwargs["data"].decode("utf-8")))
        return _FakeResponse(self.status_code)

    def close(self) -> None:
        pass


@pytest.fixture
def buffer_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv("TRACKER_CONFIG_PATH", raising=False)
    monkeypatch.delenv("TRACKER_ENDPOINT", raising=False)
    path = tmp_path / "buffer.sqlite"
    RetryBuffer(str(path)).store([TelemetrySample(date=f"entry-{i}") for i in range(3)])
    return path


def test_count_and_export(buffer_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert backlog.main(["--buffer-db", str(buffer_path), "count"]) == 0
    assert capsys.readouterr().out.strip() == "3"

    out_file = tmp_path / "backlog.json"
    assert backlog.main(["--buffer-db", str(buffer_path), "export", "--output", str(out_file)]) == 0
    exported = json.loads(out_file.read_text(encoding="utf-8"))
    assert [entry["date"] for entry in exported] == ["entry-0", "entry-1", "entry-2"]
    # Export is read-only.
    assert RetryBuffer(str(buffer_path)).count() == 3


def test_clear_requires_confirmation(buffer_path: Path) -> None:
    assert backlog.main(["--buffer-db", str(buffer_path), "clear"]) == 2
    assert RetryBuffer(str(buffer_path)).count() == 3

    assert backlog.main(["--buffer-db", str(buffer_path), "clear", "--yes"]) == 0
    assert RetryBuffer(str(buffer_path)).count() == 0


def test_missing_buffer_is_an_error(tmp_path: Path) -> None:
    assert backlog.main(["--buffer-db", str(tmp_path / "missing.sqlite"), "count"]) == 1


def test_flush_without_endpoint_is_rejected(buffer_path: Path) -> None:
    assert backlog.main(["--buffer-db", str(buffer_path), "flush"]) == 2


def test_flush_backlog_sends_all_entries_in_order(buffer_path: Path) -> None:
    buf = RetryBuffer(str(buffer_path))
    session = _FakeSession(200)

    ok = backlog.flush_backlog(
        buf,
        DeliveryClient(session),  # type: ignore[arg-type]
        endpoint="http://collector",
        credential_id="id",
        credential_secret="secret",
    )

    assert ok is True
    assert [entry["date"] for entry in session.bodies[0]] == ["entry-0", "entry-1", "entry-2"]
    assert buf.count() == 0


def test_flush_backlog_keeps_entries_on_failure(buffer_path: Path) -> None:
    buf = RetryBuffer(str(buffer_path))

    ok = backlog.flush_backlog(
        buf,
        DeliveryClient(_FakeSession(502)),  # type: ignore[arg-type]
        endpoint="http://collector",
        credential_id="",
        credential_secret="",
    )

    assert ok is False
    assert [s.date for s in buf.peek()] == ["entry-0", "entry-1", "entry-2"]
