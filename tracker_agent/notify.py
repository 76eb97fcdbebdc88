from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

FailureHook = Callable[[Optional[int], Optional[str]], None]

NOTIFICATION_TITLE = "HTTP Request Failed"


def failure_message(status_code: Optional[int]) -> str:
    return f"Error code: {status_code if status_code is not None else 'Unknown'}"


@dataclass
class ConsoleNotifier:
    """Local, human-readable failure notice."""

    title: str = NOTIFICATION_TITLE

    def __call__(self, status_code: Optional[int], raw_error: Optional[str]) -> None:
        _ = raw_error
        print(f"[tracker-agent] {self.title}: {failure_message(status_code)}")


@dataclass
class ErrorEventRecorder:
    """Append one JSON event per failed delivery for external diagnostics."""

    path: Path
    session_name: str = ""
    body_limit: int = 1000

    def __call__(self, status_code: Optional[int], raw_error: Optional[str]) -> None:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": "delivery_failed",
            "session": self.session_name,
            "status_code": status_code,
            "error": (raw_error or "")[: self.body_limit],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            print(f"[tracker-agent] failed to record error event at {self.path}: {exc!r}")


@dataclass
class FailureSignal:
    """Fans a delivery failure out to every registered hook.

    A hook that raises is reported and skipped; it never stops the others or
    the scheduler loop.
    """

    hooks: List[FailureHook] = field(default_factory=list)

    def __call__(self, status_code: Optional[int], raw_error: Optional[str]) -> None:
        for hook in self.hooks:
            try:
                hook(status_code, raw_error)
            except Exception as exc:
                print(f"[tracker-agent] failure hook {hook!r} raised: {type(exc).__name__}: {exc}")


def build_failure_signal_from_env(*, session_name: str = "") -> FailureSignal:
    hooks: List[FailureHook] = [ConsoleNotifier()]
    error_log = os.getenv("TRACKER_ERROR_LOG_PATH", "").strip()
    if error_log:
        hooks.append(ErrorEventRecorder(path=Path(error_log), session_name=session_name))
    return FailureSignal(hooks=hooks)
