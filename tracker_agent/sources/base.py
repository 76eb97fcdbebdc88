from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Generic, Optional, Protocol, TypeVar

_T = TypeVar("_T")


class Stoppable(Protocol):
    def stop(self) -> None: ...


class PollingListener(Generic[_T]):
    """Daemon thread that polls a value and hands it to a listener callback.

    Polls once immediately, then every `interval_s` until stopped. `poll`
    returning None means "no reading this time". Read errors are printed once
    per distinct error and never end the thread.
    """

    def __init__(
        self,
        *,
        name: str,
        interval_s: float,
        poll: Callable[[], Optional[_T]],
        deliver: Callable[[_T], None],
    ) -> None:
        self.name = name
        self.interval_s = max(0.01, float(interval_s))
        self._poll = poll
        self._deliver = deliver
        self._stop = threading.Event()
        self._last_error: Optional[str] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                value = self._poll()
            except Exception as exc:
                signature = f"{type(exc).__name__}:{exc}"
                if signature != self._last_error:
                    print(f"[tracker-agent] {self.name} read failed: {type(exc).__name__}: {exc}")
                    self._last_error = signature
                value = None

            if value is not None and not self._stop.is_set():
                try:
                    self._deliver(value)
                except Exception as exc:
                    print(f"[tracker-agent] {self.name} listener raised: {type(exc).__name__}: {exc}")

            if self._stop.wait(self.interval_s):
                return


class ListenerRegistry:
    """Tracks the worker behind each registered listener so it can be stopped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workers: Dict[int, tuple[Any, Stoppable]] = {}

    def add(self, listener: Any, worker: Stoppable) -> None:
        with self._lock:
            previous = self._workers.pop(id(listener), None)
            self._workers[id(listener)] = (listener, worker)
        if previous is not None:
            previous[1].stop()

    def remove(self, listener: Any) -> bool:
        with self._lock:
            entry = self._workers.pop(id(listener), None)
        if entry is None:
            return False
        entry[1].stop()
        return True

    def active(self) -> int:
        with self._lock:
            return len(self._workers)
