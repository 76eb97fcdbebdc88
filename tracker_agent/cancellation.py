from __future__ import annotations

import threading
from typing import Callable, Generic, List, Optional, TypeVar

_T = TypeVar("_T")


class OperationCancelled(RuntimeError):
    """Raised out of a wait when its cancellation token fires."""


class CancellationToken:
    """Cross-thread stop signal shared by the scheduler and every wait it starts."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for cb in callbacks:
            cb()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run `callback` on cancel (immediately if already cancelled).

        Returns a function that unregisters it.
        """

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister() -> None:
                    with self._lock:
                        try:
                            self._callbacks.remove(callback)
                        except ValueError:
                            pass

                return _unregister
        callback()
        return lambda: None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")

    def wait(self, timeout_s: float) -> bool:
        """Cancellable sleep. Returns True if cancelled."""

        return self._event.wait(max(0.0, float(timeout_s)))


class OneShot(Generic[_T]):
    """Single-assignment result slot filled from a listener callback.

    The first `resolve` wins; later calls are ignored so a listener that fires
    again before it is removed cannot overwrite the result.
    """

    _CANCELLED = object()

    def __init__(self) -> None:
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._value: object = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def resolve(self, value: _T) -> bool:
        return self._set(value)

    def _set(self, value: object) -> bool:
        with self._lock:
            if self._done.is_set():
                return False
            self._value = value
            self._done.set()
            return True

    def wait(
        self,
        timeout_s: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[_T]:
        """Block until resolved. Returns None on timeout.

        Raises OperationCancelled if `cancel` fires first.
        """

        unregister = cancel.register(lambda: self._set(self._CANCELLED)) if cancel is not None else None
        try:
            if not self._done.wait(None if timeout_s is None else max(0.0, float(timeout_s))):
                return None
        finally:
            if unregister is not None:
                unregister()
        if self._value is self._CANCELLED:
            raise OperationCancelled("wait cancelled")
        return self._value  # type: ignore[return-value]
