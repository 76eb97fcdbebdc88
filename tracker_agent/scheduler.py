from __future__ import annotations

import threading
from enum import Enum
from typing import Optional

from .assembler import TelemetryAssembler
from .cancellation import CancellationToken, OneShot, OperationCancelled
from .config import DEFAULT_INTERVAL_S, ConfigProvider, TrackerConfig
from .delivery import DeliveryClient, DeliveryFailure, DeliveryResult
from .model import DeliveryPayload
from .notify import FailureHook
from .retry_buffer import RetryBuffer

MIN_INTERVAL_S = 1.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CollectionScheduler:
    """Collect-and-deliver loop.

    One cycle at a time: read config, drain the retry buffer, assemble a
    payload, send it, and on failure persist the payload and raise the failure
    signal. The next cycle starts `interval` seconds after the previous one
    *finished* (fixed delay). `stop()` interrupts the sleep, any location or
    sensor wait in progress, and an in-flight POST.
    """

    def __init__(
        self,
        *,
        config_provider: ConfigProvider,
        retry_buffer: RetryBuffer,
        assembler: TelemetryAssembler,
        delivery: DeliveryClient,
        on_delivery_failure: Optional[FailureHook] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self.config_provider = config_provider
        self.retry_buffer = retry_buffer
        self.assembler = assembler
        self.delivery = delivery
        self.on_delivery_failure = on_delivery_failure
        self.cancel = cancel or CancellationToken()

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.cycles_completed = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    def run_cycle(self, config: TrackerConfig) -> DeliveryResult:
        pending = self.retry_buffer.drain()
        try:
            payload = self.assembler.assemble(pending, self.cancel)
        except Exception:
            # Nothing was sent; put the backlog back before unwinding.
            if pending:
                self.retry_buffer.store(pending)
            raise

        try:
            result = self._send(config, payload)
        except OperationCancelled:
            self.retry_buffer.store(payload.samples)
            raise

        if isinstance(result, DeliveryFailure):
            self.retry_buffer.store(payload.samples)
            self._signal_failure(result)
        else:
            print(
                f"[tracker-agent] sent {result.accepted} entries "
                f"(backlog={result.backlog_acknowledged}) session={config.name or '-'}"
            )
        self.cycles_completed += 1
        return result

    def _send(self, config: TrackerConfig, payload: DeliveryPayload) -> DeliveryResult:
        """POST on a worker thread so `stop()` is not held up by the HTTP timeout.

        On cancel the session is closed and OperationCancelled propagates; the
        worker finishes on its own and its result is discarded.
        """

        result: OneShot[DeliveryResult] = OneShot()

        def _worker() -> None:
            try:
                outcome: DeliveryResult = self.delivery.send(
                    config.endpoint,
                    payload,
                    config.credential_id,
                    config.credential_secret,
                )
            except Exception as exc:
                outcome = DeliveryFailure(status_code=None, body=None, error=repr(exc))
            result.resolve(outcome)

        threading.Thread(target=_worker, name="tracker-send", daemon=True).start()
        try:
            sent = result.wait(None, self.cancel)
        except OperationCancelled:
            print("[tracker-agent] delivery interrupted by stop")
            self.delivery.close()
            raise
        return sent  # type: ignore[return-value]

    def _signal_failure(self, failure: DeliveryFailure) -> None:
        if self.on_delivery_failure is None:
            return
        try:
            self.on_delivery_failure(failure.status_code, failure.body or failure.error)
        except Exception as exc:
            print(f"[tracker-agent] failure signal raised: {type(exc).__name__}: {exc}")

    def run(self) -> None:
        with self._state_lock:
            if self._state is not SchedulerState.IDLE:
                raise RuntimeError(f"scheduler cannot run from state {self._state.value}")
            self._state = SchedulerState.RUNNING

        # Last good interval; a failed config load waits this long before retrying.
        interval_s = float(DEFAULT_INTERVAL_S)
        try:
            while not self.cancel.cancelled:
                try:
                    config = self.config_provider.load()
                    interval_s = float(config.interval_s)
                    self.run_cycle(config)
                except OperationCancelled:
                    break
                except Exception as exc:
                    print(f"[tracker-agent] cycle failed: {type(exc).__name__}: {exc}")

                if self.cancel.wait(max(MIN_INTERVAL_S, interval_s)):
                    break
        finally:
            self._state = SchedulerState.STOPPED
            print(f"[tracker-agent] scheduler stopped after {self.cycles_completed} cycles")

    def start(self) -> threading.Thread:
        thread = threading.Thread(target=self.run, name="tracker-scheduler", daemon=True)
        self._thread = thread
        thread.start()
        return thread

    def stop(self, timeout_s: Optional[float] = None) -> None:
        self.cancel.cancel()
        thread = self._thread
        if thread is None:
            with self._state_lock:
                if self._state is SchedulerState.IDLE:
                    self._state = SchedulerState.STOPPED
            return
        if thread is not threading.current_thread():
            thread.join(timeout_s)
