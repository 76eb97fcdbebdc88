from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .cancellation import CancellationToken, OneShot

# Platform "normal" delivery rate for change events.
SENSOR_DELAY_NORMAL_S = 0.2
SENSOR_TIMEOUT_S = 10.0


class SensorType(str, Enum):
    PRESSURE = "pressure"
    LIGHT = "light"
    PROXIMITY = "proximity"


SensorListener = Callable[[float], None]


class SensorSource(Protocol):
    def default_sensor(self, sensor_type: SensorType) -> Any | None: ...

    def register_listener(self, listener: SensorListener, sensor: Any, rate_s: float) -> None: ...

    def unregister_listener(self, listener: SensorListener) -> None: ...


class SensorReader:
    """Single-shot reads of physical sensors.

    `timeout_s=None` waits indefinitely for the first event.
    """

    def __init__(self, source: SensorSource, *, timeout_s: Optional[float] = SENSOR_TIMEOUT_S) -> None:
        self.source = source
        self.timeout_s = timeout_s

    def read_once(
        self,
        sensor_type: SensorType,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[float]:
        try:
            sensor = self.source.default_sensor(sensor_type)
        except Exception as exc:
            print(f"[tracker-agent] {sensor_type.value} sensor lookup failed: {type(exc).__name__}: {exc}")
            return None
        if sensor is None:
            return None

        result: OneShot[float] = OneShot()

        def _on_value(value: float) -> None:
            result.resolve(float(value))

        try:
            self.source.register_listener(_on_value, sensor, SENSOR_DELAY_NORMAL_S)
        except Exception as exc:
            print(f"[tracker-agent] {sensor_type.value} sensor subscribe failed: {type(exc).__name__}: {exc}")
            return None
        try:
            value = result.wait(self.timeout_s, cancel)
        finally:
            self.source.unregister_listener(_on_value)

        if value is None:
            print(f"[tracker-agent] {sensor_type.value} sensor did not report within {self.timeout_s}s")
        return value

    def pressure(self, cancel: Optional[CancellationToken] = None) -> Optional[float]:
        return self.read_once(SensorType.PRESSURE, cancel)

    def light(self, cancel: Optional[CancellationToken] = None) -> Optional[float]:
        return self.read_once(SensorType.LIGHT, cancel)

    def proximity(self, cancel: Optional[CancellationToken] = None) -> Optional[float]:
        return self.read_once(SensorType.PROXIMITY, cancel)
