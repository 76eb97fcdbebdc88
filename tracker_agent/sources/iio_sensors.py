from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..sensors import SensorListener, SensorType
from .base import ListenerRegistry, PollingListener

IIO_ROOT = Path("/sys/bus/iio/devices")

# channel prefix, multiplier from the IIO unit to the reported unit
_CHANNELS: Dict[SensorType, Tuple[str, float]] = {
    SensorType.PRESSURE: ("in_pressure", 10.0),  # kPa -> hPa
    SensorType.LIGHT: ("in_illuminance", 1.0),
    SensorType.PROXIMITY: ("in_proximity", 1.0),
}


def _read_float(path: Path) -> Optional[float]:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class IioChannel:
    sensor_type: SensorType
    device_dir: Path
    prefix: str
    multiplier: float

    def read(self) -> Optional[float]:
        processed = _read_float(self.device_dir / f"{self.prefix}_input")
        if processed is not None:
            return round(processed * self.multiplier, 3)

        raw = _read_float(self.device_dir / f"{self.prefix}_raw")
        if raw is None:
            return None
        offset = _read_float(self.device_dir / f"{self.prefix}_offset") or 0.0
        scale = _read_float(self.device_dir / f"{self.prefix}_scale")
        if scale is None:
            scale = 1.0
        return round((raw + offset) * scale * self.multiplier, 3)


def _channel_prefix(device_dir: Path, base: str) -> Optional[str]:
    for prefix in (base, f"{base}0"):
        if (device_dir / f"{prefix}_input").exists() or (device_dir / f"{prefix}_raw").exists():
            return prefix
    return None


class IioSensorSource:
    """Industrial I/O sysfs sensors, polled at the requested rate."""

    def __init__(self, root: Path = IIO_ROOT) -> None:
        self.root = root
        self._registry = ListenerRegistry()
        self._cache: Dict[SensorType, Optional[IioChannel]] = {}

    def _discover(self, sensor_type: SensorType) -> Optional[IioChannel]:
        base, multiplier = _CHANNELS[sensor_type]
        try:
            devices = sorted(p for p in self.root.iterdir() if p.name.startswith("iio:device"))
        except OSError:
            return None
        for device_dir in devices:
            prefix = _channel_prefix(device_dir, base)
            if prefix is not None:
                return IioChannel(
                    sensor_type=sensor_type,
                    device_dir=device_dir,
                    prefix=prefix,
                    multiplier=multiplier,
                )
        return None

    def default_sensor(self, sensor_type: SensorType) -> Optional[IioChannel]:
        if sensor_type not in self._cache:
            self._cache[sensor_type] = self._discover(sensor_type)
        return self._cache[sensor_type]

    def register_listener(self, listener: SensorListener, sensor: IioChannel, rate_s: float) -> None:
        worker: PollingListener[float] = PollingListener(
            name=f"iio-{sensor.sensor_type.value}",
            interval_s=rate_s,
            poll=sensor.read,
            deliver=listener,
        )
        self._registry.add(listener, worker)
        worker.start()

    def unregister_listener(self, listener: SensorListener) -> None:
        self._registry.remove(listener)
