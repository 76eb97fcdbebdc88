from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..battery import BatterySource
from ..location import LocationSource
from ..sensors import SensorSource
from .gpsd_location import GPSD_DEFAULT_HOST, GPSD_DEFAULT_PORT, GpsdLocationSource
from .iio_sensors import IIO_ROOT, IioSensorSource
from .mock import MockBatterySource, MockLocationSource, MockSensorSource
from .sysfs_battery import POWER_SUPPLY_ROOT, SysfsBatterySource

_VALID_BACKENDS = {"mock", "linux"}


class SourceConfigError(ValueError):
    """Invalid platform source configuration."""


@dataclass(frozen=True)
class PlatformSources:
    backend: str
    battery: BatterySource
    sensors: SensorSource
    location: LocationSource


def _port_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        port = int(raw)
    except ValueError as exc:
        raise SourceConfigError(f"{name} must be an integer") from exc
    if not 0 < port < 65536:
        raise SourceConfigError(f"{name} must be between 1 and 65535")
    return port


def _path_from_env(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else None


def build_sources_from_env(*, default_seed: str = "tracker-demo") -> PlatformSources:
    backend = os.getenv("TRACKER_SOURCE_BACKEND", "mock").strip().lower() or "mock"
    if backend not in _VALID_BACKENDS:
        raise SourceConfigError(f"TRACKER_SOURCE_BACKEND must be one of: {sorted(_VALID_BACKENDS)}")

    if backend == "mock":
        seed = os.getenv("TRACKER_MOCK_SEED", "").strip() or default_seed
        return PlatformSources(
            backend=backend,
            battery=MockBatterySource(seed=seed),
            sensors=MockSensorSource(seed),
            location=MockLocationSource(seed),
        )

    battery_kwargs: dict[str, Any] = {"root": POWER_SUPPLY_ROOT}
    battery_path = _path_from_env("TRACKER_BATTERY_PATH")
    if battery_path is not None:
        if not battery_path.is_dir():
            raise SourceConfigError(f"TRACKER_BATTERY_PATH is not a directory: {battery_path}")
        battery_kwargs["path"] = battery_path

    return PlatformSources(
        backend=backend,
        battery=SysfsBatterySource(**battery_kwargs),
        sensors=IioSensorSource(_path_from_env("TRACKER_IIO_ROOT") or IIO_ROOT),
        location=GpsdLocationSource(
            os.getenv("TRACKER_GPSD_HOST", "").strip() or GPSD_DEFAULT_HOST,
            _port_from_env("TRACKER_GPSD_PORT", GPSD_DEFAULT_PORT),
        ),
    )
