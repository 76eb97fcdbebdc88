from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .battery import BatteryReader
from .cancellation import CancellationToken
from .location import LocationAcquirer, LocationFix
from .model import (
    CellularInfo,
    DeliveryPayload,
    LocationInfo,
    SensorInfo,
    TelemetrySample,
    now_timestamp,
)
from .sensors import SensorReader


@dataclass
class PlaceholderCellularReader:
    """Cellular fields are reserved; every read reports unknown."""

    def read(self) -> CellularInfo:
        return CellularInfo()


def location_info(fix: Optional[LocationFix], time_to_fix: Optional[float]) -> LocationInfo:
    if fix is None:
        return LocationInfo(time_to_fix=time_to_fix)
    return LocationInfo(
        latitude=fix.latitude,
        longitude=fix.longitude,
        speed=fix.speed,
        accuracy=fix.accuracy,
        altitude=fix.altitude,
        bearing=fix.bearing,
        provider=fix.provider,
        time_to_fix=time_to_fix,
    )


class TelemetryAssembler:
    def __init__(
        self,
        *,
        location: LocationAcquirer,
        battery: BatteryReader,
        sensors: SensorReader,
        cellular: Optional[PlaceholderCellularReader] = None,
        timestamp_fn: Callable[[], str] = now_timestamp,
    ) -> None:
        self.location = location
        self.battery = battery
        self.sensors = sensors
        self.cellular = cellular or PlaceholderCellularReader()
        self._timestamp_fn = timestamp_fn

    def sample(self, cancel: Optional[CancellationToken] = None) -> TelemetrySample:
        start = self.location.now()
        fix = self.location.acquire_fix(cancel)
        ttf = self.location.time_to_fix(start, fix)

        battery = self.battery.reading()

        # One sensor listener registered at a time.
        sensors = SensorInfo(
            barometer=self.sensors.pressure(cancel),
            light=self.sensors.light(cancel),
            proximity=self.sensors.proximity(cancel),
        )

        return TelemetrySample(
            date=self._timestamp_fn(),
            location=location_info(fix, ttf),
            battery=battery,
            sensors=sensors,
            cellular=self.cellular.read(),
        )

    def assemble(
        self,
        pending: Iterable[TelemetrySample],
        cancel: Optional[CancellationToken] = None,
    ) -> DeliveryPayload:
        backlog = tuple(pending)
        return DeliveryPayload(pending=backlog, fresh=self.sample(cancel))
