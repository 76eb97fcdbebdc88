from __future__ import annotations

import hashlib
import math
import random
import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from ..battery import (
    BATTERY_STATUS_CHARGING,
    BATTERY_STATUS_DISCHARGING,
    BATTERY_STATUS_FULL,
    BatterySnapshot,
)
from ..location import (
    FUSED_PROVIDER,
    GPS_PROVIDER,
    NETWORK_PROVIDER,
    PASSIVE_PROVIDER,
    LocationFix,
    LocationListener,
    ProviderUnavailableError,
)
from ..sensors import SensorListener, SensorType
from .base import ListenerRegistry, PollingListener

DEMO_CENTER_LAT = 37.4083
DEMO_CENTER_LON = -102.6144
DEMO_RADIUS_KM = 5.0
EARTH_RADIUS_KM = 6371.0088

# initial / best accuracy in meters for each provider
_ACCURACY_PROFILE: Dict[str, tuple[float, float]] = {
    GPS_PROVIDER: (40.0, 4.0),
    NETWORK_PROVIDER: (120.0, 25.0),
    FUSED_PROVIDER: (30.0, 6.0),
    PASSIVE_PROVIDER: (200.0, 50.0),
}

_ALL_PROVIDERS = frozenset(_ACCURACY_PROFILE)
_ALL_SENSORS = frozenset(SensorType)


def _rng(seed: str, purpose: str) -> random.Random:
    seed_bytes = hashlib.sha256(f"{seed}:{purpose}".encode("utf-8")).digest()[:8]
    return random.Random(int.from_bytes(seed_bytes, "big", signed=False))


def _home_for(seed: str) -> tuple[float, float]:
    digest = hashlib.sha256(f"{seed}:geo".encode("utf-8")).digest()
    # Deterministically place the demo device within DEMO_RADIUS_KM of the center.
    u = int.from_bytes(digest[:8], "big") / float((1 << 64) - 1)
    v = int.from_bytes(digest[8:16], "big") / float((1 << 64) - 1)
    distance = DEMO_RADIUS_KM * math.sqrt(u) / EARTH_RADIUS_KM
    bearing = 2.0 * math.pi * v

    lat1 = math.radians(DEMO_CENTER_LAT)
    lon1 = math.radians(DEMO_CENTER_LON)
    lat2 = math.asin(math.sin(lat1) * math.cos(distance) + math.cos(lat1) * math.sin(distance) * math.cos(bearing))
    lon2 = lon1 + math.atan2(
        math.sin(bearing) * math.sin(distance) * math.cos(lat1),
        math.cos(distance) - math.sin(lat1) * math.sin(lat2),
    )
    return round(math.degrees(lat2), 6), round(math.degrees(lon2), 6)


@dataclass
class MockBatterySource:
    """Slowly discharging battery that recharges once it runs low."""

    seed: str = "tracker-demo"
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _rng: Optional[random.Random] = field(default=None, init=False, repr=False)
    _level: float = field(default=87.0, init=False, repr=False)
    _charging: bool = field(default=False, init=False, repr=False)

    def read(self) -> BatterySnapshot:
        with self._lock:
            if self._rng is None:
                self._rng = _rng(self.seed, "battery")
            rng = self._rng

            if self._charging:
                self._level = min(100.0, self._level + rng.uniform(0.5, 1.5))
                if self._level >= 100.0:
                    self._charging = False
            else:
                self._level = max(0.0, self._level - rng.uniform(0.05, 0.4))
                if self._level <= 15.0:
                    self._charging = True

            if self._charging:
                status = BATTERY_STATUS_CHARGING
                current_ua = int(rng.uniform(400_000, 900_000))
            elif self._level >= 100.0:
                status = BATTERY_STATUS_FULL
                current_ua = 0
            else:
                status = BATTERY_STATUS_DISCHARGING
                current_ua = -int(rng.uniform(80_000, 350_000))

            return BatterySnapshot(
                level=int(self._level),
                scale=100,
                voltage_mv=int(3500 + 7 * self._level + rng.uniform(-15, 15)),
                current_ua=current_ua,
                temperature_decidegrees=int(rng.uniform(240, 330)),
                status=status,
            )


class MockSensorSource:
    """Plausible barometer, light and proximity values on polling threads."""

    def __init__(self, seed: str = "tracker-demo", *, available: FrozenSet[SensorType] = _ALL_SENSORS) -> None:
        self.seed = seed
        self.available = frozenset(available)
        self._rng = _rng(seed, "sensors")
        self._rng_lock = threading.Lock()
        self._registry = ListenerRegistry()

    def default_sensor(self, sensor_type: SensorType) -> Optional[SensorType]:
        return sensor_type if sensor_type in self.available else None

    def _value(self, sensor_type: SensorType) -> float:
        with self._rng_lock:
            if sensor_type is SensorType.PRESSURE:
                return round(self._rng.gauss(1013.25, 4.0), 2)
            if sensor_type is SensorType.LIGHT:
                return round(max(0.0, self._rng.gauss(320.0, 120.0)), 1)
            return 5.0 if self._rng.random() < 0.9 else 0.0

    def register_listener(self, listener: SensorListener, sensor: SensorType, rate_s: float) -> None:
        worker: PollingListener[float] = PollingListener(
            name=f"mock-{sensor.value}",
            interval_s=rate_s,
            poll=lambda: self._value(sensor),
            deliver=listener,
        )
        self._registry.add(listener, worker)
        worker.start()

    def unregister_listener(self, listener: SensorListener) -> None:
        self._registry.remove(listener)


class MockLocationSource:
    """Fixes scattered around a seeded home point with converging accuracy.

    Each subscription starts at the provider's initial accuracy and halves the
    distance to its best accuracy on every update, so the acquirer stabilizes
    after a handful of updates. `update_interval_s` overrides the requested
    minimum time between updates.
    """

    def __init__(
        self,
        seed: str = "tracker-demo",
        *,
        supports_fused: bool = True,
        providers: FrozenSet[str] = _ALL_PROVIDERS,
        update_interval_s: Optional[float] = None,
    ) -> None:
        self.seed = seed
        self.supports_fused = supports_fused
        self.providers = frozenset(providers)
        self.update_interval_s = update_interval_s
        self.home = _home_for(seed)
        self._rng = _rng(seed, "location")
        self._rng_lock = threading.Lock()
        self._registry = ListenerRegistry()

    def _fix_stream(self, provider: str):
        start, best = _ACCURACY_PROFILE.get(provider, (100.0, 20.0))
        step = 0

        def _next() -> LocationFix:
            nonlocal step
            accuracy = best + (start - best) * (0.5 ** step)
            step += 1
            with self._rng_lock:
                jitter_m = self._rng.uniform(0.0, accuracy)
                bearing = self._rng.uniform(0.0, 2.0 * math.pi)
                speed = round(abs(self._rng.gauss(0.0, 0.8)), 2)
                altitude = round(self._rng.gauss(1250.0, 3.0), 1)
            lat0, lon0 = self.home
            dlat = (jitter_m * math.cos(bearing)) / 111_320.0
            dlon = (jitter_m * math.sin(bearing)) / (111_320.0 * max(0.01, math.cos(math.radians(lat0))))
            return LocationFix(
                latitude=round(lat0 + dlat, 7),
                longitude=round(lon0 + dlon, 7),
                accuracy=round(accuracy, 2),
                provider=provider,
                speed=speed,
                altitude=altitude,
                bearing=round(math.degrees(bearing), 1),
            )

        return _next

    def request_location_updates(
        self,
        provider: str,
        min_time_ms: int,
        min_distance_m: float,
        listener: LocationListener,
    ) -> None:
        _ = min_distance_m
        if provider not in self.providers or (provider == FUSED_PROVIDER and not self.supports_fused):
            raise ProviderUnavailableError(f"mock provider '{provider}' is disabled")
        interval = self.update_interval_s if self.update_interval_s is not None else min_time_ms / 1000.0
        worker: PollingListener[LocationFix] = PollingListener(
            name=f"mock-location-{provider}",
            interval_s=interval,
            poll=self._fix_stream(provider),
            deliver=listener,
        )
        self._registry.add(listener, worker)
        worker.start()

    def remove_updates(self, listener: LocationListener) -> None:
        self._registry.remove(listener)
