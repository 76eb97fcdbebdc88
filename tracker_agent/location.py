from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from .cancellation import CancellationToken, OneShot, OperationCancelled

GPS_PROVIDER = "gps"
NETWORK_PROVIDER = "network"
FUSED_PROVIDER = "fused"
PASSIVE_PROVIDER = "passive"

LOCATION_MIN_TIME_MS = 1000
LOCATION_MIN_DISTANCE_M = 0.0
MIN_ACCURACY_DIFFERENCE = 5.0
LOCATION_TIMEOUT_S = 10.0


class LocationPermissionError(PermissionError):
    """The platform refused a location subscription."""


class ProviderUnavailableError(RuntimeError):
    """The requested provider does not exist or is disabled on this device."""


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    accuracy: Optional[float]
    provider: str
    speed: Optional[float] = None
    altitude: Optional[float] = None
    bearing: Optional[float] = None


LocationListener = Callable[[LocationFix], None]


class LocationSource(Protocol):
    """Location-update subscription primitive provided by the platform."""

    supports_fused: bool

    def request_location_updates(
        self,
        provider: str,
        min_time_ms: int,
        min_distance_m: float,
        listener: LocationListener,
    ) -> None: ...

    def remove_updates(self, listener: LocationListener) -> None: ...


class LocationAcquirer:
    """Obtain one stabilized fix, falling back across providers.

    A provider's fix is accepted once two consecutive updates report accuracies
    within MIN_ACCURACY_DIFFERENCE of each other. Each provider gets at most
    `timeout_s`; a provider that times out, refuses permission or is unavailable
    simply yields to the next one.
    """

    def __init__(
        self,
        source: LocationSource,
        *,
        timeout_s: float = LOCATION_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.timeout_s = float(timeout_s)
        self._clock = clock

    def providers(self) -> List[str]:
        order = [GPS_PROVIDER, NETWORK_PROVIDER]
        if getattr(self.source, "supports_fused", False):
            order.append(FUSED_PROVIDER)
        order.append(PASSIVE_PROVIDER)
        return order

    def acquire_fix(self, cancel: Optional[CancellationToken] = None) -> Optional[LocationFix]:
        for provider in self.providers():
            if cancel is not None:
                cancel.raise_if_cancelled()
            if provider != GPS_PROVIDER:
                print(f"[tracker-location] trying {provider}")
            fix = self.try_provider(provider, cancel=cancel)
            if fix is not None:
                return fix
        print("[tracker-location] no provider produced a stable fix")
        return None

    def try_provider(
        self,
        provider: str,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[LocationFix]:
        result: OneShot[LocationFix] = OneShot()
        last_accuracy: Optional[float] = None

        def _on_location(fix: LocationFix) -> None:
            nonlocal last_accuracy
            if fix.accuracy is None:
                return
            if last_accuracy is None:
                last_accuracy = fix.accuracy
            elif abs(fix.accuracy - last_accuracy) < MIN_ACCURACY_DIFFERENCE:
                result.resolve(fix)
            else:
                last_accuracy = fix.accuracy

        try:
            self.source.request_location_updates(
                provider,
                LOCATION_MIN_TIME_MS,
                LOCATION_MIN_DISTANCE_M,
                _on_location,
            )
        except (LocationPermissionError, ProviderUnavailableError) as exc:
            print(f"[tracker-location] {provider} unavailable: {type(exc).__name__}: {exc}")
            return None
        except OperationCancelled:
            raise
        except Exception as exc:
            print(f"[tracker-location] {provider} request failed: {type(exc).__name__}: {exc}")
            return None

        try:
            return result.wait(self.timeout_s, cancel)
        finally:
            self.source.remove_updates(_on_location)

    def now(self) -> float:
        return self._clock()

    def time_to_fix(
        self,
        start: float,
        fix: Optional[LocationFix],
        end: Optional[float] = None,
    ) -> Optional[float]:
        """Seconds spent acquiring `fix`; only meaningful for GPS fixes."""

        if fix is None or fix.provider != GPS_PROVIDER:
            return None
        finished = self._clock() if end is None else end
        return max(0.0, finished - start)
