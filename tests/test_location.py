from __future__ import annotations

import threading
from typing import Dict, List, Optional

import pytest

from tracker_agent.cancellation import CancellationToken, OperationCancelled
from tracker_agent.location import (
    FUSED_PROVIDER,
    GPS_PROVIDER,
    NETWORK_PROVIDER,
    PASSIVE_PROVIDER,
    LocationAcquirer,
    LocationFix,
    LocationListener,
    LocationPermissionError,
    ProviderUnavailableError,
)


class _ScriptedSource:
    """Replays a fixed list of accuracies per provider, synchronously."""

    def __init__(
        self,
        script: Dict[str, List[Optional[float]]],
        *,
        supports_fused: bool = True,
        errors: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.script = script
        self.supports_fused = supports_fused
        self.errors = errors or {}
        self.requested: List[str] = []
        self.removed: List[LocationListener] = []

    def request_location_updates(
        self,
        provider: str,
        min_time_ms: int,
        min_distance_m: float,
        listener: LocationListener,
    ) -> None:
        assert min_time_ms == 1000
        assert min_distance_m == 0.0
        self.requested.append(provider)
        if provider in self.errors:
            raise self.errors[provider]
        for accuracy in self.script.get(provider, []):
            listener(LocationFix(latitude=1.0, longitude=2.0, accuracy=accuracy, provider=provider))

    def remove_updates(self, listener: LocationListener) -> None:
        self.removed.append(listener)


def test_fix_accepted_once_consecutive_accuracies_converge() -> None:
    source = _ScriptedSource({GPS_PROVIDER: [40.0, 22.0, 13.0, 8.5, 8.0]})
    fix = LocationAcquirer(source, timeout_s=1.0).acquire_fix()

    assert fix is not None
    assert fix.provider == GPS_PROVIDER
    assert fix.accuracy == 8.5
    assert source.requested == [GPS_PROVIDER]
    assert len(source.removed) == 1


def test_equal_accuracies_are_accepted_on_second_update() -> None:
    source = _ScriptedSource({GPS_PROVIDER: [10.0, 10.0]})
    fix = LocationAcquirer(source, timeout_s=1.0).acquire_fix()
    assert fix is not None and fix.accuracy == 10.0


def test_updates_without_accuracy_are_ignored() -> None:
    source = _ScriptedSource({GPS_PROVIDER: [None, 10.0, None, 12.0]})
    fix = LocationAcquirer(source, timeout_s=1.0).acquire_fix()
    assert fix is not None and fix.accuracy == 12.0


def test_unstable_provider_times_out_and_next_provider_is_tried() -> None:
    source = _ScriptedSource(
        {
            GPS_PROVIDER: [40.0, 10.0],
            NETWORK_PROVIDER: [30.0, 28.0],
        }
    )
    fix = LocationAcquirer(source, timeout_s=0.05).acquire_fix()

    assert fix is not None
    assert fix.provider == NETWORK_PROVIDER
    assert source.requested == [GPS_PROVIDER, NETWORK_PROVIDER]
    assert len(source.removed) == 2


@pytest.mark.parametrize(
    ("supports_fused", "expected"),
    [
        (True, [GPS_PROVIDER, NETWORK_PROVIDER, FUSED_PROVIDER, PASSIVE_PROVIDER]),
        (False, [GPS_PROVIDER, NETWORK_PROVIDER, PASSIVE_PROVIDER]),
    ],
)
def test_provider_order_and_exhaustion(supports_fused: bool, expected: List[str]) -> None:
    source = _ScriptedSource({}, supports_fused=supports_fused)
    acquirer = LocationAcquirer(source, timeout_s=0.01)

    assert acquirer.providers() == expected
    assert acquirer.acquire_fix() is None
    assert source.requested == expected
    assert len(source.removed) == len(expected)


def test_permission_and_unavailable_providers_are_skipped() -> None:
    source = _ScriptedSource(
        {PASSIVE_PROVIDER: [50.0, 48.0]},
        supports_fused=False,
        errors={
            GPS_PROVIDER: LocationPermissionError("denied"),
            NETWORK_PROVIDER: ProviderUnavailableError("disabled"),
        },
    )
    fix = LocationAcquirer(source, timeout_s=0.5).acquire_fix()

    assert fix is not None and fix.provider == PASSIVE_PROVIDER
    assert source.requested == [GPS_PROVIDER, NETWORK_PROVIDER, PASSIVE_PROVIDER]
    assert len(source.removed) == 1


def test_crashing_provider_is_skipped() -> None:
    source = _ScriptedSource(
        {NETWORK_PROVIDER: [30.0, 28.0]},
        errors={GPS_PROVIDER: RuntimeError("provider service crashed")},
    )
    fix = LocationAcquirer(source, timeout_s=0.5).acquire_fix()

    assert fix is not None and fix.provider == NETWORK_PROVIDER
    assert source.requested == [GPS_PROVIDER, NETWORK_PROVIDER]


def test_every_provider_crashing_yields_no_fix() -> None:
    source = _ScriptedSource(
        {},
        supports_fused=False,
        errors={p: OSError("location hal gone") for p in (GPS_PROVIDER, NETWORK_PROVIDER, PASSIVE_PROVIDER)},
    )
    assert LocationAcquirer(source, timeout_s=0.5).acquire_fix() is None
    assert source.requested == [GPS_PROVIDER, NETWORK_PROVIDER, PASSIVE_PROVIDER]


def test_cancellation_interrupts_wait_and_removes_listener() -> None:
    source = _ScriptedSource({})
    token = CancellationToken()
    threading.Timer(0.05, token.cancel).start()

    with pytest.raises(OperationCancelled):
        LocationAcquirer(source, timeout_s=10.0).acquire_fix(token)

    assert source.requested == [GPS_PROVIDER]
    assert len(source.removed) == 1


def test_time_to_fix_only_for_gps() -> None:
    ticks = iter([100.0, 103.5])
    acquirer = LocationAcquirer(_ScriptedSource({}), clock=lambda: next(ticks))
    start = acquirer.now()

    gps = LocationFix(latitude=0.0, longitude=0.0, accuracy=5.0, provider=GPS_PROVIDER)
    network = LocationFix(latitude=0.0, longitude=0.0, accuracy=5.0, provider=NETWORK_PROVIDER)

    assert acquirer.time_to_fix(start, gps) == pytest.approx(3.5)
    assert acquirer.time_to_fix(start, network, end=110.0) is None
    assert acquirer.time_to_fix(start, None, end=110.0) is None
