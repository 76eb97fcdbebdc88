from __future__ import annotations

import json
import socket
import threading
from pathlib import Path
from typing import List

import pytest

from tracker_agent.battery import (
    BATTERY_STATUS_CHARGING,
    BATTERY_STATUS_DISCHARGING,
    BatteryReader,
)
from tracker_agent.location import (
    FUSED_PROVIDER,
    GPS_PROVIDER,
    NETWORK_PROVIDER,
    LocationAcquirer,
    LocationFix,
    ProviderUnavailableError,
)
from tracker_agent.sensors import SensorReader, SensorType
from tracker_agent.sources import (
    GpsdLocationSource,
    IioSensorSource,
    MockBatterySource,
    MockLocationSource,
    MockSensorSource,
    SourceConfigError,
    SysfsBatterySource,
    build_sources_from_env,
    find_battery_dir,
    parse_tpv,
)


def _write(path: Path, value: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(value + "\n", encoding="utf-8")


# -----------------------------
# sysfs battery
# -----------------------------


def _fake_power_supply(root: Path) -> Path:
    _write(root / "AC" / "type", "Mains")
    bat = root / "BAT0"
    _write(bat / "type", "Battery")
    _write(bat / "capacity", "64")
    _write(bat / "voltage_now", "3987000")
    _write(bat / "current_now", "-412000")
    _write(bat / "temp", "297")
    _write(bat / "status", "Discharging")
    return bat


def test_sysfs_battery_reads_power_supply_class(tmp_path: Path) -> None:
    bat = _fake_power_supply(tmp_path)
    assert find_battery_dir(tmp_path) == bat

    snap = SysfsBatterySource(root=tmp_path).read()
    assert snap.level == 64
    assert snap.scale == 100
    assert snap.voltage_mv == 3987
    assert snap.current_ua == -412000
    assert snap.temperature_decidegrees == 297
    assert snap.status == BATTERY_STATUS_DISCHARGING

    info = BatteryReader(SysfsBatterySource(path=bat)).reading()
    assert info.level == 64
    assert info.voltage == pytest.approx(3.987)
    assert info.current == pytest.approx(-412.0)
    assert info.temperature == pytest.approx(29.7)
    assert info.charging is False


def test_sysfs_battery_missing_files_are_null(tmp_path: Path) -> None:
    bat = tmp_path / "BAT1"
    _write(bat / "type", "Battery")
    _write(bat / "status", "Charging")

    snap = SysfsBatterySource(path=bat).read()
    assert snap.level is None
    assert snap.voltage_mv is None
    assert snap.status == BATTERY_STATUS_CHARGING

    info = BatteryReader(SysfsBatterySource(path=bat)).reading()
    assert info.level is None
    assert info.temperature is None
    assert info.charging is True


def test_sysfs_without_battery_reports_nothing(tmp_path: Path) -> None:
    assert SysfsBatterySource(root=tmp_path / "nope").read().level is None


# -----------------------------
# IIO sensors
# -----------------------------


def test_iio_channels_are_discovered_and_scaled(tmp_path: Path) -> None:
    baro = tmp_path / "iio:device0"
    _write(baro / "in_pressure_input", "101.325")
    light = tmp_path / "iio:device1"
    _write(light / "in_illuminance_raw", "200")
    _write(light / "in_illuminance_scale", "0.5")

    source = IioSensorSource(tmp_path)
    pressure = source.default_sensor(SensorType.PRESSURE)
    illuminance = source.default_sensor(SensorType.LIGHT)

    assert pressure is not None and pressure.read() == pytest.approx(1013.25)
    assert illuminance is not None and illuminance.read() == pytest.approx(100.0)
    assert source.default_sensor(SensorType.PROXIMITY) is None


def test_iio_reader_gets_one_polled_value(tmp_path: Path) -> None:
    _write(tmp_path / "iio:device0" / "in_proximity0_raw", "3")

    source = IioSensorSource(tmp_path)
    assert SensorReader(source, timeout_s=2.0).proximity() == 3.0
    assert SensorReader(source, timeout_s=2.0).light() is None
    assert source._registry.active() == 0  # noqa: SLF001 - no poller outlives a read


# -----------------------------
# gpsd
# -----------------------------


def test_parse_tpv_requires_2d_fix() -> None:
    fix = parse_tpv(
        {
            "class": "TPV",
            "mode": 3,
            "lat": 37.41,
            "lon": -102.61,
            "eph": 6.5,
            "speed": 1.2,
            "altHAE": 1250.0,
            "track": 181.0,
        }
    )
    assert fix == LocationFix(
        latitude=37.41,
        longitude=-102.61,
        accuracy=6.5,
        provider=GPS_PROVIDER,
        speed=1.2,
        altitude=1250.0,
        bearing=181.0,
    )
    assert parse_tpv({"class": "TPV", "mode": 1}) is None
    assert parse_tpv({"class": "SKY"}) is None
    assert parse_tpv({"class": "TPV", "mode": 2, "lat": 1.0, "lon": 2.0, "epx": 3.0, "epy": 7.0}).accuracy == 7.0


def test_gpsd_only_serves_gps() -> None:
    source = GpsdLocationSource()
    with pytest.raises(ProviderUnavailableError):
        source.request_location_updates(NETWORK_PROVIDER, 1000, 0.0, lambda fix: None)


def test_gpsd_unreachable_is_provider_unavailable() -> None:
    def _refuse(address: tuple, timeout: float) -> socket.socket:
        raise ConnectionRefusedError("refused")

    source = GpsdLocationSource(socket_factory=_refuse)
    with pytest.raises(ProviderUnavailableError):
        source.request_location_updates(GPS_PROVIDER, 1000, 0.0, lambda fix: None)


def test_gpsd_stream_delivers_fixes_until_removed() -> None:
    agent_end, daemon_end = socket.socketpair()
    source = GpsdLocationSource(socket_factory=lambda address, timeout: agent_end)
    received: List[LocationFix] = []
    got_two = threading.Event()

    def _listener(fix: LocationFix) -> None:
        received.append(fix)
        if len(received) >= 2:
            got_two.set()

    source.request_location_updates(GPS_PROVIDER, 0, 0.0, _listener)
    assert daemon_end.recv(1024).startswith(b"?WATCH=")

    lines = [
        {"class": "VERSION", "release": "3.25"},
        {"class": "TPV", "mode": 3, "lat": 1.0, "lon": 2.0, "eph": 12.0},
        {"class": "TPV", "mode": 3, "lat": 1.1, "lon": 2.1, "eph": 9.0},
    ]
    daemon_end.sendall(b"".join(json.dumps(line).encode("utf-8") + b"\n" for line in lines))

    assert got_two.wait(2.0)
    assert [fix.accuracy for fix in received[:2]] == [12.0, 9.0]

    source.remove_updates(_listener)
    assert source._registry.active() == 0  # noqa: SLF001
    daemon_end.close()


# -----------------------------
# mock sources + env wiring
# -----------------------------


def test_mock_location_stabilizes_with_acquirer() -> None:
    source = MockLocationSource("unit-test", update_interval_s=0.01)
    fix = LocationAcquirer(source, timeout_s=2.0).acquire_fix()

    assert fix is not None
    assert fix.provider == GPS_PROVIDER
    assert fix.accuracy is not None and fix.accuracy < 10.0
    assert source._registry.active() == 0  # noqa: SLF001


def test_mock_location_disabled_providers() -> None:
    source = MockLocationSource("unit-test", supports_fused=False, providers=frozenset({NETWORK_PROVIDER}))
    with pytest.raises(ProviderUnavailableError):
        source.request_location_updates(GPS_PROVIDER, 1000, 0.0, lambda fix: None)
    with pytest.raises(ProviderUnavailableError):
        source.request_location_updates(FUSED_PROVIDER, 1000, 0.0, lambda fix: None)


def test_mock_battery_and_sensors_are_plausible() -> None:
    info = BatteryReader(MockBatterySource(seed="unit-test")).reading()
    assert info.level is not None and 0 <= info.level <= 100
    assert info.voltage is not None and 3.0 < info.voltage < 4.5
    assert info.charging is not None

    sensors = SensorReader(MockSensorSource("unit-test", available=frozenset({SensorType.PRESSURE})), timeout_s=2.0)
    pressure = sensors.pressure()
    assert pressure is not None and 950.0 < pressure < 1080.0
    assert sensors.light() is None


def test_build_sources_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("TRACKER_SOURCE_BACKEND", raising=False)
    assert build_sources_from_env().backend == "mock"

    bat = _fake_power_supply(tmp_path / "power")
    monkeypatch.setenv("TRACKER_SOURCE_BACKEND", "linux")
    monkeypatch.setenv("TRACKER_BATTERY_PATH", str(bat))
    monkeypatch.setenv("TRACKER_IIO_ROOT", str(tmp_path / "iio"))
    monkeypatch.setenv("TRACKER_GPSD_PORT", "2948")
    sources = build_sources_from_env()
    assert sources.backend == "linux"
    assert isinstance(sources.battery, SysfsBatterySource)
    assert isinstance(sources.sensors, IioSensorSource)
    assert isinstance(sources.location, GpsdLocationSource)
    assert sources.location.port == 2948


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("TRACKER_SOURCE_BACKEND", "android"),
        ("TRACKER_GPSD_PORT", "not-a-port"),
        ("TRACKER_GPSD_PORT", "70000"),
        ("TRACKER_BATTERY_PATH", "/definitely/not/here"),
    ],
)
def test_invalid_source_config_fails_fast(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv("TRACKER_SOURCE_BACKEND", "linux")
    monkeypatch.delenv("TRACKER_BATTERY_PATH", raising=False)
    monkeypatch.delenv("TRACKER_GPSD_PORT", raising=False)
    monkeypatch.setenv(key, value)

    with pytest.raises(SourceConfigError):
        build_sources_from_env()
