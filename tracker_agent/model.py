from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class LocationInfo:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    bearing: Optional[float] = None
    provider: Optional[str] = None
    time_to_fix: Optional[float] = None


@dataclass(frozen=True)
class BatteryInfo:
    voltage: Optional[float] = None
    current: Optional[float] = None
    temperature: Optional[float] = None
    level: Optional[int] = None
    charging: Optional[bool] = None


@dataclass(frozen=True)
class SensorInfo:
    barometer: Optional[float] = None
    light: Optional[float] = None
    proximity: Optional[float] = None


@dataclass(frozen=True)
class CellularInfo:
    """Reserved; no source populates these yet."""

    network_type: Optional[str] = None
    signal_strength: Optional[int] = None
    signal_power: Optional[int] = None
    cell_tower: Optional[str] = None


@dataclass(frozen=True)
class TelemetrySample:
    date: str
    location: LocationInfo = field(default_factory=LocationInfo)
    battery: BatteryInfo = field(default_factory=BatteryInfo)
    sensors: SensorInfo = field(default_factory=SensorInfo)
    cellular: CellularInfo = field(default_factory=CellularInfo)


@dataclass(frozen=True)
class DeliveryPayload:
    """Backlog entries (oldest first) followed by exactly one fresh sample."""

    pending: Tuple[TelemetrySample, ...]
    fresh: TelemetrySample

    @property
    def samples(self) -> List[TelemetrySample]:
        return [*self.pending, self.fresh]

    def __len__(self) -> int:
        return len(self.pending) + 1

    def __iter__(self) -> Iterator[TelemetrySample]:
        return iter(self.samples)


def format_timestamp(dt: datetime) -> str:
    """Render `YYYY-MM-DDTHH:mm:ss.sss+HH:mm`.

    strftime's %z yields `+0200`; the collector expects the colon form, so it
    is inserted explicitly. Naive datetimes are interpreted as local time.
    """

    if dt.tzinfo is None:
        dt = dt.astimezone()
    offset = dt.strftime("%z")
    offset = f"{offset[:-2]}:{offset[-2:]}"
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}" + offset


def now_timestamp() -> str:
    return format_timestamp(datetime.now().astimezone())


# -----------------------------
# Wire codec
# -----------------------------


def sample_to_wire(sample: TelemetrySample) -> Dict[str, Any]:
    loc = sample.location
    bat = sample.battery
    sen = sample.sensors
    cell = sample.cellular
    return {
        "date": sample.date,
        "location": {
            "latitude": loc.latitude,
            "longitude": loc.longitude,
            "speed": loc.speed,
            "accuracy": loc.accuracy,
            "altitude": loc.altitude,
            "provider": loc.provider,
            "timeToFix": loc.time_to_fix,
            "bearing": loc.bearing,
        },
        "battery": {
            "voltage": bat.voltage,
            "current": bat.current,
            "temperature": bat.temperature,
            "level": bat.level,
            "charging": bat.charging,
        },
        "sensors": {
            "barometer": sen.barometer,
            "light": sen.light,
            "proximity": sen.proximity,
        },
        "cellular": {
            "networkType": cell.network_type,
            "signalStrength": cell.signal_strength,
            "signalPower": cell.signal_power,
            "cellTower": cell.cell_tower,
        },
    }


def payload_to_wire(samples: Iterable[TelemetrySample]) -> List[Dict[str, Any]]:
    return [sample_to_wire(s) for s in samples]


def _section(obj: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    v = obj.get(key)
    if v is None:
        return {}
    if not isinstance(v, Mapping):
        raise ValueError(f"'{key}' must be an object")
    return v


def _opt_float(obj: Mapping[str, Any], key: str) -> Optional[float]:
    v = obj.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValueError(f"'{key}' must be a number or null")
    return float(v)


def _opt_int(obj: Mapping[str, Any], key: str) -> Optional[int]:
    v = obj.get(key)
    if v is None:
        return None
    if isinstance(v, bool):
        raise ValueError(f"'{key}' must be an int or null")
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    raise ValueError(f"'{key}' must be an int or null")


def _opt_str(obj: Mapping[str, Any], key: str) -> Optional[str]:
    v = obj.get(key)
    if v is None:
        return None
    if not isinstance(v, str):
        raise ValueError(f"'{key}' must be a string or null")
    return v


def _opt_bool(obj: Mapping[str, Any], key: str) -> Optional[bool]:
    v = obj.get(key)
    if v is None:
        return None
    if not isinstance(v, bool):
        raise ValueError(f"'{key}' must be a bool or null")
    return v


def sample_from_wire(obj: Any) -> TelemetrySample:
    if not isinstance(obj, Mapping):
        raise ValueError("telemetry entry must be an object")
    date = obj.get("date")
    if not isinstance(date, str) or not date:
        raise ValueError("'date' must be a non-empty string")

    loc = _section(obj, "location")
    bat = _section(obj, "battery")
    sen = _section(obj, "sensors")
    cell = _section(obj, "cellular")

    return TelemetrySample(
        date=date,
        location=LocationInfo(
            latitude=_opt_float(loc, "latitude"),
            longitude=_opt_float(loc, "longitude"),
            speed=_opt_float(loc, "speed"),
            accuracy=_opt_float(loc, "accuracy"),
            altitude=_opt_float(loc, "altitude"),
            bearing=_opt_float(loc, "bearing"),
            provider=_opt_str(loc, "provider"),
            time_to_fix=_opt_float(loc, "timeToFix"),
        ),
        battery=BatteryInfo(
            voltage=_opt_float(bat, "voltage"),
            current=_opt_float(bat, "current"),
            temperature=_opt_float(bat, "temperature"),
            level=_opt_int(bat, "level"),
            charging=_opt_bool(bat, "charging"),
        ),
        sensors=SensorInfo(
            barometer=_opt_float(sen, "barometer"),
            light=_opt_float(sen, "light"),
            proximity=_opt_float(sen, "proximity"),
        ),
        cellular=CellularInfo(
            network_type=_opt_str(cell, "networkType"),
            signal_strength=_opt_int(cell, "signalStrength"),
            signal_power=_opt_int(cell, "signalPower"),
            cell_tower=_opt_str(cell, "cellTower"),
        ),
    )
