from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .model import BatteryInfo

BATTERY_STATUS_UNKNOWN = 1
BATTERY_STATUS_CHARGING = 2
BATTERY_STATUS_DISCHARGING = 3
BATTERY_STATUS_NOT_CHARGING = 4
BATTERY_STATUS_FULL = 5


@dataclass(frozen=True)
class BatterySnapshot:
    """Raw values from the power subsystem; None where not reported."""

    level: Optional[int] = None
    scale: Optional[int] = None
    voltage_mv: Optional[int] = None
    current_ua: Optional[int] = None
    temperature_decidegrees: Optional[int] = None
    status: Optional[int] = None


class BatterySource(Protocol):
    def read(self) -> BatterySnapshot: ...


def percentage(snap: BatterySnapshot) -> int:
    if snap.level is None or snap.scale is None or snap.level < 0 or snap.scale <= 0:
        return -1
    return int(round(snap.level * 100 / snap.scale))


def voltage_volts(snap: BatterySnapshot) -> Optional[float]:
    if snap.voltage_mv is None or snap.voltage_mv < 0:
        return None
    return snap.voltage_mv / 1000.0


def current_milliamps(snap: BatterySnapshot) -> Optional[float]:
    if snap.current_ua is None:
        return None
    return snap.current_ua / 1000.0


def temperature_celsius(snap: BatterySnapshot) -> float:
    if snap.temperature_decidegrees is None:
        return -1.0
    return snap.temperature_decidegrees / 10.0


def charging_state(snap: BatterySnapshot) -> Optional[bool]:
    if snap.status in (BATTERY_STATUS_CHARGING, BATTERY_STATUS_FULL):
        return True
    if snap.status in (BATTERY_STATUS_DISCHARGING, BATTERY_STATUS_NOT_CHARGING, BATTERY_STATUS_UNKNOWN):
        return False
    return None


class BatteryReader:
    """Synchronous battery reads.

    Percentage and temperature use a negative sentinel for "unavailable";
    voltage and current are nullable. `reading()` folds both conventions into
    a BatteryInfo where every unknown field is None.
    """

    def __init__(self, source: BatterySource) -> None:
        self.source = source

    def percentage(self) -> int:
        return percentage(self.source.read())

    def voltage_volts(self) -> Optional[float]:
        return voltage_volts(self.source.read())

    def current_milliamps(self) -> Optional[float]:
        return current_milliamps(self.source.read())

    def temperature_celsius(self) -> float:
        return temperature_celsius(self.source.read())

    def charging_state(self) -> Optional[bool]:
        return charging_state(self.source.read())

    def reading(self) -> BatteryInfo:
        snap = self.source.read()
        temp = temperature_celsius(snap)
        level = percentage(snap)
        return BatteryInfo(
            voltage=voltage_volts(snap),
            current=current_milliamps(snap),
            temperature=temp if temp >= 0 else None,
            level=level if level >= 0 else None,
            charging=charging_state(snap),
        )
