from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..battery import (
    BATTERY_STATUS_CHARGING,
    BATTERY_STATUS_DISCHARGING,
    BATTERY_STATUS_FULL,
    BATTERY_STATUS_NOT_CHARGING,
    BATTERY_STATUS_UNKNOWN,
    BatterySnapshot,
)

POWER_SUPPLY_ROOT = Path("/sys/class/power_supply")

_STATUS_CODES = {
    "charging": BATTERY_STATUS_CHARGING,
    "discharging": BATTERY_STATUS_DISCHARGING,
    "not charging": BATTERY_STATUS_NOT_CHARGING,
    "full": BATTERY_STATUS_FULL,
    "unknown": BATTERY_STATUS_UNKNOWN,
}


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


def _read_int(path: Path) -> Optional[int]:
    raw = _read_text(path)
    if raw is None or not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def find_battery_dir(root: Path = POWER_SUPPLY_ROOT) -> Optional[Path]:
    try:
        candidates = sorted(p for p in root.iterdir() if p.is_dir())
    except OSError:
        return None
    for candidate in candidates:
        if (_read_text(candidate / "type") or "").lower() == "battery":
            return candidate
    return None


@dataclass
class SysfsBatterySource:
    """Battery readings from the Linux power-supply class.

    sysfs reports capacity in percent, voltage in microvolts, current in
    microamps and temperature in tenths of a degree; files a driver does not
    provide are reported as missing.
    """

    path: Optional[Path] = None
    root: Path = POWER_SUPPLY_ROOT
    _warned: bool = field(default=False, init=False, repr=False)

    def _battery_dir(self) -> Optional[Path]:
        if self.path is not None:
            return self.path
        found = find_battery_dir(self.root)
        if found is None and not self._warned:
            print(f"[tracker-agent] no battery found under {self.root}; battery fields will be null")
            self._warned = True
        return found

    def read(self) -> BatterySnapshot:
        base = self._battery_dir()
        if base is None:
            return BatterySnapshot()

        capacity = _read_int(base / "capacity")
        voltage_uv = _read_int(base / "voltage_now")
        status_text = _read_text(base / "status")

        return BatterySnapshot(
            level=capacity,
            scale=100 if capacity is not None else None,
            voltage_mv=round(voltage_uv / 1000) if voltage_uv is not None else None,
            current_ua=_read_int(base / "current_now"),
            temperature_decidegrees=_read_int(base / "temp"),
            status=_STATUS_CODES.get(status_text.lower()) if status_text else None,
        )
