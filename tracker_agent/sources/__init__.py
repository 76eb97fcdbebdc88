from .config import PlatformSources, SourceConfigError, build_sources_from_env
from .gpsd_location import GpsdLocationSource, parse_tpv
from .iio_sensors import IioChannel, IioSensorSource
from .mock import MockBatterySource, MockLocationSource, MockSensorSource
from .sysfs_battery import SysfsBatterySource, find_battery_dir

__all__ = [
    "GpsdLocationSource",
    "IioChannel",
    "IioSensorSource",
    "MockBatterySource",
    "MockLocationSource",
    "MockSensorSource",
    "PlatformSources",
    "SourceConfigError",
    "SysfsBatterySource",
    "build_sources_from_env",
    "find_battery_dir",
    "parse_tpv",
]
