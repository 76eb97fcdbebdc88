from .model import (
    BatteryInfo,
    CellularInfo,
    DeliveryPayload,
    LocationInfo,
    SensorInfo,
    TelemetrySample,
)

__version__ = "0.1.0"

__all__ = [
    "BatteryInfo",
    "CellularInfo",
    "DeliveryPayload",
    "LocationInfo",
    "SensorInfo",
    "TelemetrySample",
    "__version__",
]
