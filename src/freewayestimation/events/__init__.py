from .measurement import (
    REQUIRED_ATTRIBUTES,
    EventKind,
    InvalidMeasurement,
    MeasurementEvent,
    UnitConversion,
    parse_measurement,
)

__all__ = [
    "REQUIRED_ATTRIBUTES",
    "EventKind",
    "InvalidMeasurement",
    "MeasurementEvent",
    "UnitConversion",
    "parse_measurement",
]
