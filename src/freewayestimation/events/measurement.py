from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger("freewayestimation.events")


class EventKind(str, Enum):
    MAINLINE_INTERVAL = "AverageDensityAndSpeedPerLocationOverInterval"
    ONRAMP_INTERVAL = "AverageOnRampValuesOverInterval"


REQUIRED_ATTRIBUTES = (
    "average_flow",
    "average_occupancy",
    "average_speed",
    "standard_dev_flow",
    "standard_dev_density",
    "sensorId",
)


class InvalidMeasurement(ValueError):
    pass


@dataclass(frozen=True)
class UnitConversion:
    """Scale factors from raw detector aggregates to physical units.

    cars_to_flow turns vehicle counts per interval into veh/h, occupancy_to_density
    turns occupancy into veh/km. Speeds are passed through unchanged.
    """

    cars_to_flow: float = 60.0
    occupancy_to_density: float = 1.5

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "UnitConversion":
        return UnitConversion(
            cars_to_flow=float(d.get("cars_to_flow", 60.0)),
            occupancy_to_density=float(d.get("occupancy_to_density", 1.5)),
        )


def _number(attributes: Mapping[str, Any], key: str) -> float:
    value = attributes[key]
    if isinstance(value, bool):
        raise InvalidMeasurement(f"Attribute '{key}' is not numeric: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidMeasurement(f"Attribute '{key}' is not numeric: {value!r}") from e


def _sensor_id(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidMeasurement(f"Invalid sensorId: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidMeasurement(f"Invalid sensorId: {value!r}")
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise InvalidMeasurement(f"Invalid sensorId: {value!r}") from e


@dataclass(frozen=True)
class MeasurementEvent:
    kind: EventKind
    sensor_id: int
    mean_flow: float
    mean_density: float
    mean_speed: float
    flow_std: float
    density_std: float
    timestamp: Optional[float] = None

    @staticmethod
    def from_dict(
        name: str,
        attributes: Mapping[str, Any],
        conversion: UnitConversion,
        timestamp: Optional[float] = None,
    ) -> "MeasurementEvent":
        try:
            kind = EventKind(name)
        except ValueError as e:
            raise InvalidMeasurement(f"Unrecognised event kind: {name!r}") from e

        missing = [k for k in REQUIRED_ATTRIBUTES if attributes.get(k) is None]
        if missing:
            raise InvalidMeasurement(f"Missing attributes: {', '.join(missing)}")

        event = MeasurementEvent(
            kind=kind,
            sensor_id=_sensor_id(attributes["sensorId"]),
            mean_flow=conversion.cars_to_flow * _number(attributes, "average_flow"),
            mean_density=conversion.occupancy_to_density * _number(attributes, "average_occupancy"),
            mean_speed=_number(attributes, "average_speed"),
            flow_std=conversion.cars_to_flow * _number(attributes, "standard_dev_flow"),
            density_std=conversion.occupancy_to_density * _number(attributes, "standard_dev_density"),
            timestamp=None if timestamp is None else float(timestamp),
        )
        if not event.is_finite():
            raise InvalidMeasurement(f"Non-finite values in measurement from sensor {event.sensor_id}")
        return event

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (self.mean_flow, self.mean_density, self.mean_speed, self.flow_std, self.density_std)
        )


def parse_measurement(
    name: str,
    attributes: Mapping[str, Any],
    conversion: UnitConversion,
    timestamp: Optional[float] = None,
) -> Optional[MeasurementEvent]:
    try:
        return MeasurementEvent.from_dict(name, attributes, conversion, timestamp=timestamp)
    except InvalidMeasurement as e:
        logger.debug("Discarding event %s: %s", name, e)
        return None
