from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SensorRole(str, Enum):
    MAINLINE_IN = "mainline_in"
    MAINLINE_OUT = "mainline_out"
    MERGE = "merge"
    ONRAMP_IN = "onramp_in"
    ONRAMP_OUT = "onramp_out"

    @property
    def is_onramp(self) -> bool:
        return self in (SensorRole.ONRAMP_IN, SensorRole.ONRAMP_OUT)


@dataclass(frozen=True)
class CellParameters:
    """Static physical constants of one freeway cell.

    Densities are in veh/km, speeds in km/h and lengths in km. An on-ramp queue
    length of 0 means the cell has no on-ramp.
    """

    length_km: float
    free_flow_speed_kmh: float
    critical_density: float
    jam_density: float
    onramp_queue_length_km: float = 0.0
    cell_id: str = ""

    def __post_init__(self) -> None:
        if not self.length_km > 0.0:
            raise ValueError(f"length_km must be positive, got {self.length_km}")
        if not self.free_flow_speed_kmh > 0.0:
            raise ValueError(f"free_flow_speed_kmh must be positive, got {self.free_flow_speed_kmh}")
        if not 0.0 < self.critical_density < self.jam_density:
            raise ValueError(
                f"expected 0 < critical_density < jam_density, got {self.critical_density}, {self.jam_density}"
            )
        if self.onramp_queue_length_km < 0.0:
            raise ValueError(f"onramp_queue_length_km must be >= 0, got {self.onramp_queue_length_km}")

    @property
    def has_onramp(self) -> bool:
        return self.onramp_queue_length_km > 0.0

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "CellParameters":
        return CellParameters(
            length_km=float(d["length_km"]),
            free_flow_speed_kmh=float(d["free_flow_speed_kmh"]),
            critical_density=float(d["critical_density"]),
            jam_density=float(d["jam_density"]),
            onramp_queue_length_km=float(d.get("onramp_queue_length_km", 0.0)),
            cell_id=str(d.get("cell_id", "")),
        )


def _optional_sensor_id(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid sensor id: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Invalid sensor id: {value!r}")
        return int(value)
    return int(str(value).strip())


@dataclass(frozen=True)
class SensorRoleTable:
    mainline_in: Optional[int] = None
    mainline_out: Optional[int] = None
    merge: Optional[int] = None
    onramp_in: Optional[int] = None
    onramp_out: Optional[int] = None

    def __post_init__(self) -> None:
        seen: Dict[int, SensorRole] = {}
        for role, sensor_id in self.assigned().items():
            if sensor_id in seen:
                raise ValueError(f"Sensor {sensor_id} assigned to both {seen[sensor_id].value} and {role.value}")
            seen[sensor_id] = role
        object.__setattr__(self, "_by_sensor", seen)

    def assigned(self) -> Dict[SensorRole, int]:
        out: Dict[SensorRole, int] = {}
        for role in SensorRole:
            sensor_id = getattr(self, role.value)
            if sensor_id is not None:
                out[role] = int(sensor_id)
        return out

    def role_of(self, sensor_id: int) -> Optional[SensorRole]:
        return self._by_sensor.get(int(sensor_id))  # type: ignore[attr-defined]

    def has_onramp_roles(self) -> bool:
        return any(role.is_onramp for role in self.assigned())

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SensorRoleTable":
        return SensorRoleTable(**{role.value: _optional_sensor_id(d.get(role.value)) for role in SensorRole})


@dataclass(frozen=True)
class CellEstimate:
    cell_id: str
    timestamp: Optional[float]
    sensor_id: int
    role: str
    mainline_density: float
    mainline_flow: float
    merge_density: float
    onramp_density: Optional[float] = None
    onramp_flow: Optional[float] = None
    free_flow_speed: Optional[float] = None
    critical_density: Optional[float] = None
    jam_density: Optional[float] = None
