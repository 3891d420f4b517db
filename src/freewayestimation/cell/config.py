from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from freewayestimation.estimation.state_estimator import FilterConfig
from freewayestimation.estimation.sysid import SysIdConfig
from freewayestimation.events.measurement import UnitConversion
from freewayestimation.utils.config import section


@dataclass(frozen=True)
class CellControlConfig:
    """Constants shared by every cell of a deployment.

    Flows are in veh/h and densities in veh/km after unit conversion. dt_s is the
    filter time step in seconds.
    """

    conversion: UnitConversion = field(default_factory=UnitConversion)
    min_metering_rate: float = 200.0
    max_mainline_density: float = 250.0
    max_onramp_density: float = 125.0
    merge_epsilon: float = 0.1
    dt_s: float = 15.0
    unreliable_density_std: float = 1000.0
    sysid_speed_factor: float = 0.7
    filter: FilterConfig = field(default_factory=FilterConfig)
    sysid: SysIdConfig = field(default_factory=SysIdConfig)

    def __post_init__(self) -> None:
        if not self.max_mainline_density > 0.0:
            raise ValueError("max_mainline_density must be positive")
        if not self.max_onramp_density > 0.0:
            raise ValueError("max_onramp_density must be positive")
        if not self.merge_epsilon > 0.0:
            raise ValueError("merge_epsilon must be positive")
        if not self.dt_s > 0.0:
            raise ValueError("dt_s must be positive")
        if self.min_metering_rate < 0.0:
            raise ValueError("min_metering_rate must be >= 0")

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "CellControlConfig":
        return CellControlConfig(
            conversion=UnitConversion.from_dict(section(d, "units")),
            min_metering_rate=float(d.get("min_metering_rate", 200.0)),
            max_mainline_density=float(d.get("max_mainline_density", 250.0)),
            max_onramp_density=float(d.get("max_onramp_density", 125.0)),
            merge_epsilon=float(d.get("merge_epsilon", 0.1)),
            dt_s=float(d.get("dt_s", 15.0)),
            unreliable_density_std=float(d.get("unreliable_density_std", 1000.0)),
            sysid_speed_factor=float(d.get("sysid_speed_factor", 0.7)),
            filter=FilterConfig.from_dict(section(d, "filter")),
            sysid=SysIdConfig.from_dict(section(d, "sysid")),
        )
