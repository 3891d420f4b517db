from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

MIN_VARIANCE = 1e-6


def _clip(value: float, lo: float, hi: float) -> float:
    return float(min(max(value, lo), hi))


@dataclass(frozen=True)
class FilterConfig:
    flow_process_var: float = 2500.0
    density_process_var: float = 4.0

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "FilterConfig":
        return FilterConfig(
            flow_process_var=float(d.get("flow_process_var", 2500.0)),
            density_process_var=float(d.get("density_process_var", 4.0)),
        )


@dataclass
class _ChannelFilter:
    """Scalar Kalman filters for flow and density observed at one cell boundary.

    sign is +1 for the inflow boundary and -1 for the outflow boundary: flow above
    the current estimate adds vehicles to the segment at the inflow boundary and
    removes them at the outflow boundary.
    """

    sign: float
    length_km: float
    max_density: float
    dt_h: float
    cfg: FilterConfig
    flow: Optional[float] = None
    flow_var: float = 0.0
    density: Optional[float] = None
    density_var: float = 0.0
    speed: Optional[float] = None

    @property
    def initialized(self) -> bool:
        return self.flow is not None and self.density is not None

    def update(self, flow: float, flow_std: float, density: float, density_std: float, speed: float) -> None:
        r_q = max(float(flow_std) ** 2, MIN_VARIANCE)
        r_d = max(float(density_std) ** 2, MIN_VARIANCE)
        self.speed = float(speed)

        if self.flow is None or self.density is None:
            self.flow = max(float(flow), 0.0)
            self.flow_var = r_q
            self.density = _clip(float(density), 0.0, self.max_density)
            self.density_var = r_d
            return

        # Prediction
        p_q = self.flow_var + self.cfg.flow_process_var
        p_d = self.density_var + self.cfg.density_process_var
        d_pred = self.density + self.sign * self.dt_h / self.length_km * (float(flow) - self.flow)
        d_pred = _clip(d_pred, 0.0, self.max_density)

        # Update
        k_q = p_q / (p_q + r_q)
        self.flow = max(self.flow + k_q * (float(flow) - self.flow), 0.0)
        self.flow_var = (1.0 - k_q) * p_q

        k_d = p_d / (p_d + r_d)
        self.density = _clip(d_pred + k_d * (float(density) - d_pred), 0.0, self.max_density)
        self.density_var = (1.0 - k_d) * p_d


class FreewayStateEstimator:
    """Recursive density/flow estimate for one segment from its boundary detectors.

    The inflow and outflow channels are filtered independently; reads combine them.
    get_flow() reports the outflow estimate (inflow until the outflow channel has seen
    a measurement) and get_density() is the inverse-variance weighted mean of the two
    channel densities, bounded to [0, max_density].
    """

    def __init__(self, length_km: float, max_density: float, dt_s: float, cfg: Optional[FilterConfig] = None) -> None:
        if not length_km > 0.0:
            raise ValueError(f"length_km must be positive, got {length_km}")
        if not max_density > 0.0:
            raise ValueError(f"max_density must be positive, got {max_density}")
        if not dt_s > 0.0:
            raise ValueError(f"dt_s must be positive, got {dt_s}")
        self._length_km = float(length_km)
        self._max_density = float(max_density)
        self._dt_s = float(dt_s)
        cfg = cfg or FilterConfig()
        dt_h = self._dt_s / 3600.0
        self._in = _ChannelFilter(sign=1.0, length_km=self._length_km, max_density=self._max_density, dt_h=dt_h, cfg=cfg)
        self._out = _ChannelFilter(sign=-1.0, length_km=self._length_km, max_density=self._max_density, dt_h=dt_h, cfg=cfg)

    @property
    def length_km(self) -> float:
        return self._length_km

    @property
    def max_density(self) -> float:
        return self._max_density

    @property
    def capacity_vehicles(self) -> float:
        return self._length_km * self._max_density

    @property
    def is_initialized(self) -> bool:
        return self._in.initialized or self._out.initialized

    def process_in_measurement(self, flow: float, flow_std: float, density: float, density_std: float, speed: float) -> None:
        self._in.update(flow, flow_std, density, density_std, speed)

    def process_out_measurement(self, flow: float, flow_std: float, density: float, density_std: float, speed: float) -> None:
        self._out.update(flow, flow_std, density, density_std, speed)

    def get_flow(self) -> float:
        if self._out.flow is not None:
            return float(self._out.flow)
        if self._in.flow is not None:
            return float(self._in.flow)
        return 0.0

    def get_density(self) -> float:
        num = 0.0
        den = 0.0
        for ch in (self._in, self._out):
            if ch.density is None:
                continue
            w = 1.0 / max(ch.density_var, MIN_VARIANCE)
            num += w * ch.density
            den += w
        if den <= 0.0:
            return 0.0
        return _clip(num / den, 0.0, self._max_density)

    def get_speed(self) -> Optional[float]:
        if self._out.speed is not None:
            return self._out.speed
        return self._in.speed

    def vehicle_count(self) -> float:
        return self.get_density() * self._length_km

    def channel_state(self, inflow: bool) -> Dict[str, Optional[float]]:
        ch = self._in if inflow else self._out
        return {
            "flow": ch.flow,
            "flow_var": ch.flow_var,
            "density": ch.density,
            "density_var": ch.density_var,
            "speed": ch.speed,
        }
