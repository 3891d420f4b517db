from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Deque, Dict, List, Optional, Tuple

import numpy as np

logger = logging.getLogger("freewayestimation.estimation.sysid")

MIN_REGRESSOR = 1e-6


@dataclass(frozen=True)
class FundamentalDiagram:
    """Triangular flow-density relation.

    Left branch:  q = v * rho             (rho <= rho_c)
    Right branch: q = w * (rho_j - rho)   (rho > rho_c)
    with v * rho_c = w * (rho_j - rho_c).
    """

    free_flow_speed: float
    congestion_wave_speed: float
    critical_density: float
    jam_density: float

    @staticmethod
    def from_triangle(free_flow_speed: float, critical_density: float, jam_density: float) -> "FundamentalDiagram":
        w = free_flow_speed * critical_density / (jam_density - critical_density)
        return FundamentalDiagram(
            free_flow_speed=float(free_flow_speed),
            congestion_wave_speed=float(w),
            critical_density=float(critical_density),
            jam_density=float(jam_density),
        )

    @property
    def capacity(self) -> float:
        return self.free_flow_speed * self.critical_density

    def flow(self, density: float) -> float:
        if density <= 0.0:
            return 0.0
        if density <= self.critical_density:
            return self.free_flow_speed * density
        return max(0.0, self.congestion_wave_speed * (self.jam_density - density))

    def is_congested(self, density: float) -> bool:
        return density > self.critical_density


@dataclass(frozen=True)
class SysIdConfig:
    forgetting: float = 0.995
    free_flow_covariance: float = 100.0
    congested_covariance: float = 1e6
    window: int = 500

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "SysIdConfig":
        forgetting = float(d.get("forgetting", 0.995))
        if not 0.0 < forgetting <= 1.0:
            raise ValueError("sysid.forgetting must be in (0, 1]")
        return SysIdConfig(
            forgetting=forgetting,
            free_flow_covariance=float(d.get("free_flow_covariance", 100.0)),
            congested_covariance=float(d.get("congested_covariance", 1e6)),
            window=max(1, int(d.get("window", 500))),
        )


class FreewaySysId:
    """Online fit of the triangular fundamental diagram from (flow, density) pairs.

    Each datum updates one branch by recursive least squares with exponential
    forgetting, chosen by the current critical density:

      free flow:  q = v * rho                      (scalar RLS on v)
      congested:  q = a + b * rho / rho_j0          (RLS on theta = [a, b])
                  w = -b / rho_j0,  rho_j = a / w

    and rho_c = w * rho_j / (v + w). A fit that leaves the physically meaningful
    region is rolled back: the previous diagram and regression state are kept.
    A zero density carries no information about v and is recorded without an
    update. Covariances are capped at their initial values so that stretches of
    unexciting data cannot wind them up.
    """

    def __init__(
        self,
        free_flow_speed: float,
        critical_density: float,
        jam_density: float,
        length_km: float,
        cfg: Optional[SysIdConfig] = None,
    ) -> None:
        self._cfg = cfg or SysIdConfig()
        self._length_km = float(length_km)
        self._params = FundamentalDiagram.from_triangle(free_flow_speed, critical_density, jam_density)
        self._rho_scale = float(jam_density)

        self._v = float(free_flow_speed)
        self._p_v = float(self._cfg.free_flow_covariance)

        w = self._params.congestion_wave_speed
        self._theta = np.array([w * jam_density, -w * self._rho_scale], dtype=np.float64)
        self._P = np.eye(2, dtype=np.float64) * float(self._cfg.congested_covariance)

        self._observations: Deque[Tuple[float, float]] = deque(maxlen=int(self._cfg.window))
        self._n_updates = 0

    @property
    def parameters(self) -> FundamentalDiagram:
        return self._params

    @property
    def free_flow_speed(self) -> float:
        return self._params.free_flow_speed

    @property
    def critical_density(self) -> float:
        return self._params.critical_density

    @property
    def jam_density(self) -> float:
        return self._params.jam_density

    @property
    def length_km(self) -> float:
        return self._length_km

    @property
    def observations(self) -> List[Tuple[float, float]]:
        return list(self._observations)

    @property
    def n_updates(self) -> int:
        return self._n_updates

    def add_datum(self, flow: float, density: float) -> None:
        q = float(flow)
        rho = float(density)
        self._observations.append((q, rho))
        self._n_updates += 1
        lam = float(self._cfg.forgetting)
        saved = (self._v, self._p_v, self._theta.copy(), self._P.copy())

        if not self._params.is_congested(rho):
            if abs(rho) < MIN_REGRESSOR:
                return
            # Scalar RLS, regressor rho
            k = self._p_v * rho / (lam + rho * self._p_v * rho)
            self._v = self._v + k * (q - self._v * rho)
            self._p_v = min((self._p_v - k * rho * self._p_v) / lam, float(self._cfg.free_flow_covariance))
        else:
            phi = np.array([1.0, rho / self._rho_scale], dtype=np.float64)
            P_phi = self._P @ phi
            k = P_phi / (lam + phi @ P_phi)
            self._theta = self._theta + k * (q - phi @ self._theta)
            self._P = (self._P - np.outer(k, phi) @ self._P) / lam
            self._P = 0.5 * (self._P + self._P.T)
            max_trace = 2.0 * float(self._cfg.congested_covariance)
            trace = float(np.trace(self._P))
            if trace > max_trace:
                self._P = self._P * (max_trace / trace)

        if not self._refresh():
            self._v, self._p_v, self._theta, self._P = saved

    def _refresh(self) -> bool:
        v = float(self._v)
        a, b = (float(x) for x in self._theta)
        w = -b / self._rho_scale
        if not (math.isfinite(v) and math.isfinite(w)) or v <= 0.0 or w <= 0.0:
            logger.debug("Rejected fit v=%.3f w=%.3f, keeping %s", v, w, self._params)
            return False
        rho_j = a / w
        rho_c = w * rho_j / (v + w)
        if not (math.isfinite(rho_j) and math.isfinite(rho_c)) or not 0.0 < rho_c < rho_j:
            logger.debug("Rejected fit rho_c=%.3f rho_j=%.3f, keeping %s", rho_c, rho_j, self._params)
            return False
        self._params = replace(
            self._params,
            free_flow_speed=v,
            congestion_wave_speed=w,
            critical_density=rho_c,
            jam_density=rho_j,
        )
        return True
