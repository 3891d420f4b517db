from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from freewayestimation.cell.config import CellControlConfig
from freewayestimation.estimation.state_estimator import FreewayStateEstimator
from freewayestimation.estimation.sysid import FreewaySysId
from freewayestimation.events.measurement import MeasurementEvent


def estimate_merge_density(
    mainline_density: float,
    mainline_flow: float,
    inflow_estimate: float,
    prior_estimate: float,
    epsilon: float,
    max_density: float,
) -> float:
    """Density downstream of the on-ramp merge.

    The mainline density is scaled by total inflow over mainline outflow, then bounded
    below by the prior estimate and above by max_density. The prior is itself clipped
    to [0, max_density] so the result always lies in that range.
    """
    raw = mainline_density * (mainline_flow + inflow_estimate) / (mainline_flow + epsilon)
    lower = min(max(float(prior_estimate), 0.0), max_density)
    return float(max(min(raw, max_density), lower))


class MergeArea(Protocol):
    @property
    def has_onramp(self) -> bool:
        ...

    @property
    def estimator(self) -> Optional[FreewayStateEstimator]:
        ...

    @property
    def sysid(self) -> Optional[FreewaySysId]:
        ...

    def process_queue(self, event: MeasurementEvent) -> None:
        ...

    def process_metering(self, event: MeasurementEvent) -> None:
        ...

    def merge_density(self, mainline: FreewayStateEstimator, prior_estimate: float) -> float:
        ...


@dataclass
class NoOnRamp(MergeArea):
    cfg: CellControlConfig

    @property
    def has_onramp(self) -> bool:
        return False

    @property
    def estimator(self) -> Optional[FreewayStateEstimator]:
        return None

    @property
    def sysid(self) -> Optional[FreewaySysId]:
        return None

    def process_queue(self, event: MeasurementEvent) -> None:
        return None

    def process_metering(self, event: MeasurementEvent) -> None:
        return None

    def merge_density(self, mainline: FreewayStateEstimator, prior_estimate: float) -> float:
        # Nothing merges: the mainline density passes through uncorrected.
        return min(mainline.get_density(), self.cfg.max_mainline_density)


@dataclass
class OnRamp(MergeArea):
    cfg: CellControlConfig
    onramp_estimator: FreewayStateEstimator
    identifier: FreewaySysId

    @property
    def has_onramp(self) -> bool:
        return True

    @property
    def estimator(self) -> Optional[FreewayStateEstimator]:
        return self.onramp_estimator

    @property
    def sysid(self) -> Optional[FreewaySysId]:
        return self.identifier

    def process_queue(self, event: MeasurementEvent) -> None:
        # Queue detector occupancy does not translate into ramp density.
        self.onramp_estimator.process_in_measurement(
            event.mean_flow,
            event.flow_std,
            event.mean_density,
            self.cfg.unreliable_density_std,
            event.mean_speed,
        )

    def process_metering(self, event: MeasurementEvent) -> None:
        self.onramp_estimator.process_out_measurement(
            max(event.mean_flow, self.cfg.min_metering_rate),
            event.flow_std,
            event.mean_density,
            self.cfg.unreliable_density_std,
            event.mean_speed,
        )

    def merge_density(self, mainline: FreewayStateEstimator, prior_estimate: float) -> float:
        return estimate_merge_density(
            mainline_density=mainline.get_density(),
            mainline_flow=mainline.get_flow(),
            inflow_estimate=self.onramp_estimator.get_flow(),
            prior_estimate=prior_estimate,
            epsilon=self.cfg.merge_epsilon,
            max_density=self.cfg.max_mainline_density,
        )
