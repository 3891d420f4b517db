from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from freewayestimation.cell.config import CellControlConfig
from freewayestimation.cell.merge import MergeArea, NoOnRamp, OnRamp
from freewayestimation.estimation.state_estimator import FreewayStateEstimator
from freewayestimation.estimation.sysid import FreewaySysId
from freewayestimation.events.measurement import MeasurementEvent, parse_measurement
from freewayestimation.utils.config import section
from freewayestimation.utils.types import CellEstimate, CellParameters, SensorRole, SensorRoleTable


logger = logging.getLogger("freewayestimation.cell")


class FreewayCell:
    """State estimation and system identification for one freeway cell.

    Measurements are routed by the role their sensor plays in this cell. A
    mainline-out or merge measurement also refreshes the merge-area density and
    feeds it, with the mainline flow, to the system identifier of cells that have
    an on-ramp.
    """

    def __init__(self, params: CellParameters, roles: SensorRoleTable, cfg: Optional[CellControlConfig] = None) -> None:
        self._params = params
        self._roles = roles
        self._cfg = cfg or CellControlConfig()
        if roles.has_onramp_roles() and not params.has_onramp:
            raise ValueError(f"Cell '{params.cell_id}' maps on-ramp sensors but has no on-ramp queue configured")

        self._mainline = FreewayStateEstimator(
            params.length_km, self._cfg.max_mainline_density, self._cfg.dt_s, self._cfg.filter
        )
        self._merge_area: MergeArea
        if params.has_onramp:
            self._merge_area = OnRamp(
                cfg=self._cfg,
                onramp_estimator=FreewayStateEstimator(
                    params.onramp_queue_length_km, self._cfg.max_onramp_density, self._cfg.dt_s, self._cfg.filter
                ),
                identifier=FreewaySysId(
                    self._cfg.sysid_speed_factor * params.free_flow_speed_kmh,
                    params.critical_density,
                    params.jam_density,
                    params.length_km,
                    self._cfg.sysid,
                ),
            )
        else:
            self._merge_area = NoOnRamp(cfg=self._cfg)
        self._merge_density = 0.0

        self._handlers: Dict[SensorRole, Callable[[MeasurementEvent, float], None]] = {
            SensorRole.MAINLINE_IN: self._on_mainline_in,
            SensorRole.MAINLINE_OUT: self._on_mainline_out,
            SensorRole.MERGE: self._on_merge,
            SensorRole.ONRAMP_IN: self._on_onramp_in,
            SensorRole.ONRAMP_OUT: self._on_onramp_out,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any], cfg: Optional[CellControlConfig] = None) -> "FreewayCell":
        return FreewayCell(
            CellParameters.from_dict(section(d, "parameters")),
            SensorRoleTable.from_dict(section(d, "sensors")),
            cfg,
        )

    @property
    def cell_id(self) -> str:
        return self._params.cell_id

    @property
    def params(self) -> CellParameters:
        return self._params

    @property
    def roles(self) -> SensorRoleTable:
        return self._roles

    @property
    def config(self) -> CellControlConfig:
        return self._cfg

    @property
    def has_onramp(self) -> bool:
        return self._merge_area.has_onramp

    @property
    def mainline(self) -> FreewayStateEstimator:
        return self._mainline

    @property
    def onramp(self) -> Optional[FreewayStateEstimator]:
        return self._merge_area.estimator

    @property
    def sysid(self) -> Optional[FreewaySysId]:
        return self._merge_area.sysid

    def get_merge_density(self) -> float:
        return self._merge_density

    def process_event(
        self,
        name: str,
        attributes: Mapping[str, Any],
        upstream_merge_density: float = 0.0,
        timestamp: Optional[float] = None,
    ) -> Optional[SensorRole]:
        event = parse_measurement(name, attributes, self._cfg.conversion, timestamp=timestamp)
        if event is None:
            return None
        return self.process_measurement(event, upstream_merge_density)

    def process_measurement(self, event: MeasurementEvent, upstream_merge_density: float = 0.0) -> Optional[SensorRole]:
        """Apply one measurement; returns the role it was applied as, or None if ignored."""
        if not event.is_finite():
            logger.debug("Cell %s: dropping non-finite measurement from sensor %d", self.cell_id, event.sensor_id)
            return None
        role = self._roles.role_of(event.sensor_id)
        if role is None:
            return None
        self._handlers[role](event, float(upstream_merge_density))
        return role

    def snapshot(self, sensor_id: int = -1, role: str = "", timestamp: Optional[float] = None) -> CellEstimate:
        onramp = self._merge_area.estimator
        sysid = self._merge_area.sysid
        fd = sysid.parameters if sysid is not None else None
        return CellEstimate(
            cell_id=self.cell_id,
            timestamp=timestamp,
            sensor_id=int(sensor_id),
            role=role,
            mainline_density=self._mainline.get_density(),
            mainline_flow=self._mainline.get_flow(),
            merge_density=self._merge_density,
            onramp_density=onramp.get_density() if onramp is not None else None,
            onramp_flow=onramp.get_flow() if onramp is not None else None,
            free_flow_speed=fd.free_flow_speed if fd is not None else None,
            critical_density=fd.critical_density if fd is not None else None,
            jam_density=fd.jam_density if fd is not None else None,
        )

    def _on_mainline_in(self, event: MeasurementEvent, upstream: float) -> None:
        self._mainline.process_in_measurement(
            event.mean_flow, event.flow_std, event.mean_density, event.density_std, event.mean_speed
        )

    def _on_mainline_out(self, event: MeasurementEvent, upstream: float) -> None:
        self._mainline.process_out_measurement(
            event.mean_flow, event.flow_std, event.mean_density, event.density_std, event.mean_speed
        )
        self._refresh_merge_density(upstream)

    def _on_merge(self, event: MeasurementEvent, upstream: float) -> None:
        # The merge detector's own density reading bounds the estimate from below.
        self._refresh_merge_density(event.mean_density)

    def _on_onramp_in(self, event: MeasurementEvent, upstream: float) -> None:
        self._merge_area.process_queue(event)

    def _on_onramp_out(self, event: MeasurementEvent, upstream: float) -> None:
        self._merge_area.process_metering(event)

    def _refresh_merge_density(self, prior_estimate: float) -> None:
        self._merge_density = self._merge_area.merge_density(self._mainline, prior_estimate)
        sysid = self._merge_area.sysid
        if sysid is not None:
            sysid.add_datum(self._mainline.get_flow(), self._merge_density)
        logger.debug("Cell %s: merge density %.3f", self.cell_id, self._merge_density)


@dataclass
class LockedFreewayCell:
    """Serialises dispatch and reads of a cell shared between threads."""

    cell: FreewayCell

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def cell_id(self) -> str:
        return self.cell.cell_id

    def process_event(
        self,
        name: str,
        attributes: Mapping[str, Any],
        upstream_merge_density: float = 0.0,
        timestamp: Optional[float] = None,
    ) -> Optional[SensorRole]:
        with self._lock:
            return self.cell.process_event(name, attributes, upstream_merge_density, timestamp)

    def process_measurement(self, event: MeasurementEvent, upstream_merge_density: float = 0.0) -> Optional[SensorRole]:
        with self._lock:
            return self.cell.process_measurement(event, upstream_merge_density)

    def get_merge_density(self) -> float:
        with self._lock:
            return self.cell.get_merge_density()

    def snapshot(self, sensor_id: int = -1, role: str = "", timestamp: Optional[float] = None) -> CellEstimate:
        with self._lock:
            return self.cell.snapshot(sensor_id, role, timestamp)
