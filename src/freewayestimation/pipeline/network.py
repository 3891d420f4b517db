from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from freewayestimation.cell.config import CellControlConfig
from freewayestimation.cell.freeway_cell import FreewayCell
from freewayestimation.events.measurement import MeasurementEvent, parse_measurement
from freewayestimation.utils.config import section, section_list
from freewayestimation.utils.types import CellEstimate


logger = logging.getLogger("freewayestimation.pipeline.network")


class FreewayNetwork:
    """Cells of one freeway stretch, ordered upstream to downstream.

    A measurement goes to every cell that maps its sensor (a boundary detector is
    usually the outflow sensor of one cell and the inflow sensor of the next), in
    upstream to downstream order. The merge density of the preceding cell is handed
    in as the upstream prior; the first cell gets 0.
    """

    def __init__(self, cells: List[FreewayCell], cfg: Optional[CellControlConfig] = None) -> None:
        self._cells = list(cells)
        self._cfg = cfg or CellControlConfig()
        self._by_sensor: Dict[int, List[int]] = {}
        for idx, cell in enumerate(self._cells):
            for sensor_id in cell.roles.assigned().values():
                self._by_sensor.setdefault(sensor_id, []).append(idx)
        logger.debug("Network of %d cells, %d sensors", len(self._cells), len(self._by_sensor))

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "FreewayNetwork":
        cfg = CellControlConfig.from_dict(section(d, "control"))
        cells = [FreewayCell.from_dict(c, cfg) for c in section_list(d, "cells")]
        if not cells:
            raise ValueError("Network config defines no cells")
        return FreewayNetwork(cells, cfg)

    @property
    def cells(self) -> List[FreewayCell]:
        return list(self._cells)

    def cells_for_sensor(self, sensor_id: int) -> List[FreewayCell]:
        return [self._cells[i] for i in self._by_sensor.get(int(sensor_id), [])]

    def upstream_merge_density(self, idx: int) -> float:
        if idx <= 0:
            return 0.0
        return self._cells[idx - 1].get_merge_density()

    def process_event(
        self, name: str, attributes: Mapping[str, Any], timestamp: Optional[float] = None
    ) -> List[CellEstimate]:
        event = parse_measurement(name, attributes, self._cfg.conversion, timestamp=timestamp)
        if event is None:
            return []
        return self.process_measurement(event)

    def process_measurement(self, event: MeasurementEvent) -> List[CellEstimate]:
        out: List[CellEstimate] = []
        for idx in self._by_sensor.get(event.sensor_id, []):
            cell = self._cells[idx]
            role = cell.process_measurement(event, self.upstream_merge_density(idx))
            if role is None:
                continue
            out.append(cell.snapshot(sensor_id=event.sensor_id, role=role.value, timestamp=event.timestamp))
        return out

    def merge_densities(self) -> Dict[str, float]:
        return {c.cell_id: c.get_merge_density() for c in self._cells}
