from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from freewayestimation.output.sinks import CsvSink, EstimateSinks, JsonlSink
from freewayestimation.pipeline.network import FreewayNetwork
from freewayestimation.utils.config import load_yaml


logger = logging.getLogger("freewayestimation.pipeline.replay")


@dataclass(frozen=True)
class FreewayReplayConfig:
    network_yaml: str
    events_jsonl: str
    csv_path: Optional[str] = None
    jsonl_path: Optional[str] = None


@dataclass
class ReplayStats:
    lines: int = 0
    malformed: int = 0
    applied: int = 0
    ignored: int = 0


def _read_records(path: str, stats: ReplayStats) -> Iterator[Tuple[str, Dict[str, Any], Optional[float]]]:
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            stats.lines += 1
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("%s:%d: malformed JSON (%s)", path, lineno, e)
                stats.malformed += 1
                continue
            if not isinstance(obj, dict) or not isinstance(obj.get("attributes"), dict):
                logger.warning("%s:%d: expected an object with 'name' and 'attributes'", path, lineno)
                stats.malformed += 1
                continue
            ts = obj.get("timestamp")
            try:
                ts = None if ts is None else float(ts)
            except (TypeError, ValueError):
                logger.warning("%s:%d: invalid timestamp %r", path, lineno, ts)
                stats.malformed += 1
                continue
            yield str(obj.get("name", "")), obj["attributes"], ts


class FreewayReplayRunner:
    def __init__(self, cfg: FreewayReplayConfig) -> None:
        self._cfg = cfg
        self._network = FreewayNetwork.from_dict(load_yaml(cfg.network_yaml))
        self._sinks = EstimateSinks(
            csv=CsvSink(cfg.csv_path) if cfg.csv_path else None,
            jsonl=JsonlSink(cfg.jsonl_path) if cfg.jsonl_path else None,
        )

    @property
    def network(self) -> FreewayNetwork:
        return self._network

    def run(self) -> ReplayStats:
        stats = ReplayStats()
        self._sinks.open()
        try:
            for name, attributes, ts in _read_records(self._cfg.events_jsonl, stats):
                estimates = self._network.process_event(name, attributes, timestamp=ts)
                if not estimates:
                    stats.ignored += 1
                    continue
                stats.applied += 1
                for e in estimates:
                    self._sinks.write(e)
        finally:
            self._sinks.close()
        logger.info(
            "Replay done: %d records, %d applied, %d ignored, %d malformed",
            stats.lines,
            stats.applied,
            stats.ignored,
            stats.malformed,
        )
        for cell_id, rho in self._network.merge_densities().items():
            logger.info("Cell %s final merge density %.2f veh/km", cell_id, rho)
        return stats
