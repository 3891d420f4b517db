from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from freewayestimation.utils.types import CellEstimate

ESTIMATE_FIELDS = [f.name for f in fields(CellEstimate)]


def _ensure_parent(path: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


@dataclass
class CsvSink:
    path: str
    _f: Optional[object] = None
    _w: Optional[csv.DictWriter] = None

    def open(self) -> None:
        _ensure_parent(self.path)
        self._f = open(self.path, "w", newline="", encoding="utf-8")
        self._w = csv.DictWriter(self._f, fieldnames=ESTIMATE_FIELDS)
        self._w.writeheader()

    def write(self, e: CellEstimate) -> None:
        if self._w is None:
            raise RuntimeError("CsvSink not opened")
        row = asdict(e)
        self._w.writerow({k: ("" if v is None else v) for k, v in row.items()})

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
        self._f = None
        self._w = None


@dataclass
class JsonlSink:
    path: str
    _f: Optional[object] = None

    def open(self) -> None:
        _ensure_parent(self.path)
        self._f = open(self.path, "w", encoding="utf-8")

    def write(self, e: CellEstimate) -> None:
        if self._f is None:
            raise RuntimeError("JsonlSink not opened")
        self._f.write(json.dumps(asdict(e), ensure_ascii=False) + "\n")

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
        self._f = None


@dataclass
class EstimateSinks:
    csv: Optional[CsvSink]
    jsonl: Optional[JsonlSink]

    def open(self) -> None:
        if self.csv is not None:
            self.csv.open()
        if self.jsonl is not None:
            self.jsonl.open()

    def write(self, e: CellEstimate) -> None:
        if self.csv is not None:
            self.csv.write(e)
        if self.jsonl is not None:
            self.jsonl.write(e)

    def close(self) -> None:
        if self.csv is not None:
            self.csv.close()
        if self.jsonl is not None:
            self.jsonl.close()
