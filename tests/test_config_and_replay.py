import csv
import json
import math

import pytest
import yaml

from freewayestimation.cell.config import CellControlConfig
from freewayestimation.events.measurement import EventKind
from freewayestimation.pipeline.network import FreewayNetwork
from freewayestimation.pipeline.replay import FreewayReplayConfig, FreewayReplayRunner
from freewayestimation.utils.config import load_yaml, resolve_path, section
from freewayestimation.utils.types import CellParameters, SensorRoleTable

MAINLINE = EventKind.MAINLINE_INTERVAL.value
ONRAMP = EventKind.ONRAMP_INTERVAL.value


def _network_dict():
    return {
        "control": {
            "units": {"cars_to_flow": 1.0, "occupancy_to_density": 1.0},
            "min_metering_rate": 2.0,
            "filter": {"flow_process_var": 100.0},
            "sysid": {"forgetting": 0.99, "window": 50},
        },
        "cells": [
            {
                "parameters": {
                    "cell_id": "c0",
                    "length_km": 0.5,
                    "free_flow_speed_kmh": 100.0,
                    "critical_density": 30.0,
                    "jam_density": 200.0,
                },
                "sensors": {"mainline_in": 1001, "mainline_out": 1002},
            },
            {
                "parameters": {
                    "cell_id": "c1",
                    "length_km": 0.6,
                    "free_flow_speed_kmh": 100.0,
                    "critical_density": 30.0,
                    "jam_density": 200.0,
                    "onramp_queue_length_km": 0.15,
                },
                "sensors": {"mainline_in": 1002, "mainline_out": 1004, "onramp_in": 1006, "onramp_out": 1007},
            },
        ],
    }


def _attrs(sensor: int, flow: float, occupancy: float):
    return {
        "average_flow": flow,
        "average_occupancy": occupancy,
        "average_speed": 80.0,
        "standard_dev_flow": 1.0,
        "standard_dev_density": 1.0,
        "sensorId": str(sensor),
    }


def test_load_yaml_requires_mapping(tmp_path) -> None:
    p = tmp_path / "list.yaml"
    p.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_yaml(str(p))
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_yaml(str(empty)) == {}


def test_resolve_path_and_section(tmp_path) -> None:
    assert resolve_path("/abs/file.yaml") == "/abs/file.yaml"
    assert resolve_path("a.yaml", str(tmp_path)) == str((tmp_path / "a.yaml").resolve())
    assert section({}, "filter") == {}
    with pytest.raises(ValueError):
        section({"filter": [1, 2]}, "filter")


def test_control_config_from_dict() -> None:
    cfg = CellControlConfig.from_dict(_network_dict()["control"])
    assert cfg.conversion.cars_to_flow == 1.0
    assert cfg.min_metering_rate == 2.0
    assert cfg.max_mainline_density == 250.0
    assert cfg.filter.flow_process_var == 100.0
    assert cfg.filter.density_process_var == 4.0
    assert cfg.sysid.window == 50
    with pytest.raises(ValueError):
        CellControlConfig.from_dict({"merge_epsilon": 0.0})


def test_cell_parameters_validation() -> None:
    with pytest.raises(ValueError):
        CellParameters(length_km=0.5, free_flow_speed_kmh=100.0, critical_density=50.0, jam_density=40.0)
    with pytest.raises(ValueError):
        CellParameters(length_km=0.0, free_flow_speed_kmh=100.0, critical_density=30.0, jam_density=200.0)
    with pytest.raises(ValueError):
        SensorRoleTable(mainline_in=1, mainline_out=1)


def test_network_routes_shared_boundary_sensor_to_both_cells() -> None:
    net = FreewayNetwork.from_dict(_network_dict())
    assert [c.cell_id for c in net.cells_for_sensor(1002)] == ["c0", "c1"]
    out = net.process_event(MAINLINE, _attrs(1002, 900.0, 20.0))
    assert [(e.cell_id, e.role) for e in out] == [("c0", "mainline_out"), ("c1", "mainline_in")]
    assert net.process_event(MAINLINE, _attrs(4242, 900.0, 20.0)) == []


def test_network_passes_upstream_merge_density_as_prior() -> None:
    net = FreewayNetwork.from_dict(_network_dict())
    net.process_event(MAINLINE, _attrs(1001, 500.0, 180.0))
    net.process_event(MAINLINE, _attrs(1002, 500.0, 180.0))
    upstream = net.merge_densities()["c0"]
    assert abs(upstream - 180.0) < 1e-9

    net.process_event(ONRAMP, _attrs(1007, 100.0, 5.0))
    net.process_event(MAINLINE, _attrs(1004, 1500.0, 10.0))
    assert net.merge_densities()["c1"] >= upstream


def test_replay_runner_writes_estimates(tmp_path) -> None:
    network_yaml = tmp_path / "network.yaml"
    network_yaml.write_text(yaml.safe_dump(_network_dict()), encoding="utf-8")

    records = [
        {"name": MAINLINE, "timestamp": 0, "attributes": _attrs(1001, 900.0, 20.0)},
        {"name": MAINLINE, "timestamp": 15, "attributes": _attrs(1002, 880.0, 21.0)},
        None,
        {"name": MAINLINE, "timestamp": 30, "attributes": dict(_attrs(1001, 900.0, 20.0), average_speed=math.nan)},
        {"name": MAINLINE, "timestamp": 45, "attributes": _attrs(9999, 900.0, 20.0)},
        {"name": ONRAMP, "timestamp": 60, "attributes": _attrs(1007, 0.0, 3.0)},
        {"name": MAINLINE, "timestamp": 75, "attributes": _attrs(1004, 950.0, 24.0)},
    ]
    events = tmp_path / "events.jsonl"
    with open(events, "w", encoding="utf-8") as f:
        for r in records:
            f.write("{not json\n" if r is None else json.dumps(r) + "\n")

    csv_path = tmp_path / "out" / "estimates.csv"
    jsonl_path = tmp_path / "out" / "estimates.jsonl"
    runner = FreewayReplayRunner(
        FreewayReplayConfig(
            network_yaml=str(network_yaml),
            events_jsonl=str(events),
            csv_path=str(csv_path),
            jsonl_path=str(jsonl_path),
        )
    )
    stats = runner.run()
    assert stats.lines == 7
    assert stats.malformed == 1
    assert stats.applied == 4
    assert stats.ignored == 2

    with open(csv_path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 5
    assert rows[0]["cell_id"] == "c0"
    assert rows[0]["onramp_flow"] == ""

    with open(jsonl_path, encoding="utf-8") as f:
        lines = [json.loads(x) for x in f if x.strip()]
    assert len(lines) == 5
    last = lines[-1]
    assert last["cell_id"] == "c1"
    assert last["role"] == "mainline_out"
    assert last["timestamp"] == 75.0
    assert 0.0 <= last["merge_density"] <= 250.0
    assert lines[-2]["onramp_flow"] == 2.0


def test_role_table_accepts_integral_float_ids() -> None:
    table = SensorRoleTable.from_dict({"mainline_in": 10.0, "mainline_out": 11})
    assert table.mainline_in == 10
    assert isinstance(table.mainline_in, int)
    with pytest.raises(ValueError):
        SensorRoleTable.from_dict({"mainline_in": 10.5})
