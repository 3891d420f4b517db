from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from freewayestimation.pipeline.replay import FreewayReplayConfig, FreewayReplayRunner
from freewayestimation.utils.config import resolve_path
from freewayestimation.utils.logging import setup_logging


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay recorded detector events through the freeway cell estimators")
    ap.add_argument("--network", default="configs/network.yaml", help="Network YAML (control constants and cells)")
    ap.add_argument("--events", required=True, help="JSONL file of measurement events")
    ap.add_argument("--csv", default=None, help="Write per-event estimates to this CSV")
    ap.add_argument("--jsonl", default=None, help="Write per-event estimates to this JSONL")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--log-file", default=None)
    args = ap.parse_args()

    base_dir = os.getcwd()
    setup_logging(level=args.log_level, log_file=args.log_file)

    runner = FreewayReplayRunner(
        FreewayReplayConfig(
            network_yaml=resolve_path(args.network, base_dir),
            events_jsonl=resolve_path(args.events, base_dir),
            csv_path=resolve_path(args.csv, base_dir) if args.csv else None,
            jsonl_path=resolve_path(args.jsonl, base_dir) if args.jsonl else None,
        )
    )
    stats = runner.run()
    if stats.applied == 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
