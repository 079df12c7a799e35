"""Compute decayed scores, correlations and metrics from a failure event dataset."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from failure_memory.adapters import csv_adapter, json_adapter
from failure_memory.adapters.vault_adapter import VaultRepository
from failure_memory.config import EngineConfig, load_config
from failure_memory.correlation import analyze, process_failure_patterns
from failure_memory.decay import recompute
from failure_memory.engine import FailureMemoryEngine
from failure_memory.metrics import compute_metrics, top_archetypes
from failure_memory.schema import parse_timestamp


def _load_events(path: Path, config: EngineConfig):
    if path.is_dir():
        return FailureMemoryEngine(VaultRepository(path), config=config).load_events()
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return csv_adapter.parse(str(path))
    if suffix == ".json":
        return json_adapter.parse(str(path))
    raise ValueError("Unsupported input, expected .csv, .json or a vault directory")


def build_report(events, config: EngineConfig, now: datetime) -> dict:
    scores, dominant = recompute(events, now, config.decay_factor, config.window_days)
    return {
        "now": now.isoformat(),
        "n_events": len(events),
        "scores": scores,
        "dominant": dominant,
        "top_archetypes": top_archetypes(events, config.monthly_top_n),
        "metrics": compute_metrics(events, config.impact_high_threshold),
        "correlations": [
            {"first": c.first, "second": c.second, "pct": c.pct, "details": c.details}
            for c in analyze(events, config)
        ],
        "patterns": process_failure_patterns(events),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the failure-memory report")
    parser.add_argument("--data", required=True, help="Path to CSV/JSON events file or a vault directory")
    parser.add_argument("--config", help="Optional YAML configuration file")
    parser.add_argument("--now", help="ISO timestamp to evaluate at (default: current time)")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    config = load_config(args.config) if args.config else EngineConfig()
    now = parse_timestamp(args.now) if args.now else datetime.now(timezone.utc)
    events = _load_events(Path(args.data), config)
    report = build_report(events, config, now)

    print(json.dumps(report, indent=2))

    outputs_dir = Path("outputs")
    outputs_dir.mkdir(parents=True, exist_ok=True)
    out_path = outputs_dir / "failure_report.json"
    out_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(f"Saved failure report to {out_path}")


if __name__ == "__main__":
    main()
