"""Demo script for failure-memory-engine."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from failure_memory.adapters.csv_adapter import parse
from failure_memory.correlation import analyze
from failure_memory.decay import recompute
from failure_memory.schema import parse_timestamp


def main() -> None:
    events = parse("examples/sample_events.csv")
    now = parse_timestamp("2025-01-20T12:00:00+00:00")
    scores, dominant = recompute(events, now)
    print("Scores:", scores)
    print("Dominant:", dominant)
    for correlation in analyze(events):
        print("Correlation:", correlation.details)


if __name__ == "__main__":
    main()
