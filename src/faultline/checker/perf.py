"""Latency and throughput summary of a run."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Sequence
from pathlib import Path

from faultline.domain.operations import CheckerResult, Validity
from faultline.history import History

QUANTILES = (0.5, 0.95, 0.99)


def quantile(sorted_values: Sequence[float], q: float) -> float:
    """Nearest-rank quantile of an ascending, non-empty sequence."""
    if not sorted_values:
        raise ValueError("quantile of an empty sequence")
    rank = max(1, math.ceil(q * len(sorted_values)))
    return sorted_values[rank - 1]


def summarize(latencies: Sequence[float]) -> dict[str, float | int]:
    values = sorted(latencies)
    summary: dict[str, float | int] = {
        "count": len(values),
        "mean": sum(values) / len(values),
        "max": values[-1],
    }
    for q in QUANTILES:
        summary[f"p{round(q * 100)}"] = quantile(values, q)
    return summary


class PerformanceChecker:
    """Always valid; reports latency per function and outcome."""

    name = "perf"

    def check(self, history: History, run_dir: Path | None = None) -> CheckerResult:
        operations = history.client_operations()
        groups: dict[str, list[float]] = defaultdict(list)
        for op in operations:
            latency = op.complete_time - op.invoke_time
            groups[f"{op.function.value}:{op.outcome.value}"].append(latency)

        throughput = 0.0
        if operations:
            start = min(op.invoke_time for op in operations)
            end = max(op.complete_time for op in operations)
            if end > start:
                throughput = len(operations) / (end - start)

        return CheckerResult(
            Validity.TRUE,
            details={
                "operations": len(operations),
                "throughput": throughput,
                "latency": {name: summarize(values) for name, values in sorted(groups.items())},
                "fault_windows": [
                    {"start_time": w.start_time, "duration": w.duration}
                    for w in history.fault_windows()
                ],
            },
        )
