"""Nemesis timeline: when faults start and stop relative to the run start."""

from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass

from faultline.domain.operations import Function

WARMUP = 3.0
COOLDOWN_RESERVE = 10.0


def fault_cycles(time_limit: float, fault_window: float) -> int:
    """Number of start/stop cycles: ``floor((time_limit - 10) / (2 * fault_window))``."""
    if fault_window <= 0:
        raise ValueError("fault_window must be positive")
    return max(0, math.floor((time_limit - COOLDOWN_RESERVE) / (2 * fault_window)))


def planned_cycles(time_limit: float, fault_window: float) -> int:
    """Cycles actually scheduled.

    Never more than :func:`fault_cycles`. That formula alone can let the last
    stop land closer than one fault window to the time limit when the window
    is long, so the count is also capped at ``floor((T - 3 - F) / (2 * F))``.
    This schedules fewer cycles than ``floor((T - 10) / (2 * F))`` in such
    cases: ``T=26, F=8`` gets no cycle instead of one, since a single cycle
    would stop at 19 s, 7 s before the limit.
    """
    cycles = fault_cycles(time_limit, fault_window)
    tail_bound = math.floor((time_limit - WARMUP - fault_window) / (2 * fault_window))
    return max(0, min(cycles, tail_bound))


@dataclass(frozen=True)
class NemesisStep:
    sleep: float = 0.0
    function: Function | None = None


class NemesisSchedule:
    """Emits ``[sleep(F), start, sleep(F), stop]`` cycles after a warm-up sleep."""

    def __init__(self, time_limit: float, fault_window: float) -> None:
        self.time_limit = time_limit
        self.fault_window = fault_window
        self.cycles = planned_cycles(time_limit, fault_window)

    def __iter__(self) -> Iterator[NemesisStep]:
        yield NemesisStep(sleep=WARMUP)
        for _ in range(self.cycles):
            yield NemesisStep(sleep=self.fault_window)
            yield NemesisStep(function=Function.FAULT_START)
            yield NemesisStep(sleep=self.fault_window)
            yield NemesisStep(function=Function.FAULT_STOP)

    def timeline(self) -> list[tuple[float, Function]]:
        """Nominal offsets of each control event, ignoring injection latency."""
        offset = 0.0
        events: list[tuple[float, Function]] = []
        for step in self:
            offset += step.sleep
            if step.function is not None:
                events.append((offset, step.function))
        return events
