"""Concurrent per-key operation generator.

Lanes are grouped ``con_per_key`` at a time. Every group works on one key of
an unbounded key space until that key's budget is spent, then claims the next
fresh key. The stages applied per lane mirror a functional pipeline:

    mix(read, write, cas) -> stagger(1 / rate) -> limit(budget per key)

and the whole generator is cut off by a wall-clock ``time_limit``.
"""

from __future__ import annotations

import itertools
import math
import random
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

from faultline.domain.operations import Function, Invocation

BUDGET_JITTER = (0.9, 1.0)

DEFAULT_MIX: tuple[tuple[Function, float], ...] = (
    (Function.READ, 1.0),
    (Function.WRITE, 1.0),
    (Function.CAS, 1.0),
)


def jittered_budget(ops_per_key: int, rng: random.Random) -> int:
    """Scale a per-key budget by a factor drawn from ``BUDGET_JITTER``.

    Rounded up so the realized count stays within ``[0.9 * B, B]``.
    """
    factor = rng.uniform(*BUDGET_JITTER)
    return max(1, min(ops_per_key, math.ceil(ops_per_key * factor)))


@dataclass
class KeyBudget:
    key: int
    budget: int
    issued: int = 0

    @property
    def remaining(self) -> int:
        return self.budget - self.issued


class _LaneGroup:
    """Lanes sharing one key at a time."""

    def __init__(self, generator: OperationGenerator) -> None:
        self._generator = generator
        self._lock = threading.Lock()
        self._current: KeyBudget | None = None

    def claim(self) -> int:
        with self._lock:
            if self._current is None or self._current.remaining <= 0:
                self._current = self._generator._next_key()
            self._current.issued += 1
            return self._current.key


class LaneStream(Iterator[Invocation]):
    """Invocations for one concurrency lane.

    ``process`` is the logical client process the lane currently speaks for;
    :meth:`retire_process` moves the lane to a fresh process id after an
    ambiguous outcome.
    """

    def __init__(
        self,
        generator: OperationGenerator,
        group: _LaneGroup,
        lane: int,
        rng: random.Random,
    ) -> None:
        self._generator = generator
        self._group = group
        self._rng = rng
        self.lane = lane
        self.process = lane

    def retire_process(self) -> int:
        self.process += self._generator.concurrency
        return self.process

    def __next__(self) -> Invocation:
        generator = self._generator
        generator.start()
        if generator.expired():
            raise StopIteration
        key = self._group.claim()
        function = self._draw_function()
        return Invocation(
            process=self.process,
            function=function,
            key=key,
            value=self._draw_value(function),
            delay=self._rng.uniform(0, 2.0 / generator.rate),
        )

    def _draw_function(self) -> Function:
        functions, weights = self._generator._mix
        return self._rng.choices(functions, weights=weights)[0]

    def _draw_value(self, function: Function) -> object:
        value_range = self._generator.value_range
        if function is Function.WRITE:
            return self._rng.randrange(value_range)
        if function is Function.CAS:
            return (self._rng.randrange(value_range), self._rng.randrange(value_range))
        return None


class OperationGenerator:
    """Builds the lanes of a single run. Not restartable: build a new one per run."""

    def __init__(
        self,
        *,
        concurrency: int,
        con_per_key: int,
        ops_per_key: int,
        value_range: int,
        rate: float,
        time_limit: float,
        mix: Sequence[tuple[Function, float]] = DEFAULT_MIX,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if con_per_key <= 0 or concurrency < con_per_key:
            raise ValueError("concurrency must be at least con_per_key and both positive")
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.concurrency = concurrency
        self.con_per_key = con_per_key
        self.ops_per_key = ops_per_key
        self.value_range = value_range
        self.rate = rate
        self.time_limit = time_limit
        self._mix = ([f for f, _ in mix], [w for _, w in mix])
        self._rng = rng or random.Random()
        self._clock = clock
        self._keys = itertools.count()
        self._key_lock = threading.Lock()
        self._deadline: float | None = None
        self._built = False
        self.budgets: dict[int, KeyBudget] = {}

    @property
    def group_count(self) -> int:
        return self.concurrency // self.con_per_key

    def lanes(self) -> list[LaneStream]:
        """Return one stream per usable lane.

        Lanes beyond the last full group of ``con_per_key`` stay idle. The
        time limit counts from :meth:`start`, or from the first invocation
        drawn if the generator was never started explicitly.
        """
        if self._built:
            raise RuntimeError("generator already used; build a new one per run")
        self._built = True
        streams: list[LaneStream] = []
        for group_index in range(self.group_count):
            group = _LaneGroup(self)
            for offset in range(self.con_per_key):
                lane = group_index * self.con_per_key + offset
                seed = self._rng.getrandbits(64)
                streams.append(LaneStream(self, group, lane, random.Random(seed)))
        return streams

    def start(self) -> None:
        with self._key_lock:
            if self._deadline is None:
                self._deadline = self._clock() + self.time_limit

    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def _next_key(self) -> KeyBudget:
        with self._key_lock:
            key = next(self._keys)
            budget = KeyBudget(key, jittered_budget(self.ops_per_key, self._rng))
            self.budgets[key] = budget
            return budget
