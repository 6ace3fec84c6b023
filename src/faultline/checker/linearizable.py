"""Single-register linearizability search.

A Wing & Gong style depth-first search over the operations of one key. The
search state is the set of operations already linearized plus the register
value they leave behind; states are memoized so every (set, value) pair is
expanded at most once.

Outcome handling:

* ``ok`` operations must be linearized somewhere inside their
  ``[invoke, complete]`` interval.
* ``info`` writes and compare-and-set may take effect at any point after
  their invocation, or never.
* ``fail`` operations and ``info`` reads had no effect and are dropped.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from faultline.domain.operations import CheckerResult, Function, Operation, Outcome, Validity

DEFAULT_MAX_STATES = 1_000_000


@dataclass(frozen=True)
class _Entry:
    op: Operation
    invoke: float
    deadline: float
    required: bool


def _entries(operations: Sequence[Operation]) -> list[_Entry]:
    entries: list[_Entry] = []
    for op in operations:
        if op.function.is_fault or op.outcome is Outcome.FAIL:
            continue
        if op.outcome is Outcome.INFO:
            if op.function is Function.READ:
                continue
            entries.append(_Entry(op, op.invoke_time, math.inf, False))
        else:
            entries.append(_Entry(op, op.invoke_time, op.complete_time, True))
    entries.sort(key=lambda entry: (entry.invoke, entry.op.index))
    return entries


def step(op: Operation, state: Any) -> tuple[bool, Any]:
    """Apply ``op`` to a register holding ``state``; returns (legal, new state)."""
    if op.function is Function.READ:
        return op.value == state, state
    if op.function is Function.WRITE:
        return True, op.value
    if op.function is Function.CAS:
        expected, new = op.value
        if state != expected:
            return False, state
        return True, new
    raise ValueError(f"unsupported function {op.function}")


class LinearizableChecker:
    """Checks one key's operations against compare-and-set register semantics."""

    name = "linearizable"

    def __init__(self, max_states: int = DEFAULT_MAX_STATES, initial: Any = None) -> None:
        if max_states <= 0:
            raise ValueError("max_states must be positive")
        self.max_states = max_states
        self.initial = initial

    def check_key(self, key: int, operations: Sequence[Operation]) -> CheckerResult:
        entries = _entries(operations)
        required = 0
        for i, entry in enumerate(entries):
            if entry.required:
                required |= 1 << i

        start = (0, self.initial)
        visited = {start}
        parents: dict[tuple[int, Any], tuple[tuple[int, Any], int]] = {}
        stack = [start]
        deepest, deepest_depth = start, 0

        while stack:
            node = stack.pop()
            mask, state = node
            if mask & required == required:
                return CheckerResult(
                    Validity.TRUE,
                    details={"key": key, "operations": len(entries), "states": len(visited)},
                )
            depth = (mask & required).bit_count()
            if depth > deepest_depth:
                deepest, deepest_depth = node, depth

            bound = min(
                (e.deadline for i, e in enumerate(entries) if e.required and not mask >> i & 1),
                default=math.inf,
            )
            for i, entry in enumerate(entries):
                if entry.invoke > bound:
                    break
                if mask >> i & 1:
                    continue
                legal, new_state = step(entry.op, state)
                if not legal:
                    continue
                child = (mask | 1 << i, new_state)
                if child in visited:
                    continue
                visited.add(child)
                parents[child] = (node, i)
                if len(visited) > self.max_states:
                    return CheckerResult(
                        Validity.UNKNOWN,
                        message=f"key {key}: search exceeded {self.max_states} states",
                        details={"key": key, "operations": len(entries), "states": len(visited)},
                    )
                stack.append(child)

        return self._violation(key, entries, deepest, parents, len(visited))

    def _violation(
        self,
        key: int,
        entries: list[_Entry],
        deepest: tuple[int, Any],
        parents: dict[tuple[int, Any], tuple[tuple[int, Any], int]],
        states: int,
    ) -> CheckerResult:
        path: list[int] = []
        node = deepest
        while node in parents:
            node, i = parents[node]
            path.append(i)
        path.reverse()

        mask, state = deepest
        pending = [e for i, e in enumerate(entries) if e.required and not mask >> i & 1]
        blocked = min(pending, key=lambda e: e.deadline).op
        message = (
            f"key {key}: operation {blocked.index} ({blocked.function.value} "
            f"{_describe(blocked.value)}) cannot be linearized after "
            f"{len(path)} operations; register holds {_describe(state)}"
        )
        return CheckerResult(
            Validity.FALSE,
            message=message,
            details={
                "key": key,
                "operations": len(entries),
                "states": states,
                "witness": {
                    "linearized": [entries[i].op.to_dict() for i in path],
                    "state": state,
                    "blocked": blocked.to_dict(),
                },
            },
        )


def _describe(value: Any) -> str:
    if isinstance(value, tuple):
        return "->".join(_describe(v) for v in value)
    return "nil" if value is None else str(value)
