"""Append-only history recorder and the immutable history it produces."""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from faultline.domain.operations import (
    NEMESIS_PROCESS,
    FaultWindow,
    Function,
    Operation,
    Outcome,
    ProcessId,
)


class History:
    """Operations of one run, ordered by completion."""

    def __init__(self, operations: Iterable[Operation]) -> None:
        self._operations = tuple(operations)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def __getitem__(self, index: int) -> Operation:
        return self._operations[index]

    @property
    def operations(self) -> tuple[Operation, ...]:
        return self._operations

    def client_operations(self) -> list[Operation]:
        return [op for op in self._operations if not op.function.is_fault]

    def by_key(self) -> dict[int, list[Operation]]:
        """Key partitions, each still in completion order."""
        partitions: dict[int, list[Operation]] = defaultdict(list)
        for op in self._operations:
            if op.function.is_fault or op.key is None:
                continue
            partitions[op.key].append(op)
        return dict(partitions)

    def fault_windows(self) -> list[FaultWindow]:
        windows: list[FaultWindow] = []
        started: float | None = None
        for op in self._operations:
            if op.function is Function.FAULT_START and started is None:
                started = op.complete_time
            elif op.function is Function.FAULT_STOP and started is not None:
                windows.append(FaultWindow(started, op.complete_time - started))
                started = None
        if started is not None and self._operations:
            end = max(op.complete_time for op in self._operations)
            windows.append(FaultWindow(started, end - started))
        return windows


class HistoryRecorder:
    """Single shared sink; appends are serialized and indexed in completion order."""

    def __init__(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._operations: list[Operation] = []
        self._closed = False

    def now(self) -> float:
        return self._clock()

    def record(
        self,
        process: ProcessId,
        function: Function,
        key: int | None,
        value: Any,
        invoke_time: float,
        outcome: Outcome,
        error: str | None = None,
    ) -> Operation:
        with self._lock:
            if self._closed:
                raise RuntimeError("history is closed")
            op = Operation(
                index=len(self._operations),
                process=process,
                function=function,
                key=key,
                value=value,
                invoke_time=invoke_time,
                complete_time=max(invoke_time, self._clock()),
                outcome=outcome,
                error=error,
            )
            self._operations.append(op)
            return op

    def record_fault(
        self,
        function: Function,
        invoke_time: float,
        description: str | None,
        error: str | None = None,
    ) -> Operation:
        return self.record(
            NEMESIS_PROCESS, function, None, description, invoke_time, Outcome.INFO, error
        )

    def close(self) -> History:
        with self._lock:
            self._closed = True
            return History(self._operations)
