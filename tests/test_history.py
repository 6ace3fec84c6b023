from __future__ import annotations

import threading

import pytest

from faultline.domain.operations import (
    NEMESIS_PROCESS,
    FaultWindow,
    Function,
    Operation,
    Outcome,
    Validity,
)
from faultline.history import History, HistoryRecorder


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_recorder_indexes_in_completion_order() -> None:
    clock = FakeClock()
    recorder = HistoryRecorder(clock)

    clock.now = 2.0
    late = recorder.record(0, Function.WRITE, 1, 3, 0.5, Outcome.OK)
    clock.now = 3.0
    early = recorder.record(1, Function.READ, 1, 3, 0.1, Outcome.OK)

    history = recorder.close()
    assert [op.index for op in history] == [0, 1]
    assert history[0] is late and history[1] is early
    assert early.complete_time == 3.0


def test_completion_never_precedes_invocation() -> None:
    recorder = HistoryRecorder(FakeClock(1.0))
    op = recorder.record(0, Function.READ, 1, None, 4.0, Outcome.FAIL, "timeout")
    assert op.complete_time == op.invoke_time == 4.0


def test_closed_recorder_rejects_appends() -> None:
    recorder = HistoryRecorder(FakeClock())
    recorder.close()
    with pytest.raises(RuntimeError):
        recorder.record(0, Function.READ, 1, None, 0.0, Outcome.OK)


def test_concurrent_appends_get_unique_indices() -> None:
    recorder = HistoryRecorder(FakeClock())

    def worker(process: int) -> None:
        for _ in range(200):
            recorder.record(process, Function.WRITE, process, 1, 0.0, Outcome.OK)

    threads = [threading.Thread(target=worker, args=(p,)) for p in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    history = recorder.close()
    assert [op.index for op in history] == list(range(1600))


def test_fault_events_use_nemesis_process() -> None:
    recorder = HistoryRecorder(FakeClock(1.0))
    op = recorder.record_fault(Function.FAULT_START, 1.0, "partitioned n1 | n2,n3")
    assert op.process == NEMESIS_PROCESS
    assert op.outcome is Outcome.INFO
    assert op.key is None


def test_by_key_and_fault_windows() -> None:
    clock = FakeClock()
    recorder = HistoryRecorder(clock)
    clock.now = 1.0
    recorder.record(0, Function.WRITE, 1, 1, 0.0, Outcome.OK)
    clock.now = 2.0
    recorder.record_fault(Function.FAULT_START, 2.0, "partitioned")
    clock.now = 3.0
    recorder.record(1, Function.READ, 2, None, 2.5, Outcome.OK)
    clock.now = 4.0
    recorder.record(0, Function.READ, 1, 1, 3.5, Outcome.OK)
    clock.now = 5.0
    recorder.record_fault(Function.FAULT_STOP, 5.0, "fully connected")
    clock.now = 6.0
    recorder.record_fault(Function.FAULT_START, 6.0, "partitioned")
    clock.now = 8.0
    recorder.record(1, Function.WRITE, 2, 2, 7.0, Outcome.INFO, "timeout")
    history = recorder.close()

    partitions = history.by_key()
    assert sorted(partitions) == [1, 2]
    assert [op.index for op in partitions[1]] == [0, 3]
    assert len(history.client_operations()) == 4
    assert history.fault_windows() == [FaultWindow(2.0, 3.0), FaultWindow(6.0, 2.0)]


def test_operation_rejects_inverted_times() -> None:
    with pytest.raises(ValueError):
        Operation(0, 0, Function.READ, 1, None, 2.0, 1.0, Outcome.OK)


def test_operation_dict_restores_cas_pair() -> None:
    op = Operation(4, 2, Function.CAS, 1, (1, 2), 0.5, 0.7, Outcome.OK)
    data = op.to_dict()
    assert data["value"] == [1, 2]
    assert Operation.from_dict(data) == op


def test_validity_merge() -> None:
    assert Validity.merge([]) is Validity.TRUE
    assert Validity.merge([Validity.TRUE, Validity.UNKNOWN]) is Validity.UNKNOWN
    assert Validity.merge([Validity.UNKNOWN, Validity.FALSE, Validity.TRUE]) is Validity.FALSE


def test_history_is_immutable_sequence() -> None:
    history = History([])
    assert len(history) == 0
    assert history.operations == ()
