from __future__ import annotations

from pathlib import Path

import pytest

from faultline.checker.perf import PerformanceChecker, quantile, summarize
from faultline.checker.timeline import FILENAME, TimelineChecker, render
from faultline.domain.operations import Function, Operation, Outcome, Validity
from faultline.history import History


def _history() -> History:
    return History(
        [
            Operation(0, 0, Function.WRITE, 1, 3, 0.0, 0.1, Outcome.OK),
            Operation(1, "nemesis", Function.FAULT_START, None, "partitioned a | b,c", 0.2, 0.2, Outcome.INFO),
            Operation(2, 1, Function.READ, 1, None, 0.3, 0.8, Outcome.FAIL, "timeout"),
            Operation(3, 0, Function.CAS, 1, (3, 4), 0.4, 0.7, Outcome.OK),
            Operation(4, "nemesis", Function.FAULT_STOP, None, "fully connected", 1.0, 1.0, Outcome.INFO),
            Operation(5, 0, Function.WRITE, 1, 2, 1.1, 1.3, Outcome.OK),
        ]
    )


def test_quantile_nearest_rank() -> None:
    values = [float(v) for v in range(1, 101)]
    assert quantile(values, 0.5) == 50.0
    assert quantile(values, 0.99) == 99.0
    assert quantile([4.0], 0.95) == 4.0
    with pytest.raises(ValueError):
        quantile([], 0.5)


def test_summarize() -> None:
    summary = summarize([0.3, 0.1, 0.2])
    assert summary["count"] == 3
    assert summary["max"] == 0.3
    assert summary["p50"] == 0.2
    assert summary["mean"] == pytest.approx(0.2)


def test_performance_report() -> None:
    result = PerformanceChecker().check(_history())

    assert result.valid is Validity.TRUE
    details = result.details
    assert details["operations"] == 4
    assert set(details["latency"]) == {"write:ok", "read:fail", "cas:ok"}
    assert details["latency"]["write:ok"]["count"] == 2
    assert details["throughput"] == pytest.approx(4 / 1.3)
    assert details["fault_windows"] == [{"start_time": 0.2, "duration": pytest.approx(0.8)}]


def test_timeline_escapes_and_writes(tmp_path: Path) -> None:
    result = TimelineChecker("etcd <test>").check(_history(), tmp_path)

    assert result.valid is Validity.TRUE
    html = (tmp_path / FILENAME).read_text()
    assert "etcd &lt;test&gt;" in html
    assert "k1 cas 3 -&gt; 4" in html
    assert "read:fail" not in html
    assert 'class="op fail"' in html
    assert 'class="op nemesis"' in html


def test_timeline_without_directory() -> None:
    assert TimelineChecker().check(_history(), None).valid is Validity.TRUE


def test_render_orders_nemesis_last() -> None:
    page = render(_history())
    assert page.index(">0</div>") < page.index(">1</div>") < page.index(">nemesis</div>")
