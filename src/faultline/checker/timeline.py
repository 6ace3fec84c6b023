"""HTML timeline of a run: one column per process, one box per operation."""

from __future__ import annotations

import html
from pathlib import Path

from faultline.domain.operations import NEMESIS_PROCESS, CheckerResult, Operation, Validity
from faultline.history import History

FILENAME = "timeline.html"

# Pixels per second of run time.
_SCALE = 60.0
_COLUMN_WIDTH = 110
_MIN_HEIGHT = 4

_STYLE = """
body { font-family: sans-serif; font-size: 11px; }
.ops { position: relative; }
.op { position: absolute; overflow: hidden; border-radius: 2px; padding: 1px 3px;
      box-sizing: border-box; width: %(width)dpx; }
.ok { background: #b7e4b3; }
.fail { background: #f4b6b6; }
.info { background: #fbe3a3; }
.nemesis { background: #d6d6f5; }
.header { position: absolute; top: 0; width: %(width)dpx; font-weight: bold; }
""" % {"width": _COLUMN_WIDTH - 4}


def _process_order(process: object) -> tuple[int, str]:
    if process == NEMESIS_PROCESS:
        return (1, "")
    if isinstance(process, int):
        return (0, f"{process:012d}")
    return (0, str(process))


def _label(op: Operation) -> str:
    value = op.value
    if isinstance(value, tuple):
        value = " -> ".join("nil" if v is None else str(v) for v in value)
    text = f"{op.function.value} {'' if value is None else value}".strip()
    if op.key is not None:
        text = f"k{op.key} {text}"
    if op.error:
        text = f"{text} ({op.error})"
    return text


def render(history: History, title: str = "timeline") -> str:
    processes = sorted({op.process for op in history}, key=_process_order)
    columns = {process: i for i, process in enumerate(processes)}
    header_height = 20
    boxes: list[str] = []
    for process, column in columns.items():
        boxes.append(
            f'<div class="header" style="left:{column * _COLUMN_WIDTH}px">'
            f"{html.escape(str(process))}</div>"
        )
    for op in history:
        css = "nemesis" if op.process == NEMESIS_PROCESS else op.outcome.value
        top = header_height + op.invoke_time * _SCALE
        height = max(_MIN_HEIGHT, (op.complete_time - op.invoke_time) * _SCALE)
        tooltip = (
            f"index {op.index} | process {op.process} | {op.outcome.value} | "
            f"{op.invoke_time:.3f}s - {op.complete_time:.3f}s"
        )
        boxes.append(
            f'<div class="op {css}" title="{html.escape(tooltip)}" '
            f'style="left:{columns[op.process] * _COLUMN_WIDTH}px;top:{top:.1f}px;'
            f'height:{height:.1f}px">{html.escape(_label(op))}</div>'
        )
    end = max((op.complete_time for op in history), default=0.0)
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title><style>{_STYLE}</style></head><body>"
        f"<h1>{html.escape(title)}</h1>"
        f'<div class="ops" style="height:{header_height + end * _SCALE + 20:.0f}px">'
        + "".join(boxes)
        + "</div></body></html>\n"
    )


class TimelineChecker:
    """Always valid; writes ``timeline.html`` into the run directory."""

    name = "timeline"

    def __init__(self, title: str = "timeline") -> None:
        self.title = title

    def check(self, history: History, run_dir: Path | None = None) -> CheckerResult:
        if run_dir is None:
            return CheckerResult(Validity.TRUE, message="no run directory; timeline not written")
        path = Path(run_dir) / FILENAME
        path.write_text(render(history, self.title), encoding="utf-8")
        return CheckerResult(Validity.TRUE, details={"file": str(path)})
