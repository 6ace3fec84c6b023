"""Domain objects for operations, histories and checker verdicts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NEMESIS_PROCESS = "nemesis"

ProcessId = int | str


class Function(str, Enum):
    READ = "read"
    WRITE = "write"
    CAS = "cas"
    FAULT_START = "fault_start"
    FAULT_STOP = "fault_stop"

    @property
    def is_fault(self) -> bool:
        return self in (Function.FAULT_START, Function.FAULT_STOP)

    @property
    def is_mutation(self) -> bool:
        return self in (Function.WRITE, Function.CAS)


class Outcome(str, Enum):
    OK = "ok"
    FAIL = "fail"
    INFO = "info"


class Validity(str, Enum):
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def merge(cls, values: list[Validity]) -> Validity:
        """Combine verdicts: any false wins, then any unknown, else true."""
        if cls.FALSE in values:
            return cls.FALSE
        if cls.UNKNOWN in values:
            return cls.UNKNOWN
        return cls.TRUE


@dataclass(frozen=True)
class Invocation:
    """A client operation the workload wants performed; pure data."""

    process: int
    function: Function
    key: int
    value: Any = None
    delay: float = 0.0


@dataclass(frozen=True)
class Completion:
    """Tagged result returned by a client adapter for one invocation."""

    outcome: Outcome
    value: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, value: Any = None) -> Completion:
        return cls(Outcome.OK, value)

    @classmethod
    def fail(cls, error: str | None = None, value: Any = None) -> Completion:
        return cls(Outcome.FAIL, value, error)

    @classmethod
    def info(cls, error: str | None = None, value: Any = None) -> Completion:
        return cls(Outcome.INFO, value, error)


def timed_out(function: Function, error: str = "timeout") -> Completion:
    """Outcome for an invocation whose effect could not be observed in time.

    A lost read has no side effect to reconcile, so it is reported as a
    failure. Writes and compare-and-set may have taken effect and stay
    ambiguous.
    """
    if function is Function.READ:
        return Completion.fail(error)
    return Completion.info(error)


@dataclass
class Operation:
    index: int
    process: ProcessId
    function: Function
    key: int | None
    value: Any
    invoke_time: float
    complete_time: float
    outcome: Outcome
    error: str | None = None

    def __post_init__(self) -> None:
        if self.complete_time < self.invoke_time:
            raise ValueError(
                f"operation {self.index} completes ({self.complete_time}) "
                f"before it was invoked ({self.invoke_time})"
            )

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, tuple):
            value = list(value)
        return {
            "index": self.index,
            "process": self.process,
            "function": self.function.value,
            "key": self.key,
            "value": value,
            "invoke_time": self.invoke_time,
            "complete_time": self.complete_time,
            "outcome": self.outcome.value,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        function = Function(data["function"])
        value = data.get("value")
        if function is Function.CAS and isinstance(value, list):
            value = tuple(value)
        return cls(
            index=int(data["index"]),
            process=data["process"],
            function=function,
            key=data.get("key"),
            value=value,
            invoke_time=float(data["invoke_time"]),
            complete_time=float(data["complete_time"]),
            outcome=Outcome(data["outcome"]),
            error=data.get("error"),
        )


@dataclass
class CheckerResult:
    valid: Validity
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.valid.value}
        if self.message is not None:
            payload["message"] = self.message
        payload.update(self.details)
        return payload


@dataclass(frozen=True)
class FaultWindow:
    start_time: float
    duration: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration
