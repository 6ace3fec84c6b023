"""Client adapter contract shared by every backend under test.

Lifecycle: ``open -> setup -> invoke* -> teardown -> close``. ``open`` returns
a new, connected client bound to one node; the unopened value a backend
builds is only a template. ``invoke`` never raises for operation-level
problems: it returns a :class:`Completion` tagged ``ok``, ``fail`` or
``info``:

* read: ``ok`` with the observed value (``None`` when never written);
  any transport error is ``fail``.
* write: ``ok`` once confirmed, ``fail`` only when the backend proves the
  write did not happen, ``info`` otherwise.
* cas: one atomic backend-side compare-and-set; ``ok`` when swapped,
  ``fail`` when the current value differs, ``info`` when ambiguous.

Adapters never retry; an ambiguous outcome is recorded as such.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from faultline.domain.operations import Completion, Invocation
from faultline.faults.injector import FaultInjector
from faultline.options import TestOptions


class Client(Protocol):
    def open(self, node: str) -> Client: ...

    def setup(self) -> None: ...

    def invoke(self, invocation: Invocation) -> Completion: ...

    def teardown(self) -> None: ...

    def close(self) -> None: ...


@dataclass
class BackendInstance:
    """Per-run pieces of a backend: an unopened client and its fault injector."""

    client: Client
    nemesis: FaultInjector
    nodes: Sequence[str]


@dataclass(frozen=True)
class Backend:
    name: str
    description: str
    build: Callable[[TestOptions], BackendInstance]
