"""Register emulated over durable per-peer mailboxes.

There is no compare-and-set on the broker, so each client keeps its own view
of the register map and composes operations from two primitives:

* pull: take the oldest state snapshot waiting in one of its inbound queues
  and adopt it as the local view;
* push: publish the local view with one key changed to an outbound queue and
  wait for the broker's confirm before adopting it.

cas is pull, compare locally, push. The composition is not atomic end to
end, which surfaces as extra apparent inconsistency; ambiguous pushes are
recorded as ``info``.
"""

from __future__ import annotations

import copy
import random
import threading
from collections import deque
from collections.abc import Sequence
from typing import Any

from faultline.clients.base import BackendInstance
from faultline.domain.operations import Completion, Function, Invocation
from faultline.errors import SetupError
from faultline.faults.injector import PartitionRandomHalves
from faultline.options import TestOptions


class BrokerUnavailable(RuntimeError):
    """One end of the queue is not reachable from the calling node."""


def queue_name(producer: str, consumer: str) -> str:
    return f"q-{producer}-{consumer}"


class MailboxBroker:
    """Durable FIFO queues mirrored on both their producer and consumer nodes.

    A queue is usable only from a node that reaches both of its ends, so
    publishing and consuming across a partition are refused outright;
    ``confirm_loss`` is the probability that an accepted message is enqueued
    but never confirmed.
    """

    def __init__(
        self,
        nodes: Sequence[str],
        confirm_loss: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        self.nodes = list(nodes)
        self.confirm_loss = confirm_loss
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._queues: dict[str, deque[dict[int, Any]]] = {}
        self._ends: dict[str, tuple[str, str]] = {}
        self._component: dict[str, frozenset[str]] = {}

    def declare(self, producer: str, consumer: str) -> str:
        name = queue_name(producer, consumer)
        with self._lock:
            self._queues.setdefault(name, deque())
            self._ends[name] = (producer, consumer)
        return name

    def purge(self, name: str) -> None:
        with self._lock:
            if name in self._queues:
                self._queues[name].clear()

    def partition(self, components: Sequence[Sequence[str]]) -> None:
        with self._lock:
            self._component = {}
            for component in components:
                members = frozenset(component)
                for node in members:
                    self._component[node] = members

    def heal(self) -> None:
        with self._lock:
            self._component = {}

    def _check_reachable(self, node: str, name: str) -> None:
        members = self._component.get(node)
        if members is None:
            return
        for end in self._ends[name]:
            if end not in members:
                raise BrokerUnavailable(f"{node} cannot reach {end} for {name}")

    def publish(self, node: str, name: str, state: dict[int, Any]) -> bool:
        """Enqueue a snapshot; True once confirmed by the broker."""
        with self._lock:
            if name not in self._queues:
                raise KeyError(f"queue {name} is not declared")
            self._check_reachable(node, name)
            self._queues[name].append(copy.deepcopy(state))
            return self._rng.random() >= self.confirm_loss

    def get(self, node: str, name: str) -> dict[int, Any] | None:
        with self._lock:
            if name not in self._queues:
                raise KeyError(f"queue {name} is not declared")
            self._check_reachable(node, name)
            queue = self._queues[name]
            return queue.popleft() if queue else None


class MailboxNetwork:
    def __init__(self, broker: MailboxBroker) -> None:
        self._broker = broker

    def partition(self, components: Sequence[Sequence[str]]) -> None:
        self._broker.partition(components)

    def heal(self) -> None:
        self._broker.heal()


class MailboxClient:
    def __init__(
        self,
        broker: MailboxBroker,
        node: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._broker = broker
        self._rng = rng or random.Random()
        self.node = node
        self._outbound: list[str] = []
        self._inbound: list[str] = []
        self._state: dict[int, Any] = {}
        self._state_lock = threading.Lock()

    def open(self, node: str) -> MailboxClient:
        peers = [peer for peer in self._broker.nodes if peer != node]
        if not peers:
            raise SetupError("mailbox backend needs at least two nodes")
        opened = MailboxClient(self._broker, node=node, rng=random.Random(self._rng.getrandbits(64)))
        opened._outbound = [queue_name(node, peer) for peer in peers]
        opened._inbound = [queue_name(peer, node) for peer in peers]
        return opened

    def setup(self) -> None:
        for producer in self._broker.nodes:
            for consumer in self._broker.nodes:
                if producer != consumer:
                    self._broker.declare(producer, consumer)

    def teardown(self) -> None:
        for producer in self._broker.nodes:
            for consumer in self._broker.nodes:
                if producer != consumer:
                    self._broker.purge(queue_name(producer, consumer))

    def close(self) -> None:
        with self._state_lock:
            self._state = {}

    def invoke(self, invocation: Invocation) -> Completion:
        if self.node is None:
            raise RuntimeError("client is not open")
        with self._state_lock:
            if invocation.function is Function.READ:
                if not self._pull():
                    return Completion.fail("unavailable")
                return Completion.ok(self._state.get(invocation.key))
            if invocation.function is Function.WRITE:
                return self._push(invocation.key, invocation.value, invocation.value)
            if invocation.function is Function.CAS:
                expected, new = invocation.value
                if not self._pull():
                    return Completion.fail("unavailable", value=invocation.value)
                if self._state.get(invocation.key) != expected:
                    return Completion.fail(value=invocation.value)
                return self._push(invocation.key, new, invocation.value)
        raise ValueError(f"unsupported function {invocation.function}")

    def _pull(self) -> bool:
        queue = self._rng.choice(self._inbound)
        try:
            snapshot = self._broker.get(self.node, queue)
        except BrokerUnavailable:
            return False
        if snapshot is not None:
            self._state = snapshot
        return True

    def _push(self, key: int, new: Any, value: Any) -> Completion:
        queue = self._rng.choice(self._outbound)
        state = dict(self._state)
        state[key] = new
        try:
            confirmed = self._broker.publish(self.node, queue, state)
        except BrokerUnavailable:
            return Completion.fail("unavailable", value=value)
        if not confirmed:
            return Completion.info("unconfirmed", value=value)
        self._state = state
        return Completion.ok(value)


def build_mailbox_backend(options: TestOptions) -> BackendInstance:
    broker = MailboxBroker(options.nodes)
    return BackendInstance(
        client=MailboxClient(broker),
        nemesis=PartitionRandomHalves(MailboxNetwork(broker)),
        nodes=options.nodes,
    )
