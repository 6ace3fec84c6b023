"""In-process replicated register cluster and its client adapter."""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Sequence
from typing import Any

from faultline.clients.base import BackendInstance
from faultline.domain.operations import Completion, Function, Invocation
from faultline.faults.injector import PartitionRandomHalves
from faultline.options import TestOptions


class ClusterUnavailable(RuntimeError):
    """The contacted node cannot reach a majority of the cluster."""


class MemoryCluster:
    """A register map replicated on every node, gated by majority reachability.

    Writes and compare-and-set commit atomically under one lock when the
    contacted node sits in a majority component, and are copied to every
    replica in that component. With ``stale_reads`` a minority node answers
    reads from its own replica instead of refusing.
    """

    def __init__(self, nodes: Sequence[str], stale_reads: bool = False) -> None:
        if not nodes:
            raise ValueError("cluster needs at least one node")
        self.nodes = list(nodes)
        self.stale_reads = stale_reads
        self._lock = threading.Lock()
        self._committed: dict[int, Any] = {}
        self._replicas: dict[str, dict[int, Any]] = {node: {} for node in self.nodes}
        self._component: dict[str, frozenset[str]] = {}

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
            for node in self.nodes:
                self._replicas[node] = dict(self._committed)

    def _peers(self, node: str) -> frozenset[str]:
        return self._component.get(node, frozenset(self.nodes))

    def _has_quorum(self, node: str) -> bool:
        return len(self._peers(node)) * 2 > len(self.nodes)

    def _apply(self, node: str, key: int, value: Any) -> None:
        self._committed[key] = value
        for peer in self._peers(node):
            self._replicas[peer][key] = value

    def read(self, node: str, key: int) -> Any:
        with self._lock:
            if self._has_quorum(node):
                return self._committed.get(key)
            if self.stale_reads:
                return self._replicas[node].get(key)
            raise ClusterUnavailable(f"{node} cannot reach a majority")

    def write(self, node: str, key: int, value: Any) -> None:
        with self._lock:
            if not self._has_quorum(node):
                raise ClusterUnavailable(f"{node} cannot reach a majority")
            self._apply(node, key, value)

    def cas(self, node: str, key: int, expected: Any, new: Any) -> bool:
        with self._lock:
            if not self._has_quorum(node):
                raise ClusterUnavailable(f"{node} cannot reach a majority")
            if self._committed.get(key) != expected:
                return False
            self._apply(node, key, new)
            return True


class MemoryNetwork:
    def __init__(self, cluster: MemoryCluster) -> None:
        self._cluster = cluster

    def partition(self, components: Sequence[Sequence[str]]) -> None:
        self._cluster.partition(components)

    def heal(self) -> None:
        self._cluster.heal()


class MemoryClient:
    """Client for :class:`MemoryCluster`.

    With ``local_refs`` every key divisible by three lives in a reference
    private to this client instance, which no other client can observe.
    """

    def __init__(
        self,
        cluster: MemoryCluster,
        local_refs: bool = False,
        latency: float = 0.0,
        node: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._cluster = cluster
        self._local_refs = local_refs
        self._latency = latency
        self._rng = rng or random.Random()
        self.node = node
        self._refs: dict[int, Any] = {}
        self._refs_lock = threading.Lock()

    def open(self, node: str) -> MemoryClient:
        if node not in self._cluster.nodes:
            raise ValueError(f"unknown node {node!r}")
        return MemoryClient(
            self._cluster,
            local_refs=self._local_refs,
            latency=self._latency,
            node=node,
            rng=random.Random(self._rng.getrandbits(64)),
        )

    def setup(self) -> None:
        return None

    def teardown(self) -> None:
        return None

    def close(self) -> None:
        self._refs = {}

    def invoke(self, invocation: Invocation) -> Completion:
        if self.node is None:
            raise RuntimeError("client is not open")
        if self._latency:
            time.sleep(self._rng.uniform(0, self._latency))
        if self._local_refs and invocation.key % 3 == 0:
            return self._invoke_local(invocation)
        try:
            return self._invoke_cluster(invocation)
        except ClusterUnavailable:
            if invocation.function is Function.READ:
                return Completion.fail("unavailable")
            return Completion.info("unavailable")

    def _invoke_cluster(self, invocation: Invocation) -> Completion:
        key = invocation.key
        if invocation.function is Function.READ:
            return Completion.ok(self._cluster.read(self.node, key))
        if invocation.function is Function.WRITE:
            self._cluster.write(self.node, key, invocation.value)
            return Completion.ok(invocation.value)
        if invocation.function is Function.CAS:
            expected, new = invocation.value
            if self._cluster.cas(self.node, key, expected, new):
                return Completion.ok(invocation.value)
            return Completion.fail(value=invocation.value)
        raise ValueError(f"unsupported function {invocation.function}")

    def _invoke_local(self, invocation: Invocation) -> Completion:
        key = invocation.key
        with self._refs_lock:
            if invocation.function is Function.READ:
                return Completion.ok(self._refs.get(key))
            if invocation.function is Function.WRITE:
                self._refs[key] = invocation.value
                return Completion.ok(invocation.value)
            expected, new = invocation.value
            if self._refs.get(key) != expected:
                return Completion.fail(value=invocation.value)
            self._refs[key] = new
            return Completion.ok(invocation.value)


def build_memory_backend(options: TestOptions) -> BackendInstance:
    cluster = MemoryCluster(options.nodes)
    return BackendInstance(
        client=MemoryClient(cluster, local_refs=options.local_refs),
        nemesis=PartitionRandomHalves(MemoryNetwork(cluster)),
        nodes=options.nodes,
    )
