"""Workload driver: runs generator lanes and the nemesis timeline concurrently."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from faultline.clients.base import Client
from faultline.domain.operations import (
    Completion,
    Function,
    Invocation,
    Outcome,
    timed_out,
)
from faultline.errors import SetupError
from faultline.faults.injector import FaultInjector
from faultline.history import History, HistoryRecorder
from faultline.utils.time import RelativeClock
from faultline.workload.generator import LaneStream, OperationGenerator
from faultline.workload.nemesis import NemesisStep

logger = logging.getLogger(__name__)


class _Worker:
    """A lane's client plus the single thread its invocations run on.

    After a timed-out call the worker is abandoned rather than interrupted;
    the stuck call finishes in the background and its client is closed at
    the end of the run.
    """

    def __init__(self, client: Client, node: str, lane: int) -> None:
        self.client = client
        self.node = node
        self.executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"faultline-invoke-{lane}"
        )

    def invoke(self, invocation: Invocation, timeout: float) -> tuple[Completion, bool]:
        future = self.executor.submit(self.client.invoke, invocation)
        try:
            return future.result(timeout=timeout), False
        except FuturesTimeout:
            return timed_out(invocation.function), True
        except Exception as exc:
            logger.warning(
                "client on %s raised during %s: %s", self.node, invocation.function.value, exc
            )
            return timed_out(invocation.function, error=type(exc).__name__), False


class WorkloadDriver:
    def __init__(
        self,
        client: Client,
        nodes: Sequence[str],
        generator: OperationGenerator,
        injector: FaultInjector,
        schedule: Iterable[NemesisStep] | None,
        invoke_timeout: float,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not nodes:
            raise ValueError("at least one node is required")
        self._template = client
        self._nodes = list(nodes)
        self._generator = generator
        self._injector = injector
        self._schedule = schedule
        self._invoke_timeout = invoke_timeout
        self._recorder = HistoryRecorder(clock or RelativeClock())
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._workers: list[_Worker] = []
        self._abandoned: list[_Worker] = []

    def run(self) -> History:
        lanes = self._generator.lanes()
        if self._generator.concurrency % self._generator.con_per_key:
            logger.warning(
                "%d worker(s) idle: concurrency %d is not a multiple of %d lanes per key",
                self._generator.concurrency % self._generator.con_per_key,
                self._generator.concurrency,
                self._generator.con_per_key,
            )
        self._workers = self._open_workers(lanes)
        try:
            self._setup(self._workers)
            logger.info("running workload on %d lanes", len(lanes))
            self._generator.start()
            with ThreadPoolExecutor(
                max_workers=len(lanes) + 1, thread_name_prefix="faultline-lane"
            ) as pool:
                nemesis = pool.submit(self._run_nemesis)
                lane_futures = [
                    pool.submit(self._run_lane, slot, lane)
                    for slot, lane in enumerate(lanes)
                ]
                try:
                    for future in lane_futures:
                        future.result()
                finally:
                    self._stop.set()
                    nemesis.result()
            logger.info("workload complete")
        finally:
            self._shutdown()
        return self._recorder.close()

    def _open_workers(self, lanes: list[LaneStream]) -> list[_Worker]:
        workers: list[_Worker] = []
        for lane in lanes:
            node = self._nodes[lane.lane % len(self._nodes)]
            try:
                client = self._template.open(node)
            except Exception as exc:
                for worker in workers:
                    self._close_quietly(worker.client)
                    worker.executor.shutdown(wait=False)
                raise SetupError(f"failed to open client on {node}: {exc}") from exc
            workers.append(_Worker(client, node, lane.lane))
        return workers

    def _setup(self, workers: list[_Worker]) -> None:
        try:
            if workers:
                workers[0].client.setup()
            self._injector.setup(self._nodes)
        except SetupError:
            raise
        except Exception as exc:
            raise SetupError(f"setup failed: {exc}") from exc

    def _run_lane(self, slot: int, lane: LaneStream) -> None:
        recorder = self._recorder
        worker = self._workers[slot]
        for invocation in lane:
            if self._stop.wait(invocation.delay) or self._generator.expired():
                break
            invoke_time = recorder.now()
            completion, abandoned = worker.invoke(invocation, self._invoke_timeout)
            value = completion.value if invocation.function is Function.READ else invocation.value
            recorder.record(
                invocation.process,
                invocation.function,
                invocation.key,
                value,
                invoke_time,
                completion.outcome,
                completion.error,
            )
            if completion.outcome is Outcome.INFO:
                lane.retire_process()
            if abandoned or completion.outcome is Outcome.INFO:
                replacement = self._replace_worker(slot, abandoned, lane.lane)
                if replacement is None:
                    return
                worker = replacement

    def _replace_worker(self, slot: int, abandoned: bool, lane: int) -> _Worker | None:
        """Swap the lane's worker for one with a fresh client.

        An idle old client is closed at once. One still running an abandoned
        call is kept until shutdown.
        """
        worker = self._workers[slot]
        try:
            client = self._template.open(worker.node)
        except Exception as exc:
            logger.error("lane %d could not reopen client on %s: %s", lane, worker.node, exc)
            return None
        replacement = _Worker(client, worker.node, lane)
        with self._lock:
            self._workers[slot] = replacement
            if abandoned:
                self._abandoned.append(worker)
        if not abandoned:
            worker.executor.shutdown(wait=True)
            self._close_quietly(worker.client)
        return replacement

    def _run_nemesis(self) -> None:
        if self._schedule is None:
            return
        for step in self._schedule:
            if step.sleep:
                if self._stop.wait(step.sleep):
                    return
                continue
            invoke_time = self._recorder.now()
            try:
                if step.function is Function.FAULT_START:
                    description, error = self._injector.start(), None
                else:
                    description, error = self._injector.stop(), None
                logger.info("nemesis %s: %s", step.function.value, description)
            except Exception as exc:
                logger.error("nemesis %s failed: %s", step.function.value, exc)
                description, error = None, str(exc)
            self._recorder.record_fault(step.function, invoke_time, description, error)

    def _shutdown(self) -> None:
        try:
            self._injector.teardown()
        except Exception as exc:
            logger.error("nemesis teardown failed: %s", exc)
        with self._lock:
            live = list(self._workers)
            leftover = live + self._abandoned
        if live:
            try:
                live[0].client.teardown()
            except Exception as exc:
                logger.error("client teardown failed: %s", exc)
        for worker in leftover:
            worker.executor.shutdown(wait=False)
            self._close_quietly(worker.client)

    @staticmethod
    def _close_quietly(client: Client) -> None:
        try:
            client.close()
        except Exception as exc:
            logger.warning("client close failed: %s", exc)
