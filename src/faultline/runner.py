"""Test execution and stand-alone re-analysis."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from faultline.checker import Analysis, analyze, build_checkers, select_mode
from faultline.clients import BackendInstance, get_backend
from faultline.config import Settings, load_settings
from faultline.history import History
from faultline.options import TestOptions
from faultline.store.models import RunRecord
from faultline.store.runs import RunStore, StoredRun
from faultline.utils.time import run_id_now, utc_now_iso
from faultline.workload.driver import WorkloadDriver
from faultline.workload.generator import OperationGenerator
from faultline.workload.nemesis import NemesisSchedule

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    run_dir: Path
    record: RunRecord
    history: History
    analysis: Analysis


@dataclass
class ReanalysisOutcome:
    stored: StoredRun
    analysis: Analysis
    elapsed_ms: float


def build_driver(
    instance: BackendInstance,
    options: TestOptions,
    settings: Settings,
    rng: random.Random | None = None,
    clock: Callable[[], float] | None = None,
) -> WorkloadDriver:
    generator = OperationGenerator(
        concurrency=options.resolved_concurrency(),
        con_per_key=options.con_per_key,
        ops_per_key=options.ops_per_key,
        value_range=options.value_range,
        rate=options.op_gen_rate,
        time_limit=options.time_limit,
        rng=rng,
    )
    return WorkloadDriver(
        client=instance.client,
        nodes=instance.nodes,
        generator=generator,
        injector=instance.nemesis,
        schedule=NemesisSchedule(options.time_limit, options.fault_window),
        invoke_timeout=settings.client.invoke_timeout_seconds,
        clock=clock,
    )


def run_test(
    backend_name: str,
    options: TestOptions,
    argv: Sequence[str],
    settings: Settings | None = None,
    store: RunStore | None = None,
    rng: random.Random | None = None,
) -> RunOutcome:
    """Run one test end to end: workload and faults, persistence, then analysis.

    Raises:
        UnknownBackendError: ``backend_name`` is not registered.
        SetupError: a client or the fault injector could not be set up; nothing
            is persisted in that case.
    """
    settings = settings or load_settings()
    backend = get_backend(backend_name)
    store = store or RunStore(settings.storage.store_path)
    instance = backend.build(options)
    record = RunRecord(
        run_id=run_id_now(),
        name=options.test_name(backend_name),
        backend=backend_name,
        argv=list(argv),
        options=options.model_dump(mode="json"),
        nodes=list(instance.nodes),
        started_at=utc_now_iso(),
    )

    logger.info("starting test %r against %s", record.name, ", ".join(instance.nodes))
    history = build_driver(instance, options, settings, rng=rng).run()
    record.completed_at = utc_now_iso()

    run_dir = store.create(record)
    store.save_history(run_dir, record, history)
    logger.info("stored %d operations in %s", len(history), run_dir)

    mode = select_mode(
        skip=options.skip_checker,
        external=options.use_external_checker,
        reanalysis=False,
    )
    analysis = analyze(history, run_dir, mode, build_checkers(mode, settings.checker, record.name))
    store.save_results(run_dir, analysis.to_dict())
    verdict = analysis.valid.value if analysis.valid is not None else "skipped"
    logger.info("analysis complete: %s", verdict)
    return RunOutcome(run_dir, record, history, analysis)


def analyze_stored(
    ref: str | int,
    external: bool = False,
    settings: Settings | None = None,
    store: RunStore | None = None,
) -> ReanalysisOutcome:
    """Re-check a stored run. The skip flag recorded with the run does not apply here.

    Raises:
        StoredRunError: the run cannot be found, read or verified.
    """
    settings = settings or load_settings()
    store = store or RunStore(settings.storage.store_path)
    run_dir = store.resolve(ref)
    stored = store.load(run_dir)

    mode = select_mode(
        skip=bool(stored.record.options.get("skip_checker")),
        external=external or bool(stored.record.options.get("use_external_checker")),
        reanalysis=True,
    )
    logger.info("re-analyzing %s with the %s checker", run_dir, mode.value)
    started = time.perf_counter()
    analysis = analyze(
        stored.history, run_dir, mode, build_checkers(mode, settings.checker, stored.record.name)
    )
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    store.save_results(run_dir, analysis.to_dict())
    return ReanalysisOutcome(stored, analysis, elapsed_ms)
