"""Command line entry points: ``run``, ``check`` and ``runs``."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import click
import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from faultline import __version__
from faultline.clients import BACKENDS
from faultline.config import load_settings
from faultline.domain.operations import Validity
from faultline.errors import FaultlineError, StoredRunError, UnknownBackendError
from faultline.logging_utils import configure_logging
from faultline.options import TestOptions, load_nodes_file, load_profile
from faultline.runner import analyze_stored, run_test
from faultline.store.runs import RunStore

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_UNKNOWN = 2
EXIT_USAGE = 254
EXIT_FATAL = 255

_EXIT_CODES = {
    Validity.TRUE: EXIT_VALID,
    Validity.FALSE: EXIT_INVALID,
    Validity.UNKNOWN: EXIT_UNKNOWN,
}

_VALIDITY_STYLES = {
    Validity.TRUE: "green",
    Validity.FALSE: "bold red",
    Validity.UNKNOWN: "yellow",
}

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    name="faultline",
    help="Drive a replicated register under network partitions and check linearizability.",
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"faultline {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", help="Enable debug logging.")] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version."),
    ] = False,
) -> None:
    try:
        configure_logging(verbose)
    except RuntimeError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=EXIT_FATAL)


def _print_verdict(valid: Validity | None, message: str | None) -> int:
    if valid is None:
        console.print("Checker skipped")
        return EXIT_VALID
    console.print(f"Valid: [{_VALIDITY_STYLES[valid]}]{valid.value}[/]")
    if message:
        console.print(message)
    return _EXIT_CODES[valid]


def _canonical_argv(backend: str, options: TestOptions) -> list[str]:
    argv = [
        "run",
        backend,
        "--rate", f"{options.op_gen_rate:g}",
        "--ops-per-key", str(options.ops_per_key),
        "--con-per-key", str(options.con_per_key),
        "--concurrency", options.concurrency,
        "--value-range", str(options.value_range),
        "--time-limit", f"{options.time_limit:g}",
        "--fault-window", f"{options.fault_window:g}",
        "--nodes", ",".join(options.nodes),
    ]
    for flag, enabled in (
        ("--skip-checker", options.skip_checker),
        ("--external-checker", options.use_external_checker),
        ("--quorum-read", options.quorum_read),
        ("--local-refs", options.local_refs),
    ):
        if enabled:
            argv.append(flag)
    return argv


@app.command()
def run(
    backend: Annotated[str, typer.Argument(help=f"System under test: {', '.join(BACKENDS)}.")],
    rate: Annotated[
        float | None, typer.Option("--rate", "-r", help="Operations per second per lane. [default: 10]")
    ] = None,
    ops_per_key: Annotated[
        int | None, typer.Option("--ops-per-key", "-o", help="Operations per key. [default: 100]")
    ] = None,
    con_per_key: Annotated[
        int | None, typer.Option("--con-per-key", "-t", help="Lanes per key. [default: 5]")
    ] = None,
    concurrency: Annotated[
        str | None,
        typer.Option("--concurrency", "-c", help="Total lanes, N or Nn for N per node. [default: 50]"),
    ] = None,
    value_range: Annotated[
        int | None, typer.Option("--value-range", help="Values drawn from [0, N). [default: 5]")
    ] = None,
    time_limit: Annotated[
        float | None,
        typer.Option("--time-limit", "-l", help="Test duration in seconds, at least 10. [default: 40]"),
    ] = None,
    fault_window: Annotated[
        float | None,
        typer.Option("--fault-window", "-f", help="Seconds per fault and per recovery. [default: 5]"),
    ] = None,
    nodes: Annotated[
        str | None, typer.Option("--nodes", help="Comma separated node names. [default: n1..n5]")
    ] = None,
    nodes_file: Annotated[
        Path | None, typer.Option("--nodes-file", help="File with one node name per line.")
    ] = None,
    profile: Annotated[
        Path | None, typer.Option("--profile", "-p", help="YAML workload profile.")
    ] = None,
    skip_checker: Annotated[
        bool, typer.Option("--skip-checker", help="Record the history without checking it.")
    ] = False,
    external_checker: Annotated[
        bool, typer.Option("--external-checker", help="Use the external checker process.")
    ] = False,
    quorum_read: Annotated[
        bool, typer.Option("--quorum-read", help="etcd: serve reads through the quorum.")
    ] = False,
    local_refs: Annotated[
        bool, typer.Option("--local-refs", help="memory: keep every third key client-local.")
    ] = False,
) -> None:
    """Run a test against BACKEND and check its history."""
    data: dict[str, Any] = {}
    try:
        if profile is not None:
            data.update(load_profile(str(profile)))
        if nodes_file is not None:
            data["nodes"] = load_nodes_file(str(nodes_file))
        explicit = {
            "op_gen_rate": rate,
            "ops_per_key": ops_per_key,
            "con_per_key": con_per_key,
            "concurrency": concurrency,
            "value_range": value_range,
            "time_limit": time_limit,
            "fault_window": fault_window,
            "nodes": nodes,
        }
        data.update({key: value for key, value in explicit.items() if value is not None})
        for key, enabled in (
            ("skip_checker", skip_checker),
            ("use_external_checker", external_checker),
            ("quorum_read", quorum_read),
            ("local_refs", local_refs),
        ):
            if enabled:
                data[key] = True
        options = TestOptions.model_validate(data)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        # pydantic's ValidationError is a ValueError.
        if isinstance(exc, ValidationError):
            for error in exc.errors():
                field = ".".join(str(part) for part in error["loc"]) or "options"
                console.print(f"[red]{field}: {error['msg']}[/red]")
        else:
            console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=EXIT_USAGE)

    try:
        outcome = run_test(backend, options, _canonical_argv(backend, options))
    except UnknownBackendError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=EXIT_USAGE)
    except (FaultlineError, RuntimeError, OSError) as exc:
        logger.error("test aborted: %s", exc)
        console.print(f"[bold red]Test aborted:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_FATAL)

    console.print(f"Run stored in {outcome.run_dir}")
    raise typer.Exit(code=_print_verdict(outcome.analysis.valid, outcome.analysis.message))


@app.command()
def check(
    run_ref: Annotated[
        str | None,
        typer.Argument(metavar="[INDEX_OR_PATH]", help="Run index or run directory."),
    ] = None,
    which: Annotated[
        str | None,
        typer.Option("--which", "-w", help="Run index (-1 is the newest) or run directory."),
    ] = None,
    external_checker: Annotated[
        bool, typer.Option("--external-checker", help="Use the external checker process.")
    ] = False,
) -> None:
    """Re-analyze a stored run."""
    if run_ref is not None and which is not None:
        console.print("[red]Give the run either as an argument or with --which, not both.[/red]")
        raise typer.Exit(code=EXIT_USAGE)
    ref = which if which is not None else run_ref if run_ref is not None else "-1"
    try:
        outcome = analyze_stored(ref, external=external_checker)
    except (StoredRunError, RuntimeError, OSError) as exc:
        logger.error("re-analysis failed: %s", exc)
        console.print(f"[bold red]Cannot analyze run:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_FATAL)

    console.print(f"Run {outcome.stored.record.name} / {outcome.stored.record.run_id}")
    code = _print_verdict(outcome.analysis.valid, outcome.analysis.message)
    console.print(f"Time spent in checker: {outcome.elapsed_ms:.2f} msecs")
    raise typer.Exit(code=code)


@app.command("runs")
def list_runs() -> None:
    """List stored runs, newest first."""
    try:
        store = RunStore(load_settings().storage.store_path)
    except (OSError, RuntimeError) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=EXIT_FATAL)

    runs = store.list_runs()
    if not runs:
        console.print(f"No runs stored in {store.base}")
        return

    table = Table(title=f"Runs in {store.base}")
    table.add_column("Index", justify="right")
    table.add_column("Test")
    table.add_column("Run id")
    table.add_column("Valid")
    for offset, run_dir in enumerate(reversed(runs), start=1):
        try:
            results = store.load_results(run_dir)
        except StoredRunError:
            verdict = "[dim]unreadable[/dim]"
        else:
            verdict = _format_verdict(results)
        table.add_row(f"-{offset}", run_dir.parent.name, run_dir.name, verdict)
    console.print(table)


def _format_verdict(results: dict[str, Any] | None) -> str:
    if results is None:
        return "[dim]not checked[/dim]"
    raw = results.get("valid")
    if raw is None:
        return "[dim]skipped[/dim]"
    try:
        valid = Validity(raw)
    except ValueError:
        return f"[dim]{raw}[/dim]"
    return f"[{_VALIDITY_STYLES[valid]}]{valid.value}[/]"


def main() -> None:
    try:
        code = app(standalone_mode=False)
    except click.UsageError as exc:
        exc.show()
        sys.exit(EXIT_USAGE)
    except click.Abort:
        console.print("Aborted")
        sys.exit(EXIT_FATAL)
    sys.exit(code if isinstance(code, int) else EXIT_VALID)


if __name__ == "__main__":
    main()
