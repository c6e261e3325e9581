# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import NoReturn

import click

from flowci.controller import plan_pipeline, run_pipeline
from flowci.errors import DefinitionError
from flowci.executor import ShellExecutor
from flowci.git_facts.git import current_ref, repo_root
from flowci.loader import load_workflow
from flowci.model import Pipeline
from flowci.secrets import DEFAULT_SECRET_PREFIX, SecretStore, base_environment
from flowci.trigger import Event, EventKind
from flowci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "flowci_workflow.py"
# checked in this order; the first pattern is the conventional name
WORKFLOW_PATTERNS = (DEFAULT_WORKFLOW, "*_workflow.py", "flowci.yml", "flowci.yaml")


def find_workflow_files(root: Path | None = None) -> list[Path]:
    """Every pipeline definition directly under `root` (default: cwd)."""
    root = root or Path(".")
    found: dict[Path, None] = {}
    for pattern in WORKFLOW_PATTERNS:
        for path in sorted(root.glob(pattern)):
            found.setdefault(path, None)
    return list(found)


def _exit_no_pipeline(title: str, message: str, *, details=None, suggestion=None) -> NoReturn:
    get_console().print_error(title, message, details=details, suggestion=suggestion)
    sys.exit(1)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve --workflow, or pick the single pipeline file in the current
    directory. Exits 1 when there is none or more than one.
    """
    if workflow_arg:
        path = Path(workflow_arg)
        # `--workflow release` means release.py when no such file exists
        if not path.exists() and not path.suffix:
            path = path.with_suffix(".py")
        if not path.exists():
            _exit_no_pipeline(
                "Workflow file not found",
                f"No pipeline at {workflow_arg}",
                suggestion="Pass an existing .py or .yml file:\n  flowci run --workflow flowci.yml",
            )
        return path

    candidates = find_workflow_files()
    if not candidates:
        _exit_no_pipeline(
            "No workflow file found",
            "Nothing to run in the current directory.",
            details=["Looked for:", *(f"  {p}" for p in WORKFLOW_PATTERNS)],
            suggestion=f"Add {DEFAULT_WORKFLOW} or flowci.yml, or pass --workflow.",
        )
    if len(candidates) > 1:
        _exit_no_pipeline(
            "Multiple workflow files found",
            "Pick one with --workflow:",
            details=[f"  {p}" for p in candidates],
        )
    return candidates[0]


def _load_or_exit(workflow_path: Path, debug: bool) -> Pipeline:
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except DefinitionError as e:
        console.print_error(
            "Invalid pipeline",
            f"{workflow_path} could not be loaded; nothing was run.",
            details=[str(e)],
        )
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if debug:
            console.print_exception(e)
    sys.exit(1)


def _event_or_exit(event: str, ref: str | None) -> Event:
    console = get_console()
    if not ref:
        try:
            ref = current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref given and the current directory is not a usable git checkout.",
                suggestion="Please specify --ref explicitly:\n  flowci run --ref refs/heads/main",
            )
            sys.exit(1)
    try:
        return Event.from_ref(event, ref)
    except DefinitionError as e:
        console.print_error("Invalid event", str(e))
        sys.exit(1)


def _default_workdir() -> Path:
    try:
        return repo_root()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(".").resolve()


_EVENT_CHOICES = click.Choice([k.value for k in EventKind])


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="FLOWCI_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """flowci: trigger, gate and schedule a CI pipeline."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)
@click.option("--event", "event_kind", type=_EVENT_CHOICES, default="push", show_default=True, envvar="FLOWCI_EVENT", help="Triggering event kind")
@click.option("--ref", default=None, envvar="FLOWCI_REF", help="Triggering ref (defaults to the current git ref)")
@click.option("--workers", default=None, type=click.IntRange(min=1), envvar="FLOWCI_WORKERS", help="Cap on parallel job instances (default: no cap)")
@click.option("--workdir", default=None, type=click.Path(file_okay=False), help="Directory steps run in (defaults to the repo root)")
@click.option("--secret-prefix", default=DEFAULT_SECRET_PREFIX, show_default=True, envvar="FLOWCI_SECRET_PREFIX", help="Environment prefix of secrets")
@click.option("--step-timeout", default=None, type=float, envvar="FLOWCI_STEP_TIMEOUT", help="Per-step timeout in seconds")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False), help="Write the run report as JSON")
@click.pass_context
def run(ctx, workflow, event_kind, ref, workers, workdir, secret_prefix, step_timeout, report_path):
    """Run a flowci pipeline for one event."""
    debug = ctx.obj.get("debug", False)

    store = SecretStore.from_environ(secret_prefix)
    # every line the console prints goes through the redactor from here on
    set_console(Console(debug=debug, redact=store.redactor().redact))
    console = get_console()

    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(workflow_path, debug)
    event = _event_or_exit(event_kind, ref)

    try:
        report = run_pipeline(
            pipeline,
            event,
            executor=ShellExecutor(timeout=step_timeout),
            secrets=store,
            workdir=workdir or _default_workdir(),
            base_env=base_environment(prefix=secret_prefix),
            max_workers=workers,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except DefinitionError as e:
        console.print_error("Invalid pipeline", "Nothing was run.", details=[str(e)])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if report.triggered:
        console.print_results(report)
    if report_path:
        written = report.write(report_path)
        console.print_info(f"Report written to {written}")

    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@click.option("--event", "event_kind", type=_EVENT_CHOICES, default="push", show_default=True, envvar="FLOWCI_EVENT")
@click.option("--ref", default=None, envvar="FLOWCI_REF")
@click.pass_context
def plan(ctx, workflow, event_kind, ref):
    """Show stages, matrix instances and gate outcomes without running anything."""
    debug = ctx.obj.get("debug", False)
    console = get_console()

    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(workflow_path, debug)
    event = _event_or_exit(event_kind, ref)

    try:
        result = plan_pipeline(pipeline, event)
    except DefinitionError as e:
        console.print_error("Invalid pipeline", "Nothing was run.", details=[str(e)])
        sys.exit(1)

    if not result.triggered:
        console.print_not_triggered(event.kind.value, event.ref)
        return

    console.print_info(f"Pipeline: {result.pipeline} ({result.instance_count} job instances)")
    for idx, stage in enumerate(result.stages, start=1):
        console.print_plan_stage(idx, [p.instance.name for p in stage])
        for p in stage:
            if p.gate_open:
                console.print_plan_job(p.instance.name, p.condition or "always")
            else:
                console.print_plan_job_skipped(p.instance.name, f"condition false: {p.condition}")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@click.pass_context
def validate(ctx, workflow):
    """Load a pipeline and check it (needs, cycles, conditions, matrix refs)."""
    workflow_path = discover_workflow(workflow)
    pipeline = _load_or_exit(workflow_path, ctx.obj.get("debug", False))
    get_console().print_info(
        f"OK: {pipeline.name} ({len(pipeline.jobs)} jobs, triggers: {', '.join(pipeline.triggers.kinds)})"
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
