"""Console output formatting utilities for flowci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from flowci.report import RunReport


class Console:
    """
    All user-facing output of a run. One instance per process; worker threads
    share it, so every write goes through `_emit`.
    """

    def __init__(self, debug: bool = False, redact: Optional[Callable[[str], str]] = None):
        self.debug = debug
        self.redact = redact or (lambda s: s)
        self._lock = threading.Lock()

    def _emit(self, text: str, *, err: bool = False) -> None:
        # workers report step progress concurrently
        with self._lock:
            print(self.redact(text), file=sys.stderr if err else sys.stdout)

    def print_run_started(
        self,
        pipeline: str,
        event: str,
        ref: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._emit("\nRUN STARTED")
        self._emit(f"Pipeline: {pipeline}")
        self._emit(f"Event: {event} ({ref})")
        self._emit(f"Jobs: {job_count}")

    def print_not_triggered(self, event: str, ref: str) -> None:
        self._emit(f"\nRUN NOT TRIGGERED: {event} ({ref}) matches no trigger")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._emit(f"JOB STARTED: {name}")

    def print_step(self, job: str, step: str) -> None:
        """Print step start message."""
        self._emit(f"[{job}] STEP: {step}")

    def print_job_finished(self, name: str, state: str, detail: str = "") -> None:
        line = f"JOB {state.upper()}: {name}"
        if detail:
            line += f" ({detail})"
        self._emit(line)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._emit(f"JOB SKIPPED: {name} ({reason})")

    def print_failure_output(self, name: str, output: str) -> None:
        """Show the captured tail of a failed job; full text only in debug mode."""
        if not output:
            return
        lines = output.rstrip().splitlines()
        if not self.debug:
            lines = lines[-20:]
        self._emit(f"--- output of {name} ---")
        for line in lines:
            self._emit(f"  {line}")

    def print_plan_stage(self, index: int, names: list[str]) -> None:
        """Print one stage of the execution plan."""
        self._emit(f"=== Stage {index}: {', '.join(names)} ===")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._emit(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        self._emit(f"  {name} (skipped: {reason})")

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        self._emit("\n" + "=" * 40)
        self._emit("RESULTS")
        self._emit("=" * 40)
        for r in report.results:
            line = f"  {r.name}: {r.state.value.upper()}"
            if r.reason.value != r.state.value:
                line += f" ({r.reason.value})"
            self._emit(line)
        self._emit(f"RUN: {report.status.upper()}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """Title, message, indented details and an optional hint, all on stderr."""
        self._emit(f"\nERROR: {title}", err=True)
        self._emit(message, err=True)
        for detail in details or []:
            self._emit(f"  {detail}", err=True)
        if suggestion:
            self._emit(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# set by the CLI; tests and library callers get a plain Console lazily
_console: Optional[Console] = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
