# scheduler.py
from __future__ import annotations

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Set

from . import conditions
from .dag import InstanceGraph
from .model import JobInstance, JobState, Reason
from .report import InstanceResult
from .trigger import Event
from .ui.console import get_console

RunFn = Callable[[JobInstance], InstanceResult]


class DependencyScheduler:
    """
    Drives every instance of a graph to a terminal state.

    pending -> gated-skip                      (condition false)
    pending -> blocked -> ready -> running -> succeeded | failed
    blocked -> skipped                         (a dependency failed or skipped)

    Gates are evaluated once, for every instance, before anything starts.
    Ready instances are dispatched in discovery order; completions are drained
    one batch at a time and only a success unblocks a dependent.
    """

    def __init__(
        self,
        graph: InstanceGraph,
        run_fn: RunFn,
        *,
        max_workers: Optional[int] = None,
        redact: Optional[Callable[[str], str]] = None,
    ):
        self.graph = graph
        self.run_fn = run_fn
        self.max_workers = max_workers
        self.redact = redact or (lambda s: s)

        n = len(graph)
        self.states: List[JobState] = [JobState.PENDING] * n
        self.results: List[Optional[InstanceResult]] = [None] * n
        self._waiting: List[Set[int]] = [set(d) for d in graph.dependencies]

    # ------------------------------------------------------------------
    # gates
    # ------------------------------------------------------------------

    def evaluate_gates(self, event: Event) -> None:
        for inst in self.graph.instances:
            if conditions.gate_open(inst, event.event_name, event.ref):
                self.states[inst.index] = JobState.BLOCKED
            else:
                self._finish(
                    inst,
                    JobState.GATED_SKIP,
                    Reason.CONDITION_FALSE,
                    detail=conditions.describe(inst.job.condition),
                )

    # ------------------------------------------------------------------
    # state transitions
    # ------------------------------------------------------------------

    def _finish(self, inst: JobInstance, state: JobState, reason: Reason, **kw) -> None:
        self.states[inst.index] = state
        self.results[inst.index] = InstanceResult(
            name=inst.name,
            job=inst.job.name,
            params=inst.params,
            state=state,
            reason=reason,
            **kw,
        )
        if state in (JobState.SKIPPED, JobState.GATED_SKIP):
            get_console().print_job_skipped(inst.name, reason.value)

    def _propagate(self, origin: int) -> None:
        """Skip every not-yet-started instance downstream of a failed/skipped one."""
        q = deque([origin])
        while q:
            i = q.popleft()
            reason = (
                Reason.DEPENDENCY_FAILED
                if self.states[i] is JobState.FAILED
                else Reason.DEPENDENCY_SKIPPED
            )
            for d in sorted(self.graph.dependents[i]):
                if self.states[d] is not JobState.BLOCKED:
                    continue
                self._finish(
                    self.graph.instances[d],
                    JobState.SKIPPED,
                    reason,
                    detail=f"needs {self.graph.instances[i].name}",
                )
                q.append(d)

    def _unblock(self, i: int) -> List[int]:
        newly_ready = []
        for d in sorted(self.graph.dependents[i]):
            self._waiting[d].discard(i)
            if self.states[d] is JobState.BLOCKED and not self._waiting[d]:
                self.states[d] = JobState.READY
                newly_ready.append(d)
        return newly_ready

    # ------------------------------------------------------------------
    # main loop
    # ------------------------------------------------------------------

    def run(self, event: Event) -> List[InstanceResult]:
        console = get_console()
        self.evaluate_gates(event)

        for i, state in enumerate(self.states):
            if state is JobState.GATED_SKIP:
                self._propagate(i)

        ready: List[int] = []
        for i, state in enumerate(self.states):
            if state is JobState.BLOCKED and not self._waiting[i]:
                self.states[i] = JobState.READY
                ready.append(i)

        workers = self.max_workers or max(1, len(self.graph))
        in_flight: Dict[Future, int] = {}

        with ThreadPoolExecutor(max_workers=workers) as pool:
            while ready or in_flight:
                # schedule all currently ready, in discovery order
                for i in sorted(ready):
                    inst = self.graph.instances[i]
                    self.states[i] = JobState.RUNNING
                    console.print_job_start(inst.name)
                    in_flight[pool.submit(self.run_fn, inst)] = i
                ready = []

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: in_flight[f]):
                    i = in_flight.pop(fut)
                    ready.extend(self._complete(i, fut))

        return [r for r in self.results if r is not None]

    def _complete(self, i: int, fut: Future) -> List[int]:
        console = get_console()
        inst = self.graph.instances[i]
        try:
            result = fut.result()
        except Exception as e:
            console.print_exception(e)
            result = InstanceResult(
                name=inst.name,
                job=inst.job.name,
                params=inst.params,
                state=JobState.FAILED,
                reason=Reason.STEP_FAILED,
                detail=self.redact(f"{type(e).__name__}: {e}"),
            )

        self.states[i] = result.state
        self.results[i] = result
        console.print_job_finished(inst.name, result.state.value, result.detail)

        if result.state is JobState.SUCCEEDED:
            return self._unblock(i)
        if result.state is JobState.FAILED:
            console.print_failure_output(inst.name, result.output)
        self._propagate(i)
        return []


