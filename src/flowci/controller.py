# controller.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

from . import conditions
from .dag import InstanceGraph, build_dag, instance_levels
from .executor import JobRunner, ShellExecutor, StepExecutor
from .loader import validate_pipeline
from .model import JobInstance, Pipeline
from .report import RunReport
from .scheduler import DependencyScheduler
from .secrets import SecretStore
from .trigger import Event, should_run
from .ui.console import get_console


@dataclass(frozen=True)
class PlannedInstance:
    instance: JobInstance
    gate_open: bool
    condition: str = ""


@dataclass(frozen=True)
class Plan:
    pipeline: str
    event: Event
    triggered: bool
    stages: List[List[PlannedInstance]]

    @property
    def instance_count(self) -> int:
        return sum(len(s) for s in self.stages)


def plan_pipeline(pipeline: Pipeline, event: Event) -> Plan:
    """
    Everything a run does short of executing a step: trigger check, matrix
    expansion, DAG build (cycle check) and gate evaluation.
    """
    pipeline = validate_pipeline(pipeline)
    if not should_run(pipeline.triggers, event):
        return Plan(pipeline=pipeline.name, event=event, triggered=False, stages=[])

    graph = build_dag(pipeline.jobs)
    stages = []
    for level in instance_levels(graph):
        stage = []
        for inst in level:
            stage.append(
                PlannedInstance(
                    instance=inst,
                    gate_open=conditions.gate_open(inst, event.event_name, event.ref),
                    condition=conditions.describe(inst.job.condition),
                )
            )
        stages.append(stage)
    return Plan(pipeline=pipeline.name, event=event, triggered=True, stages=stages)


def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    executor: Optional[StepExecutor] = None,
    secrets: Optional[SecretStore] = None,
    workdir: str | Path = ".",
    base_env: Optional[Mapping[str, str]] = None,
    max_workers: Optional[int] = None,
) -> RunReport:
    """
    evaluate trigger -> expand matrices -> build DAG -> schedule -> aggregate.

    DefinitionError (including a dependency cycle) propagates before any
    instance starts.
    """
    console = get_console()
    pipeline = validate_pipeline(pipeline)
    report = RunReport(pipeline=pipeline.name, event=event.kind.value, ref=event.ref)

    if not should_run(pipeline.triggers, event):
        console.print_not_triggered(event.kind.value, event.ref)
        report.triggered = False
        return report

    graph: InstanceGraph = build_dag(pipeline.jobs)
    console.print_run_started(
        pipeline=pipeline.name,
        event=event.kind.value,
        ref=event.ref,
        job_count=len(graph),
    )

    store = secrets or SecretStore()
    runner = JobRunner(
        executor or ShellExecutor(),
        secrets=store,
        workdir=workdir,
        base_env=base_env,
        pipeline_env=dict(pipeline.env),
    )
    scheduler = DependencyScheduler(
        graph,
        runner,
        max_workers=max_workers,
        redact=runner.redactor.redact,
    )
    report.results = scheduler.run(event)
    return report
