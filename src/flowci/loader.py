# loader.py
from __future__ import annotations

import runpy
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml

from . import conditions
from .dag import check_jobs
from .dsl import _pairs, _secret_pairs
from .errors import DefinitionError
from .expansion import referenced_axes
from .model import Job, MatrixSpec, Pipeline, Step
from .secrets import SECRET_REF_RE, referenced_secrets
from .trigger import Triggers

YAML_SUFFIXES = (".yml", ".yaml")

_JOB_KEYS = {"name", "runs-on", "needs", "if", "strategy", "env", "secrets", "steps"}
_STEP_KEYS = {"id", "name", "run", "uses", "with", "working-directory", "env", "shell"}
# GitHub matrix keys that add or drop combinations rather than declare an axis
_MATRIX_COMBO_KEYS = {"include", "exclude"}


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load and validate a pipeline from a .py workflow file or a YAML document.

    A .py file must define either:
      - workflow() -> List[Job] | Pipeline
      - JOBS = [Job, ...]
    and may define NAME and ON (run-level triggers).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in YAML_SUFFIXES:
        return load_yaml(wf_path.read_text(encoding="utf-8"), default_name=wf_path.stem)
    if wf_path.suffix != ".py":
        raise DefinitionError(f"Workflow must be a .py or .yml file, got: {wf_path.name}")
    return _load_python(wf_path)


def _load_python(wf_path: Path) -> Pipeline:
    module_name = f"flowci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    jobs: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            jobs = globals_dict["workflow"]()
        except TypeError as e:
            if "positional arguments but" in str(e) and "was given" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from flowci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if isinstance(jobs, Pipeline):
        return validate_pipeline(jobs)

    if not isinstance(jobs, list) or not all(isinstance(j, Job) for j in jobs):
        raise DefinitionError(
            "Workflow must return/define a List[Job] or a Pipeline. "
            "Define workflow() -> List[Job] or JOBS = [Job, ...]."
        )

    return validate_pipeline(
        Pipeline(
            name=str(globals_dict.get("NAME") or wf_path.stem),
            jobs=tuple(jobs),
            triggers=Triggers.of(globals_dict.get("ON")),
            env=_pairs(globals_dict.get("ENV")),
        )
    )


# ----------------------------------------------------------------------
# YAML documents
# ----------------------------------------------------------------------

def load_yaml(text: str, *, default_name: str = "pipeline") -> Pipeline:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML: {e}") from e

    if data is None:
        raise DefinitionError("Empty pipeline document")
    return pipeline_from_dict(data, default_name=default_name)


def pipeline_from_dict(data: Mapping[Any, Any], *, default_name: str = "pipeline") -> Pipeline:
    """Build a pipeline from an already-parsed document."""
    if not isinstance(data, Mapping):
        raise DefinitionError("Pipeline document must be a mapping")

    # YAML 1.1 reads a bare `on:` key as boolean True
    on = data.get("on", data.get(True))

    raw_jobs = data.get("jobs")
    if not isinstance(raw_jobs, dict) or not raw_jobs:
        raise DefinitionError("Pipeline document must define a non-empty 'jobs' mapping")

    jobs = [_job_from_dict(str(name), body) for name, body in raw_jobs.items()]
    return validate_pipeline(
        Pipeline(
            name=str(data.get("name") or default_name),
            jobs=tuple(jobs),
            triggers=Triggers.of(on),
            env=_pairs(_mapping(data.get("env"), "env")),
        )
    )


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DefinitionError(f"'{what}' must be a mapping")
    return value


def _names(value: Any, what: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise DefinitionError(f"'{what}' must be a string or a list of strings")


def _job_from_dict(name: str, body: Any) -> Job:
    if not isinstance(body, dict):
        raise DefinitionError(f"Job '{name}' must be a mapping")
    unknown = set(body) - _JOB_KEYS
    if unknown:
        raise DefinitionError(f"Job '{name}' has unknown keys: {sorted(unknown)}")

    raw_steps = body.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise DefinitionError(f"Job '{name}' must have at least one step")
    steps = [_step_from_dict(name, i, s) for i, s in enumerate(raw_steps)]

    strategy = _mapping(body.get("strategy"), f"jobs.{name}.strategy")
    unsupported = set(strategy) - {"matrix"}
    if unsupported:
        raise DefinitionError(f"Job '{name}': unsupported strategy keys {sorted(unsupported)}")
    matrix = None
    if "matrix" in strategy:
        axes = _mapping(strategy["matrix"], f"jobs.{name}.strategy.matrix")
        combos = sorted(set(axes) & _MATRIX_COMBO_KEYS)
        if combos:
            raise DefinitionError(f"Job '{name}': matrix {combos} are not supported; list every axis value instead")
        for axis, values in axes.items():
            if not isinstance(values, list):
                raise DefinitionError(f"Job '{name}': matrix axis '{axis}' must be a list")
        matrix = MatrixSpec.of(axes)

    cond = body.get("if")
    if cond is not None and not isinstance(cond, str):
        # `if: true` / `if: false` arrive as YAML booleans
        cond = "true" if cond else "false"

    raw_secrets = body.get("secrets")
    if raw_secrets is not None and not isinstance(raw_secrets, dict):
        raw_secrets = _names(raw_secrets, f"jobs.{name}.secrets")

    return Job(
        name=name,
        steps=tuple(steps),
        needs=tuple(_names(body.get("needs"), f"jobs.{name}.needs")),
        condition=cond,
        matrix=matrix,
        env=_pairs(_mapping(body.get("env"), f"jobs.{name}.env")),
        secrets=_secret_pairs(raw_secrets),
    )


def _step_from_dict(job: str, idx: int, body: Any) -> Step:
    if not isinstance(body, dict):
        raise DefinitionError(f"Job '{job}' step #{idx + 1} must be a mapping")
    unknown = set(body) - _STEP_KEYS
    if unknown:
        raise DefinitionError(f"Job '{job}' step #{idx + 1} has unknown keys: {sorted(unknown)}")

    run = "" if body.get("run") is None else str(body["run"])
    uses = body.get("uses")
    if not run.strip() and not uses:
        raise DefinitionError(f"Job '{job}' step #{idx + 1} needs 'run' or 'uses'")

    name = body.get("name") or uses or run.strip().splitlines()[0]
    return Step(
        name=str(name),
        run=run if run.strip() else "",
        cwd=body.get("working-directory"),
        env=_pairs(_mapping(body.get("env"), f"jobs.{job}.steps[{idx}].env")),
        uses=uses,
    )


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def _validate_job(job: Job) -> Job:
    if not job.steps:
        raise DefinitionError(f"Job '{job.name}' has no steps")

    axes = job.matrix.names if job.matrix is not None else []
    if len(set(axes)) != len(axes):
        raise DefinitionError(f"Job '{job.name}' declares a matrix axis twice")

    texts = [job.name, *(v for _, v in job.env)]
    for s in job.steps:
        texts.extend([s.name, s.run, s.cwd, *(v for _, v in s.env)])
    missing = referenced_axes(texts) - set(axes)
    if missing:
        raise DefinitionError(
            f"Job '{job.name}' references undeclared matrix axes: {sorted(missing)}"
        )

    if isinstance(job.condition, str):
        conditions.compile_condition(job.condition, axes=axes)
    elif job.condition is not None and not callable(job.condition):
        raise DefinitionError(f"Job '{job.name}': condition must be a string or a callable")

    # referencing ${{ secrets.X }} in a job declares X for that job
    declared = {secret for _, secret in job.secrets}
    extra = sorted(referenced_secrets(job) - declared)
    if extra:
        job = replace(job, secrets=job.secrets + tuple((s, s) for s in extra))

    vars_ = [var for var, _ in job.secrets]
    if len(set(vars_)) != len(vars_):
        raise DefinitionError(f"Job '{job.name}' maps two secrets to the same variable")
    return job


def validate_pipeline(pipeline: Pipeline) -> Pipeline:
    """
    Check a definition before anything runs; returns the normalised pipeline.

    Raises DefinitionError (or CycleError) on: duplicate names, unknown or
    cyclic needs, bad conditions, undeclared matrix axes, secrets in the
    pipeline-wide env.
    """
    if not pipeline.jobs:
        raise DefinitionError(f"Pipeline '{pipeline.name}' has no jobs")
    # pipeline env reaches every job; a secret must be declared by a job
    for var, value in pipeline.env:
        if SECRET_REF_RE.search(value):
            raise DefinitionError(
                f"Pipeline env '{var}' references a secret; move it to the env of the job that needs it"
            )
    jobs = tuple(_validate_job(j) for j in pipeline.jobs)
    check_jobs(jobs)
    return replace(pipeline, jobs=jobs)

