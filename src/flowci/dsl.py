# src/flowci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import DefinitionError
from .model import Condition, Job, MatrixSpec, Pipeline, Step
from .trigger import Triggers

SecretsArg = Union[Sequence[str], Mapping[str, str], None]


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=_pairs(env))


def _pairs(env: Optional[Mapping[str, Any]]) -> tuple:
    # force values to str for env compatibility
    return tuple((str(k), str(v)) for k, v in (env or {}).items())


def _secret_pairs(secrets: SecretsArg) -> tuple:
    """["CRATES_TOKEN"] -> CRATES_TOKEN=<CRATES_TOKEN>; {"TOKEN": "CRATES_TOKEN"} renames."""
    if not secrets:
        return ()
    if isinstance(secrets, Mapping):
        return tuple((str(k), str(v)) for k, v in secrets.items())
    if isinstance(secrets, str):
        secrets = [secrets]
    return tuple((str(s), str(s)) for s in secrets)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Matrix axes builder.

    Example:
        job("test", sh("Test", "tox -e py${{ matrix.py }}"),
            matrix=matrix("py", ["3.11", "3.12"]).axis("os", ["linux", "mac"]))
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self._axes: Dict[str, List[Any]] = {}
        self.axis(key, values)

    def axis(self, key: str, values: Iterable[Any]) -> "Matrix":
        if key in self._axes:
            raise DefinitionError(f"matrix axis {key!r} declared twice")
        self._axes[key] = list(values)
        return self

    def spec(self) -> MatrixSpec:
        return MatrixSpec.of(self._axes)


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


def _matrix_spec(m: Union[Matrix, MatrixSpec, Mapping[str, Iterable[Any]], None]) -> Optional[MatrixSpec]:
    if m is None:
        return None
    if isinstance(m, MatrixSpec):
        return m
    if isinstance(m, Matrix):
        return m.spec()
    return MatrixSpec.of(dict(m))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,
    steps_list: Optional[List[Step]] = None,
    needs: Optional[Sequence[str]] = None,
    condition: Optional[Condition] = None,
    matrix: Union[Matrix, MatrixSpec, Mapping[str, Iterable[Any]], None] = None,
    env: Optional[Dict[str, str]] = None,
    secrets: SecretsArg = None,
    cwd: str | None = None,
) -> Job:
    """
    One job template. Steps may be passed positionally, as `steps_list`, or
    both (list first). `cwd` is the working directory of every step that does
    not set its own.
    """
    ordered = [*(steps_list or ()), *steps]
    if not ordered:
        raise DefinitionError(f"job({name!r}) must have at least one step")
    if cwd is not None:
        ordered = [replace(s, cwd=cwd) if s.cwd is None else s for s in ordered]

    return Job(
        name=name,
        steps=tuple(ordered),
        needs=tuple(needs or ()),
        condition=condition,
        matrix=_matrix_spec(matrix),
        env=_pairs(env),
        secrets=_secret_pairs(secrets),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    """Chained form of job(): build("publish").depends_on("test").define_step(...).build()"""

    def __init__(self, name: str):
        self.name = name
        self._steps: list[Step] = []
        self._opts: Dict[str, Any] = {"needs": [], "env": {}, "secrets": {}}

    def depends_on(self, *job_names: str) -> "JobBuilder":
        self._opts["needs"] += job_names
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **env: str) -> "JobBuilder":
        self._steps.append(sh(name, run, cwd=cwd, env=env or None))
        return self

    def with_env(self, **env) -> "JobBuilder":
        self._opts["env"].update(env)
        return self

    def with_secrets(self, *names: str, **renamed: str) -> "JobBuilder":
        """with_secrets("CRATES_TOKEN") or with_secrets(TOKEN="CRATES_TOKEN")."""
        self._opts["secrets"].update({n: n for n in names}, **renamed)
        return self

    def when(self, condition: Condition) -> "JobBuilder":
        self._opts["condition"] = condition
        return self

    def with_matrix(self, key: str, values: Iterable[Any]) -> "JobBuilder":
        m = self._opts.get("matrix")
        self._opts["matrix"] = Matrix(key, values) if m is None else m.axis(key, values)
        return self

    def build(self) -> Job:
        if not self._steps:
            raise DefinitionError(f"Job '{self.name}' has no steps")
        return job(self.name, *self._steps, **self._opts)


def build(name: str) -> JobBuilder:
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow file helpers
# ---------------------------------------------------------------------

def wf(*jobs: Job) -> List[Job]:
    """
    Return value of a workflow file's `workflow()` (or its `JOBS` list):

        def workflow():
            return wf(job("lint", sh("Lint", "ruff check .")), job(...))
    """
    return list(jobs)


# older workflow files import `workflow`; don't shadow it with your own def
workflow = wf


def pipeline(
    name: str,
    *jobs: Job,
    on: Any = None,
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """A complete definition: jobs plus run-level triggers and shared env."""
    return Pipeline(name=name, jobs=tuple(jobs), triggers=Triggers.of(on), env=_pairs(env))
