# model.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Union

if TYPE_CHECKING:
    from .trigger import Triggers


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    env: Tuple[Tuple[str, str], ...] = ()
    uses: str | None = None  # opaque action reference, executed as a no-op

    @property
    def env_map(self) -> Dict[str, str]:
        return dict(self.env)


@dataclass(frozen=True)
class MatrixSpec:
    """
    Named parameter axes, each an ordered tuple of values.

    Axis order is the declaration order; it drives expansion order.
    """
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...]

    @classmethod
    def of(cls, axes: Dict[str, Any]) -> "MatrixSpec":
        return cls(tuple((str(k), tuple(v)) for k, v in axes.items()))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.axes]


Condition = Union[str, Callable[["RunContext"], bool]]


@dataclass(frozen=True)
class Job:
    """
    A CI job as authored: steps + needs + gate + matrix + env/secret declarations.

    `secrets` maps the environment variable a step sees to the name of the
    secret in the store.
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    condition: Optional[Condition] = None
    matrix: Optional[MatrixSpec] = None
    env: Tuple[Tuple[str, str], ...] = ()
    secrets: Tuple[Tuple[str, str], ...] = ()

    @property
    def env_map(self) -> Dict[str, str]:
        return dict(self.env)

    @property
    def secrets_map(self) -> Dict[str, str]:
        return dict(self.secrets)


@dataclass(frozen=True)
class Pipeline:
    """A loaded pipeline definition. Pure data."""
    name: str
    jobs: Tuple[Job, ...]
    triggers: "Triggers"
    env: Tuple[Tuple[str, str], ...] = ()

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


@dataclass(frozen=True)
class JobInstance:
    """A job bound to one matrix combination (or the job itself if unparameterized)."""
    job: Job
    params: Tuple[Tuple[str, Any], ...] = ()
    steps: Tuple[Step, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    index: int = -1  # discovery order, assigned at DAG build

    @property
    def identity(self) -> Tuple[str, Tuple[Tuple[str, Any], ...]]:
        return (self.job.name, self.params)

    @property
    def name(self) -> str:
        if not self.params:
            return self.job.name
        inner = ", ".join(f"{k}={v}" for k, v in self.params)
        return f"{self.job.name} ({inner})"

    @property
    def params_map(self) -> Dict[str, Any]:
        return dict(self.params)


class JobState(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    GATED_SKIP = "gated-skip"


class Reason(str, Enum):
    SUCCEEDED = "succeeded"
    STEP_FAILED = "step failed"
    MISSING_CREDENTIAL = "missing credential"
    CONDITION_FALSE = "skipped by condition"
    DEPENDENCY_FAILED = "dependency failed"
    DEPENDENCY_SKIPPED = "dependency skipped"


@dataclass(frozen=True)
class RunContext:
    """Everything a gate may look at. Known before any job runs."""
    event_name: str
    ref: str
    matrix: Tuple[Tuple[str, Any], ...] = ()

    @property
    def ref_name(self) -> str:
        for prefix in ("refs/heads/", "refs/tags/", "refs/pull/"):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref

    @property
    def matrix_map(self) -> Dict[str, Any]:
        return dict(self.matrix)
