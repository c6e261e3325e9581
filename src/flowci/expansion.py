# expansion.py
from __future__ import annotations

import itertools
import re
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Tuple

from .errors import DefinitionError
from .model import Job, JobInstance, Step

MATRIX_REF_RE = re.compile(r"\$\{\{\s*matrix\.([A-Za-z_][A-Za-z0-9_\-]*)\s*\}\}")


def combinations(job: Job) -> List[Tuple[Tuple[str, Any], ...]]:
    """
    Cartesian product of the job's axes, in declaration order.

    No matrix -> one empty combination. Any empty axis -> no combinations.
    """
    if job.matrix is None or not job.matrix.axes:
        return [()]
    names = job.matrix.names
    value_lists = [values for _, values in job.matrix.axes]
    return [tuple(zip(names, combo)) for combo in itertools.product(*value_lists)]


def substitute(text: str | None, params: Dict[str, Any], *, job: str) -> str | None:
    """Replace ${{ matrix.<axis> }} placeholders with this instance's values."""
    if text is None:
        return None

    def _sub(m: re.Match) -> str:
        axis = m.group(1)
        if axis not in params:
            raise DefinitionError(f"Job '{job}' references undeclared matrix axis '{axis}'")
        return str(params[axis])

    return MATRIX_REF_RE.sub(_sub, text)


def referenced_axes(texts: Iterable[str | None]) -> set[str]:
    out: set[str] = set()
    for t in texts:
        if t:
            out.update(MATRIX_REF_RE.findall(t))
    return out


def _bind_step(step: Step, params: Dict[str, Any], job: str) -> Step:
    return replace(
        step,
        name=substitute(step.name, params, job=job),
        run=substitute(step.run, params, job=job),
        cwd=substitute(step.cwd, params, job=job),
        env=tuple((k, substitute(v, params, job=job)) for k, v in step.env),
    )


def expand(job: Job) -> List[JobInstance]:
    """
    Expand a job template into its concrete instances.

    Deterministic and order-stable: (x,1),(x,2),(y,1),(y,2) for
    axes A=(x,y), B=(1,2). An empty axis yields an empty fan-out.
    """
    instances: List[JobInstance] = []
    for params in combinations(job):
        pmap = dict(params)
        instances.append(
            JobInstance(
                job=job,
                params=params,
                steps=tuple(_bind_step(s, pmap, job.name) for s in job.steps),
                env=tuple((k, substitute(v, pmap, job=job.name)) for k, v in job.env),
            )
        )
    return instances
