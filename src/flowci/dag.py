# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, List, Sequence, Set

from .errors import CycleError, DefinitionError
from .expansion import expand
from .model import Job, JobInstance


@dataclass
class InstanceGraph:
    """
    Arena of job instances indexed by discovery order.

    Edges are index sets, never object references:
      dependencies[i] -> instances that must succeed before i starts
      dependents[i]   -> instances waiting on i
    """
    instances: List[JobInstance]
    dependencies: List[Set[int]]
    dependents: List[Set[int]]

    def __len__(self) -> int:
        return len(self.instances)

    def by_job(self) -> Dict[str, List[int]]:
        out: Dict[str, List[int]] = {}
        for inst in self.instances:
            out.setdefault(inst.job.name, []).append(inst.index)
        return out


def check_jobs(jobs: Sequence[Job]) -> None:
    """
    Name-level validation: unique names, known needs, acyclic needs.

    Runs on job templates so a cycle is reported even when a matrix
    fans one of its members out to zero instances.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DefinitionError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for job in jobs:
        for need in job.needs:
            if need not in name_set:
                raise DefinitionError(
                    f"Job '{job.name}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            # Edge need -> job.name (need must run before job)
            if job.name not in adj[need]:
                adj[need].add(job.name)
                indeg[job.name] += 1

    topo_levels(adj, indeg)


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel. Raises CycleError if any node is stuck.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque([n for n, d in indeg.items() if d == 0])

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        raise CycleError(sorted(n for n, d in indeg.items() if d > 0))

    return levels


def build_dag(jobs: Sequence[Job]) -> InstanceGraph:
    """
    Expand every job and wire instance edges.

    Every instance of a dependent job depends on every instance of each
    job it needs. Fails with DefinitionError/CycleError before anything runs.
    """
    jobs = list(jobs)
    check_jobs(jobs)

    instances: List[JobInstance] = []
    by_job: Dict[str, List[int]] = {}
    for job in jobs:
        for inst in expand(job):
            idx = len(instances)
            instances.append(replace(inst, index=idx))
            by_job.setdefault(job.name, []).append(idx)

    dependencies: List[Set[int]] = [set() for _ in instances]
    dependents: List[Set[int]] = [set() for _ in instances]
    for inst in instances:
        for need in inst.job.needs:
            for dep_idx in by_job.get(need, []):
                dependencies[inst.index].add(dep_idx)
                dependents[dep_idx].add(inst.index)

    return InstanceGraph(instances=instances, dependencies=dependencies, dependents=dependents)


def instance_levels(graph: InstanceGraph) -> List[List[JobInstance]]:
    """Stage view of the instance graph, stable in discovery order within a stage."""
    adj = {i: set(graph.dependents[i]) for i in range(len(graph))}
    indeg = {i: len(graph.dependencies[i]) for i in range(len(graph))}
    levels = topo_levels(adj, indeg)
    return [[graph.instances[i] for i in sorted(level)] for level in levels]
