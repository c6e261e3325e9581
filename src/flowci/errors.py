# errors.py
from __future__ import annotations

from dataclasses import dataclass


class DefinitionError(ValueError):
    """Malformed pipeline document. Always raised before any job starts."""


class CycleError(DefinitionError):
    def __init__(self, stuck: list[str]):
        self.stuck = stuck
        super().__init__(f"DAG has a cycle among needs. Stuck jobs: {stuck}")


@dataclass
class MissingCredentialError(Exception):
    job: str
    secret: str

    def __str__(self) -> str:
        return f"[{self.job}] required secret '{self.secret}' is not available"


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code})"
