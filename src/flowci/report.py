# report.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .model import JobState, Reason

RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"
RUN_NOT_TRIGGERED = "not-triggered"


@dataclass(frozen=True)
class InstanceResult:
    """Terminal outcome of one job instance. Never carries secret values."""
    name: str
    job: str
    params: Tuple[Tuple[str, Any], ...]
    state: JobState
    reason: Reason
    detail: str = ""
    step: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "job": self.job,
            "params": {k: v for k, v in self.params},
            "state": self.state.value,
            "reason": self.reason.value,
            "duration": round(self.duration, 3),
        }
        if self.detail:
            d["detail"] = self.detail
        if self.step is not None:
            d["step"] = self.step
        if self.exit_code is not None:
            d["exit_code"] = self.exit_code
        if self.output:
            d["output"] = self.output
        return d


@dataclass
class RunReport:
    """Aggregated result of one run."""
    pipeline: str
    event: str
    ref: str
    results: List[InstanceResult] = field(default_factory=list)
    triggered: bool = True

    @property
    def status(self) -> str:
        if not self.triggered:
            return RUN_NOT_TRIGGERED
        if any(r.state is JobState.FAILED for r in self.results):
            return RUN_FAILED
        return RUN_SUCCEEDED

    @property
    def ok(self) -> bool:
        return self.status != RUN_FAILED

    def result(self, name: str) -> InstanceResult:
        for r in self.results:
            if r.name == name:
                return r
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "event": self.event,
            "ref": self.ref,
            "status": self.status,
            "jobs": [r.to_dict() for r in self.results],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=False, default=str)

    def write(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_json() + "\n", encoding="utf-8")
        return p
