# executor.py
from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol

from .errors import MissingCredentialError, StepFailure
from .model import JobInstance, JobState, Reason, Step
from .report import InstanceResult
from .secrets import Redactor, SecretScope, SecretStore, base_environment, substitute_secrets
from .ui.console import get_console

OUTPUT_TAIL = 4000


# ----------------------------------------------------------------------
# Step execution boundary
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutcome:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepExecutor(Protocol):
    """Runs one opaque command. Knows nothing about jobs, DAGs or secrets."""

    def run(self, step: Step, *, env: Dict[str, str], cwd: Path) -> StepOutcome:
        ...


class ShellExecutor:
    """Default executor: the command is handed to the shell as-is."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def run(self, step: Step, *, env: Dict[str, str], cwd: Path) -> StepOutcome:
        if not cwd.exists():
            raise FileNotFoundError(f"step '{step.name}' cwd not found: {cwd}")
        try:
            proc = subprocess.run(
                step.run,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                encoding="utf-8",
                errors="replace",
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            out = e.output or ""
            if isinstance(out, bytes):
                out = out.decode("utf-8", errors="replace")
            return StepOutcome(exit_code=124, output=f"{out}\ntimed out after {self.timeout}s")
        return StepOutcome(exit_code=proc.returncode, output=proc.stdout or "")


# ----------------------------------------------------------------------
# Job instance execution
# ----------------------------------------------------------------------

class JobRunner:
    """
    Executes one job instance: resolve secrets, build its private environment,
    run steps strictly in order, stop at the first failure.

    Safe to call from several worker threads at once; nothing here is shared
    between instances except the read-only secret store.
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        secrets: Optional[SecretStore] = None,
        workdir: str | Path = ".",
        base_env: Optional[Mapping[str, str]] = None,
        pipeline_env: Optional[Mapping[str, str]] = None,
    ):
        self.executor = executor
        self.store = secrets or SecretStore()
        self.scope = SecretScope(self.store)
        self.redactor: Redactor = self.store.redactor()
        self.workdir = Path(workdir).resolve()
        self.base_env = dict(base_env) if base_env is not None else base_environment()
        self.pipeline_env = dict(pipeline_env or {})

    def environment(
        self,
        instance: JobInstance,
        resolved: Mapping[str, str],
        by_name: Mapping[str, str],
    ) -> Dict[str, str]:
        env = dict(self.base_env)
        env.update(self.pipeline_env)
        env.update({k: substitute_secrets(v, by_name) for k, v in instance.env})
        env.update(resolved)
        return env

    def __call__(self, instance: JobInstance) -> InstanceResult:
        return self.run(instance)

    def run(self, instance: JobInstance) -> InstanceResult:
        console = get_console()
        start = time.monotonic()

        try:
            resolved = self.scope.resolve(instance)
            by_name = self.scope.values_by_name(instance)
        except MissingCredentialError as e:
            console.print_debug(str(e))
            return self._result(
                instance, JobState.FAILED, Reason.MISSING_CREDENTIAL, start, detail=str(e)
            )

        env = self.environment(instance, resolved, by_name)
        output_parts: list[str] = []
        try:
            for step in instance.steps:
                console.print_step(instance.name, step.name)
                if step.uses and not step.run:
                    console.print_debug(f"[{instance.name}] action '{step.uses}' is opaque, not executed")
                    continue
                outcome = self._run_step(step, env, by_name)
                output_parts.append(outcome.output)
                if not outcome.ok:
                    raise StepFailure(
                        job=instance.name,
                        step=step.name,
                        exit_code=outcome.exit_code,
                        output=outcome.output,
                    )
        except StepFailure as e:
            return self._result(
                instance,
                JobState.FAILED,
                Reason.STEP_FAILED,
                start,
                detail=self.redactor.redact(str(e)),
                step=e.step,
                exit_code=e.exit_code,
                output=self._tail(e.output),
            )

        return self._result(
            instance,
            JobState.SUCCEEDED,
            Reason.SUCCEEDED,
            start,
            output=self._tail("".join(output_parts)),
        )

    def _run_step(self, step: Step, env: Dict[str, str], by_name: Mapping[str, str]) -> StepOutcome:
        step_env = dict(env)
        step_env.update({k: substitute_secrets(v, by_name) for k, v in step.env})
        bound = replace(step, run=substitute_secrets(step.run, by_name))
        cwd = (self.workdir / (step.cwd or ".")).resolve()
        return self.executor.run(bound, env=step_env, cwd=cwd)

    def _tail(self, text: str) -> str:
        return self.redactor.redact(text)[-OUTPUT_TAIL:]

    def _result(
        self,
        instance: JobInstance,
        state: JobState,
        reason: Reason,
        start: float,
        **kw,
    ) -> InstanceResult:
        return InstanceResult(
            name=instance.name,
            job=instance.job.name,
            params=instance.params,
            state=state,
            reason=reason,
            duration=time.monotonic() - start,
            **kw,
        )
