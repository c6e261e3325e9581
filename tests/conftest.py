import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from flowci.executor import StepOutcome
from flowci.ui.console import Console, set_console


@dataclass
class Call:
    cmd: str
    env: Dict[str, str]
    cwd: Path
    thread: str


@dataclass
class FakeExecutor:
    """Records every step it is handed; commands listed in `failing` exit non-zero."""
    failing: set = field(default_factory=set)
    hooks: Dict[str, Callable[[], None]] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    exit_code: int = 1
    calls: List[Call] = field(default_factory=list)

    def __post_init__(self):
        self._lock = threading.Lock()

    def run(self, step, *, env, cwd):
        with self._lock:
            self.calls.append(Call(step.run, dict(env), cwd, threading.current_thread().name))
        hook = self.hooks.get(step.run)
        if hook is not None:
            hook()
        out = self.outputs.get(step.run, f"{step.run} ok\n")
        if step.run in self.failing:
            return StepOutcome(exit_code=self.exit_code, output=out)
        return StepOutcome(exit_code=0, output=out)

    @property
    def commands(self) -> List[str]:
        return [c.cmd for c in self.calls]

    def env_of(self, cmd: str) -> Dict[str, str]:
        for c in self.calls:
            if c.cmd == cmd:
                return c.env
        raise KeyError(cmd)


@pytest.fixture(autouse=True)
def _fresh_console():
    set_console(Console())
    yield
    set_console(Console())


@pytest.fixture
def fake_executor():
    return FakeExecutor()
