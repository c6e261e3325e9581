import sys

import pytest

from flowci import JobState, Reason, job, sh
from flowci.executor import OUTPUT_TAIL, JobRunner, ShellExecutor
from flowci.expansion import expand
from flowci.model import Step

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="steps run through a POSIX shell")


def test_shell_executor_captures_output_and_exit_code(tmp_path):
    ex = ShellExecutor()

    ok = ex.run(Step(name="echo", run="echo hello; echo oops 1>&2"), env={"PATH": "/usr/bin:/bin"}, cwd=tmp_path)
    bad = ex.run(Step(name="fail", run="exit 3"), env={"PATH": "/usr/bin:/bin"}, cwd=tmp_path)

    assert ok.ok
    assert "hello" in ok.output and "oops" in ok.output
    assert not bad.ok
    assert bad.exit_code == 3


def test_shell_executor_runs_in_cwd_with_the_given_env_only(tmp_path):
    (tmp_path / "marker.txt").write_text("x")
    step = Step(name="look", run='ls; echo "v=$ONLY_HERE"')

    out = ShellExecutor().run(step, env={"PATH": "/usr/bin:/bin", "ONLY_HERE": "yes"}, cwd=tmp_path)

    assert "marker.txt" in out.output
    assert "v=yes" in out.output


def test_undecodable_output_does_not_fail_a_passing_step(tmp_path):
    step = Step(name="binary", run="printf '\\377\\376ok'; exit 0")

    out = ShellExecutor().run(step, env={"PATH": "/usr/bin:/bin"}, cwd=tmp_path)

    assert out.ok
    assert out.output.endswith("ok")
    assert "�" in out.output


def test_shell_executor_timeout(tmp_path):
    out = ShellExecutor(timeout=0.2).run(Step(name="slow", run="sleep 5"), env={"PATH": "/usr/bin:/bin"}, cwd=tmp_path)
    assert out.exit_code == 124
    assert "timed out" in out.output


def test_shell_executor_missing_cwd(tmp_path):
    with pytest.raises(FileNotFoundError):
        ShellExecutor().run(Step(name="x", run="true"), env={}, cwd=tmp_path / "nope")


def test_runner_layers_environment(fake_executor, tmp_path):
    j = job("build", sh("b", "build", env={"STEP": "1", "LEVEL": "step"}), env={"LEVEL": "job", "JOB": "1"})
    (inst,) = expand(j)
    runner = JobRunner(
        fake_executor,
        workdir=tmp_path,
        base_env={"PATH": "/bin", "LEVEL": "base"},
        pipeline_env={"LEVEL": "pipeline", "PIPE": "1"},
    )

    runner.run(inst)

    env = fake_executor.env_of("build")
    assert env == {"PATH": "/bin", "PIPE": "1", "JOB": "1", "STEP": "1", "LEVEL": "step"}


def test_runner_resolves_step_cwd_against_workdir(fake_executor, tmp_path):
    (inst,) = expand(job("build", sh("b", "build", cwd="sub")))

    JobRunner(fake_executor, workdir=tmp_path, base_env={}).run(inst)

    assert fake_executor.calls[0].cwd == (tmp_path / "sub").resolve()


def test_runner_reports_the_failing_step_with_an_output_tail(fake_executor, tmp_path):
    fake_executor.failing = {"noisy"}
    fake_executor.exit_code = 2
    fake_executor.outputs = {"noisy": "x" * (OUTPUT_TAIL + 100) + "END"}
    (inst,) = expand(job("j", sh("first", "ok"), sh("loud", "noisy"), sh("never", "never")))

    result = JobRunner(fake_executor, workdir=tmp_path, base_env={}).run(inst)

    assert result.state is JobState.FAILED
    assert result.reason is Reason.STEP_FAILED
    assert (result.step, result.exit_code) == ("loud", 2)
    assert len(result.output) == OUTPUT_TAIL
    assert result.output.endswith("END")
    assert fake_executor.commands == ["ok", "noisy"]


def test_real_shell_end_to_end(tmp_path):
    (inst,) = expand(job("j", sh("one", "echo one > out.txt"), sh("two", "cat out.txt && exit 5")))

    result = JobRunner(ShellExecutor(), workdir=tmp_path, base_env={"PATH": "/usr/bin:/bin"}).run(inst)

    assert result.state is JobState.FAILED
    assert result.exit_code == 5
    assert "one" in result.output
