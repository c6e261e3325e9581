import json
import sys
import textwrap

import pytest
from click.testing import CliRunner

from flowci.cli import cli

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="steps run through a POSIX shell")

WORKFLOW = textwrap.dedent(
    """
    name: demo
    on: [push, pull_request]
    jobs:
      build:
        steps:
          - run: echo building
      test:
        needs: build
        strategy:
          matrix:
            py: ["3.11", "3.12"]
        steps:
          - run: echo testing ${{ matrix.py }}
      publish:
        needs: test
        if: startsWith(github.ref, 'refs/tags/v')
        steps:
          - run: echo "token is ${{ secrets.TOKEN }}"
    """
)


@pytest.fixture
def workflow(tmp_path):
    path = tmp_path / "flowci.yml"
    path.write_text(WORKFLOW)
    return path


def _invoke(*args, env=None):
    return CliRunner().invoke(cli, list(args), obj={}, env=env or {})


def test_run_on_a_branch_succeeds_and_gates_publish(workflow, tmp_path):
    result = _invoke(
        "run", "--workflow", str(workflow), "--ref", "refs/heads/main", "--workdir", str(tmp_path)
    )

    assert result.exit_code == 0, result.output
    assert "test (py=3.12): SUCCEEDED" in result.output
    assert "publish: GATED-SKIP (skipped by condition)" in result.output
    assert "RUN: SUCCEEDED" in result.output


def test_run_on_a_tag_writes_a_report_without_secret_values(workflow, tmp_path):
    report = tmp_path / "out" / "report.json"

    result = _invoke(
        "run", "--workflow", str(workflow), "--ref", "refs/tags/v1.0.0",
        "--workdir", str(tmp_path), "--report", str(report),
        env={"FLOWCI_SECRET_TOKEN": "hunter2-value"},
    )

    assert result.exit_code == 0, result.output
    assert "hunter2-value" not in result.output
    data = json.loads(report.read_text())
    assert data["event"] == "tag_push"
    assert data["status"] == "succeeded"
    publish = next(j for j in data["jobs"] if j["name"] == "publish")
    assert publish["state"] == "succeeded"
    assert "hunter2-value" not in report.read_text()
    assert "***" in publish["output"]


def test_run_exits_non_zero_when_an_instance_fails(tmp_path):
    path = tmp_path / "flowci.yml"
    path.write_text("jobs:\n  a:\n    steps:\n      - run: exit 7\n  b:\n    needs: a\n    steps:\n      - run: echo b\n")

    result = _invoke("run", "--workflow", str(path), "--ref", "refs/heads/main", "--workdir", str(tmp_path))

    assert result.exit_code == 1
    assert "a: FAILED (step failed)" in result.output
    assert "b: SKIPPED (dependency failed)" in result.output
    assert "RUN: FAILED" in result.output


def test_run_not_triggered_exits_zero(tmp_path):
    path = tmp_path / "flowci.yml"
    path.write_text("on: pull_request\njobs:\n  a:\n    steps:\n      - run: exit 1\n")

    result = _invoke("run", "--workflow", str(path), "--ref", "refs/heads/main", "--workdir", str(tmp_path))

    assert result.exit_code == 0, result.output
    assert "RUN:" not in result.output


def test_invalid_pipeline_runs_nothing(tmp_path):
    path = tmp_path / "flowci.yml"
    marker = tmp_path / "ran"
    path.write_text(
        f"jobs:\n  a:\n    needs: b\n    steps:\n      - run: touch {marker}\n"
        f"  b:\n    needs: a\n    steps:\n      - run: touch {marker}\n"
    )

    result = _invoke("run", "--workflow", str(path), "--ref", "refs/heads/main", "--workdir", str(tmp_path))

    assert result.exit_code == 1
    assert "Invalid pipeline" in result.output
    assert not marker.exists()


def test_plan_lists_stages_and_gates(workflow):
    result = _invoke("plan", "--workflow", str(workflow), "--ref", "refs/heads/main")

    assert result.exit_code == 0, result.output
    assert "4 job instances" in result.output
    assert "test (py=3.11)" in result.output
    assert "condition false" in result.output


def test_validate(workflow):
    result = _invoke("validate", "--workflow", str(workflow))

    assert result.exit_code == 0, result.output
    assert "OK: demo (3 jobs, triggers: push, pull_request)" in result.output


def test_unknown_event_kind_is_rejected(workflow):
    result = _invoke("plan", "--workflow", str(workflow), "--event", "schedule", "--ref", "refs/heads/main")
    assert result.exit_code == 2
