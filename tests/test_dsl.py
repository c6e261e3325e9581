from pathlib import Path

import pytest

import flowci
import flowci.controller  # noqa: F401  (pulls in every submodule)
from flowci import build, job, matrix, pipeline, ref_startswith, sh
from flowci.errors import DefinitionError
from flowci.loader import load_workflow
from flowci.trigger import DEFAULT_TRIGGERS


def test_builder_produces_the_same_job_as_the_function_form():
    gate = ref_startswith("refs/tags/")
    built = (
        build("publish")
        .depends_on("test")
        .define_step("Publish", "cargo publish")
        .with_env(CARGO_TERM_COLOR="always")
        .with_secrets(TOKEN="CRATES_TOKEN")
        .when(gate)
        .build()
    )

    plain = job(
        "publish",
        sh("Publish", "cargo publish"),
        needs=["test"],
        env={"CARGO_TERM_COLOR": "always"},
        secrets={"TOKEN": "CRATES_TOKEN"},
        condition=gate,
    )

    assert built == plain
    assert built.secrets_map == {"TOKEN": "CRATES_TOKEN"}


def test_builder_matrix_axes_accumulate():
    j = build("test").define_step("t", "t").with_matrix("os", ["linux"]).with_matrix("py", ["3.12"]).build()
    assert j.matrix.names == ["os", "py"]


def test_job_cwd_is_a_default_for_its_steps():
    j = job("j", sh("a", "a"), sh("b", "b", cwd="other"), cwd="sub")
    assert [s.cwd for s in j.steps] == ["sub", "other"]


def test_jobs_need_steps():
    with pytest.raises(DefinitionError):
        job("empty")
    with pytest.raises(DefinitionError):
        build("empty").build()


def test_axis_declared_twice():
    with pytest.raises(DefinitionError):
        matrix("py", ["3.11"]).axis("py", ["3.12"])


def test_pipeline_defaults_to_push_and_pull_request():
    p = pipeline("p", job("a", sh("a", "a")))
    assert p.triggers == DEFAULT_TRIGGERS
    assert p.env == ()


def test_matrix_helper_survives_importing_the_whole_package():
    assert callable(flowci.matrix)
    assert flowci.matrix("py", ["3.12"]).spec().names == ["py"]


def test_project_workflow_file_loads():
    p = load_workflow(Path(__file__).resolve().parents[1] / "flowci_workflow.py")

    assert [j.name for j in p.jobs] == ["codestyle", "lint", "test", "publish"]
    assert p.job("test").matrix.names == ["python"]
