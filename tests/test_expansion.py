import pytest

from flowci import job, matrix, sh
from flowci.errors import DefinitionError
from flowci.expansion import expand, substitute


def test_two_axes_expand_in_declared_lexicographic_order():
    j = job("t", sh("s", "run"), matrix=matrix("A", ["x", "y"]).axis("B", [1, 2]))

    instances = expand(j)

    assert [i.params for i in instances] == [
        (("A", "x"), ("B", 1)),
        (("A", "x"), ("B", 2)),
        (("A", "y"), ("B", 1)),
        (("A", "y"), ("B", 2)),
    ]
    assert len({i.identity for i in instances}) == 4


def test_expansion_is_stable_across_calls():
    j = job("t", sh("s", "run"), matrix={"os": ["linux", "mac"], "py": ["3.11", "3.12"]})
    assert [i.identity for i in expand(j)] == [i.identity for i in expand(j)]


def test_empty_axis_is_an_empty_fan_out_not_an_error():
    j = job("t", sh("s", "run"), matrix=matrix("A", ["x", "y"]).axis("B", []))
    assert expand(j) == []


def test_job_without_matrix_expands_to_itself():
    j = job("lint", sh("s", "ruff check ."))

    (only,) = expand(j)

    assert only.params == ()
    assert only.name == "lint"
    assert only.identity == ("lint", ())


def test_placeholders_are_bound_per_instance():
    j = job(
        "test",
        sh("Test on ${{ matrix.rust }}", "cargo +${{matrix.rust}} test", env={"TOOLCHAIN": "${{ matrix.rust }}"}),
        matrix=matrix("rust", ["stable", "nightly"]),
        env={"CHANNEL": "${{ matrix.rust }}"},
    )

    stable, nightly = expand(j)

    assert stable.name == "test (rust=stable)"
    assert stable.steps[0].run == "cargo +stable test"
    assert stable.steps[0].name == "Test on stable"
    assert stable.steps[0].env_map == {"TOOLCHAIN": "stable"}
    assert dict(nightly.env) == {"CHANNEL": "nightly"}
    # the template itself is untouched
    assert j.steps[0].run == "cargo +${{matrix.rust}} test"


def test_unknown_axis_reference_is_a_definition_error():
    with pytest.raises(DefinitionError):
        substitute("echo ${{ matrix.os }}", {"rust": "stable"}, job="t")
