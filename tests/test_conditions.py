import pytest

from flowci import conditions
from flowci.conditions import compile_condition, evaluate, event_is, ref_matches, ref_startswith
from flowci.errors import DefinitionError
from flowci.model import RunContext

MAIN = RunContext(event_name="push", ref="refs/heads/main")
TAG = RunContext(event_name="push", ref="refs/tags/v0.3.1")


def test_no_condition_always_passes():
    assert evaluate(None, MAIN) is True


@pytest.mark.parametrize(
    "expr, ctx, expected",
    [
        ("startsWith(github.ref, 'refs/tags/v0')", TAG, True),
        ("startsWith(github.ref, 'refs/tags/v0')", MAIN, False),
        ("${{ startsWith(github.ref, 'refs/tags/v0') }}", TAG, True),
        ("github.event_name == 'push' && endsWith(github.ref, 'main')", MAIN, True),
        ("github.event_name == 'pull_request' || contains(github.ref, 'v0.3')", TAG, True),
        ("!contains(github.ref, 'tags')", MAIN, True),
        ("!(github.ref_name == 'main')", MAIN, False),
        ("github.ref_name == 'v0.3.1'", TAG, True),
        ("github.ref == 'REFS/HEADS/MAIN'", MAIN, True),
        ("true", MAIN, True),
        ("false || null", MAIN, False),
    ],
)
def test_expressions(expr, ctx, expected):
    assert evaluate(expr, ctx) is expected


def test_matrix_values_are_visible_to_gates():
    ctx = RunContext(event_name="push", ref="refs/heads/main", matrix=(("rust", "nightly"),))
    assert evaluate("matrix.rust == 'nightly'", ctx) is True
    assert evaluate("matrix.rust != 'nightly'", ctx) is False


def test_escaped_quote_in_literal():
    ctx = RunContext(event_name="push", ref="refs/heads/it's")
    assert evaluate("endsWith(github.ref, 'it''s')", ctx) is True


@pytest.mark.parametrize(
    "expr",
    [
        "startsWith(github.ref",
        "github.ref ==",
        "github.ref 'x'",
        "",
        "startsWith(github.ref)",
        "unknownFn(github.ref)",
        "github.sha == 'abc'",
        "a & b",
    ],
)
def test_malformed_expressions_are_definition_errors(expr):
    with pytest.raises(DefinitionError):
        compile_condition(expr)


@pytest.mark.parametrize("expr", ["success()", "always() && true", "needs.test.result == 'success'", "steps.x.outcome"])
def test_outcome_dependent_expressions_are_rejected(expr):
    with pytest.raises(DefinitionError):
        compile_condition(expr)


def test_undeclared_matrix_axis_rejected_when_axes_known():
    with pytest.raises(DefinitionError):
        compile_condition("matrix.os == 'linux'", axes=["rust"])
    compile_condition("matrix.rust == 'stable'", axes=["rust"])


def test_callable_helpers():
    assert evaluate(ref_startswith("refs/tags/v0"), TAG) is True
    assert evaluate(ref_startswith("refs/tags/v0"), MAIN) is False
    assert evaluate(ref_matches("refs/tags/v*.*.*"), TAG) is True
    assert evaluate(event_is("pull_request"), MAIN) is False


def test_describe_names_the_gate():
    assert conditions.describe(ref_startswith("refs/tags/v0")) == "ref_startswith('refs/tags/v0')"
    assert conditions.describe("github.ref == 'x'") == "github.ref == 'x'"
    assert conditions.describe(None) == ""
