# conditions.py
"""
Per-job gates.

A condition is either a Python callable taking a RunContext, or an
expression string in a small subset of the GitHub Actions expression
language:

    startsWith(github.ref, 'refs/tags/v0')
    github.event_name == 'push' && !contains(github.ref, 'wip')
    ${{ matrix.rust == 'stable' }}

Only pre-run context is visible (github.*, matrix.*). Anything that depends
on another job's outcome (success(), needs.*, steps.*) is rejected at parse
time. String comparisons and the string functions are case-insensitive, as
on the hosting side.
"""
from __future__ import annotations

import re
from fnmatch import fnmatch
from functools import lru_cache
from typing import Any, Callable, Iterable, List, Optional, Tuple

from .errors import DefinitionError
from .model import Condition, JobInstance, RunContext

Evaluator = Callable[[RunContext], Any]

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^']|'')*')
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op>&&|\|\||==|!=|!|\(|\)|,)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)*)
    )
    """,
    re.VERBOSE,
)

_WRAPPED_RE = re.compile(r"^\s*\$\{\{(?P<body>.*)\}\}\s*$", re.DOTALL)

_OUTCOME_FUNCTIONS = {"success", "failure", "always", "cancelled"}


def _lower(v: Any) -> Any:
    return v.lower() if isinstance(v, str) else v


def _str(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _starts_with(a: Any, b: Any) -> bool:
    return _str(a).lower().startswith(_str(b).lower())


def _ends_with(a: Any, b: Any) -> bool:
    return _str(a).lower().endswith(_str(b).lower())


def _contains(a: Any, b: Any) -> bool:
    if isinstance(a, (list, tuple)):
        return any(_lower(_str(x)) == _str(b).lower() for x in a)
    return _str(b).lower() in _str(a).lower()


_FUNCTIONS = {
    "startswith": (_starts_with, 2),
    "endswith": (_ends_with, 2),
    "contains": (_contains, 2),
}


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise DefinitionError(f"Invalid condition {text!r}: unexpected input at offset {pos}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    """Recursive descent: or -> and -> not -> comparison -> primary."""

    def __init__(self, text: str, axes: Optional[Iterable[str]]):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0
        self.axes = set(axes) if axes is not None else None

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise self._error("unexpected end of expression")
        self.pos += 1
        return tok

    def _accept(self, op: str) -> bool:
        tok = self._peek()
        if tok == ("op", op):
            self.pos += 1
            return True
        return False

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            raise self._error(f"expected '{op}'")

    def _error(self, msg: str) -> DefinitionError:
        return DefinitionError(f"Invalid condition {self.text!r}: {msg}")

    def parse(self) -> Evaluator:
        if not self.tokens:
            raise self._error("empty expression")
        node = self._or()
        if self._peek() is not None:
            raise self._error(f"unexpected token {self._peek()[1]!r}")
        return node

    def _or(self) -> Evaluator:
        left = self._and()
        while self._accept("||"):
            right = self._and()
            left = (lambda l, r: lambda ctx: l(ctx) or r(ctx))(left, right)
        return left

    def _and(self) -> Evaluator:
        left = self._not()
        while self._accept("&&"):
            right = self._not()
            left = (lambda l, r: lambda ctx: l(ctx) and r(ctx))(left, right)
        return left

    def _not(self) -> Evaluator:
        if self._accept("!"):
            inner = self._not()
            return lambda ctx: not truthy(inner(ctx))
        return self._comparison()

    def _comparison(self) -> Evaluator:
        left = self._primary()
        for op in ("==", "!="):
            if self._accept(op):
                right = self._primary()
                if op == "==":
                    return lambda ctx: _lower(left(ctx)) == _lower(right(ctx))
                return lambda ctx: _lower(left(ctx)) != _lower(right(ctx))
        return left

    def _primary(self) -> Evaluator:
        kind, value = self._take()
        if kind == "string":
            lit = value[1:-1].replace("''", "'")
            return lambda ctx: lit
        if kind == "number":
            num = float(value) if "." in value else int(value)
            return lambda ctx: num
        if kind == "op":
            if value == "(":
                inner = self._or()
                self._expect(")")
                return inner
            raise self._error(f"unexpected {value!r}")

        # identifiers: literals, function calls, context paths
        if value in ("true", "false"):
            lit_b = value == "true"
            return lambda ctx: lit_b
        if value == "null":
            return lambda ctx: None
        if self._accept("("):
            return self._call(value)
        return self._context_ref(value)

    def _call(self, name: str) -> Evaluator:
        key = name.lower()
        if key in _OUTCOME_FUNCTIONS:
            raise self._error(
                f"{name}() depends on job outcomes; gates only see pre-run context"
            )
        if key not in _FUNCTIONS:
            raise self._error(f"unknown function {name}()")
        fn, arity = _FUNCTIONS[key]

        args: List[Evaluator] = []
        if not self._accept(")"):
            args.append(self._or())
            while self._accept(","):
                args.append(self._or())
            self._expect(")")
        if len(args) != arity:
            raise self._error(f"{name}() takes {arity} arguments, got {len(args)}")
        return lambda ctx: fn(*(a(ctx) for a in args))

    def _context_ref(self, path: str) -> Evaluator:
        root, _, rest = path.partition(".")
        if root == "github":
            if rest == "ref":
                return lambda ctx: ctx.ref
            if rest == "ref_name":
                return lambda ctx: ctx.ref_name
            if rest == "event_name":
                return lambda ctx: ctx.event_name
            raise self._error(f"unknown context value {path!r}")
        if root == "matrix":
            if not rest or "." in rest:
                raise self._error(f"invalid matrix reference {path!r}")
            if self.axes is not None and rest not in self.axes:
                raise self._error(f"matrix axis {rest!r} is not declared")
            return lambda ctx: ctx.matrix_map.get(rest)
        raise self._error(f"context {root!r} is not available before jobs run")


def truthy(v: Any) -> bool:
    if v is None or v is False:
        return False
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return v != 0
    if isinstance(v, str):
        return v != ""
    return True


@lru_cache(maxsize=256)
def _compile_cached(text: str, axes: Optional[Tuple[str, ...]]) -> Evaluator:
    m = _WRAPPED_RE.match(text)
    body = m.group("body") if m else text
    return _Parser(body, axes).parse()


def compile_condition(text: str, axes: Optional[Iterable[str]] = None) -> Evaluator:
    """
    Parse an expression into an evaluator. Raises DefinitionError on bad syntax,
    outcome-dependent functions, unknown contexts, or undeclared matrix axes
    (only checked when `axes` is given).
    """
    return _compile_cached(text, tuple(axes) if axes is not None else None)


def evaluate(condition: Optional[Condition], context: RunContext) -> bool:
    """Gate check: True means the job instance may be scheduled."""
    if condition is None:
        return True
    if callable(condition):
        return bool(condition(context))
    return truthy(compile_condition(condition)(context))


def gate_open(instance: JobInstance, event_name: str, ref: str) -> bool:
    """
    Evaluate an instance's gate against the triggering event. A gate that
    raises is a broken definition, reported as DefinitionError.
    """
    ctx = RunContext(event_name=event_name, ref=ref, matrix=instance.params)
    try:
        return evaluate(instance.job.condition, ctx)
    except DefinitionError:
        raise
    except Exception as e:
        raise DefinitionError(
            f"Condition of job '{instance.name}' raised {type(e).__name__}: {e}"
        ) from e


# ---------------------------------------------------------------------
# DSL helpers for Python workflow files
# ---------------------------------------------------------------------

def ref_startswith(prefix: str) -> Callable[[RunContext], bool]:
    """Gate: the triggering ref starts with a literal prefix (e.g. 'refs/tags/v0')."""
    def _gate(ctx: RunContext) -> bool:
        return ctx.ref.startswith(prefix)
    _gate.__name__ = f"ref_startswith({prefix!r})"
    return _gate


def ref_matches(pattern: str) -> Callable[[RunContext], bool]:
    def _gate(ctx: RunContext) -> bool:
        return fnmatch(ctx.ref, pattern)
    _gate.__name__ = f"ref_matches({pattern!r})"
    return _gate


def event_is(*kinds: str) -> Callable[[RunContext], bool]:
    def _gate(ctx: RunContext) -> bool:
        return ctx.event_name in kinds
    _gate.__name__ = f"event_is{kinds!r}"
    return _gate


def describe(condition: Optional[Condition]) -> str:
    if condition is None:
        return ""
    if callable(condition):
        return getattr(condition, "__name__", repr(condition))
    return condition
