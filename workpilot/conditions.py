"""Branching conditions of the form ``<path> <operator> <literal>``.

Conditions are tokenized into a small AST before evaluation. Anything that
does not tokenize to exactly one path, one operator and one literal is
rejected with ``ConditionParseError``; a literal containing whitespace must be
quoted::

    steps.0.output.score > 80
    steps.1.output.recommendation == "needs review"
    resume_data.approved == true
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from .context import ChainContext
from .errors import ConditionParseError

logger = logging.getLogger(__name__)

OPERATORS = ("==", "!=", ">", "<", ">=", "<=", "contains", "not_contains")
WORD_OPERATORS = frozenset({"contains", "not_contains"})
NUMERIC_OPERATORS = frozenset({">", "<", ">=", "<="})

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<symbol>==|!=|>=|<=|>|<)
  | (?P<word>[^\s"'<>=!]+)
    """,
    re.VERBOSE,
)
_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_MISSING = object()


@dataclass(frozen=True)
class Token:
    kind: str  # word, string, symbol
    text: str
    position: int


@dataclass(frozen=True)
class Condition:
    """Parsed condition."""

    path: Tuple[str, ...]
    operator: str
    literal: str

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path)


def tokenize(condition: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    while position < len(condition):
        match = _TOKEN_RE.match(condition, position)
        if match is None:
            raise ConditionParseError(
                condition, f"unexpected character at position {position}"
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind=kind, text=match.group(kind), position=position))
        position = match.end()
    return tokens


def _unquote(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text[1:-1])


def _is_operator(token: Token) -> bool:
    return token.kind == "symbol" or (
        token.kind == "word" and token.text in WORD_OPERATORS
    )


@lru_cache(maxsize=512)
def parse_condition(condition: str) -> Condition:
    """Parse ``condition`` into a ``Condition`` or raise ``ConditionParseError``."""
    tokens = tokenize(condition)
    if len(tokens) != 3:
        raise ConditionParseError(
            condition,
            f"expected '<path> <operator> <literal>', got {len(tokens)} token(s)",
        )
    path_token, op_token, literal_token = tokens

    if path_token.kind != "word" or _is_operator(path_token):
        raise ConditionParseError(condition, "condition must start with a path")
    segments = tuple(path_token.text.split("."))
    if any(segment == "" for segment in segments):
        raise ConditionParseError(condition, f"empty segment in path {path_token.text!r}")

    if not _is_operator(op_token):
        raise ConditionParseError(condition, f"unknown operator {op_token.text!r}")

    if literal_token.kind == "string":
        literal = _unquote(literal_token.text)
    elif literal_token.kind == "word" and not _is_operator(literal_token):
        literal = literal_token.text
    else:
        raise ConditionParseError(
            condition, f"ambiguous literal {literal_token.text!r}; quote it"
        )
    return Condition(path=segments, operator=op_token.text, literal=literal)


def resolve_path(data: Any, path: Sequence[str]) -> Any:
    """Walk ``path`` into nested mappings/lists; returns ``_MISSING`` on a miss."""
    for segment in path:
        if isinstance(data, Mapping):
            if segment in data:
                data = data[segment]
            elif segment.isdecimal() and int(segment) in data:
                data = data[int(segment)]
            else:
                return _MISSING
        elif isinstance(data, (list, tuple)) and segment.isdecimal():
            index = int(segment)
            if index >= len(data):
                return _MISSING
            data = data[index]
        else:
            return _MISSING
    return data


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value):
        return float(value)
    return None


def compare(actual: Any, operator: str, expected: str) -> bool:
    if operator == "==":
        return _stringify(actual) == expected
    if operator == "!=":
        return _stringify(actual) != expected
    if operator in NUMERIC_OPERATORS:
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        if operator == ">":
            return left > right
        if operator == "<":
            return left < right
        if operator == ">=":
            return left >= right
        return left <= right
    if operator == "contains":
        return isinstance(actual, str) and expected in actual
    if operator == "not_contains":
        return isinstance(actual, str) and expected not in actual
    return False


class ConditionEvaluator:
    """Evaluate conditions against a ``ChainContext`` snapshot.

    ``evaluate`` never raises: unparseable conditions and unresolvable paths
    both evaluate to ``False``.
    """

    def evaluate(
        self, condition: Union[str, Condition], context: ChainContext
    ) -> bool:
        if isinstance(condition, str):
            try:
                condition = parse_condition(condition)
            except ConditionParseError as exc:
                logger.warning(
                    f"Condition evaluated as false: {exc.reason}",
                    extra={"condition": exc.condition},
                )
                return False

        actual = resolve_path(context.to_dict(), condition.path)
        if actual is _MISSING or actual is None:
            logger.debug(f"Condition path {condition.dotted_path} not found in context")
            return False
        return compare(actual, condition.operator, condition.literal)
