"""
Prepared statements and parameter-count checking.

A `Statement` names a server-side prepared statement created with SQL
``PREPARE``. It records the parameter types the server settled on and, on
PostgreSQL 16 and later, the result column types.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Sequence, Tuple, Union

# Literals, quoted identifiers, comments and dollar-quoted bodies may contain
# "$n" text that is not a placeholder; they are matched first and skipped.
_PLACEHOLDER_RE = re.compile(
    r"""
    (?P<skip>
        [Ee]'(?:[^'\\]|\\.|'')*'
      | '(?:[^']|'')*'
      | "(?:[^"]|"")*"
      | --[^\n]*
      | /\*.*?\*/
      | \$(?P<tag>[A-Za-z_][A-Za-z_0-9]*|)\$.*?\$(?P=tag)\$
    )
    | (?<![\w$])\$(?P<num>[0-9]+)
    """,
    re.VERBOSE | re.DOTALL,
)

_TYPE_NAME_RE = re.compile(
    r"""^(?:"[^"]+"|[A-Za-z_][\w$]*)(?:\.(?:"[^"]+"|[A-Za-z_][\w$]*))?"""
    r"""(?:\ [A-Za-z_]+)*(?:\(\s*\d+(?:\s*,\s*\d+)?\s*\))?(?:\[\d*\])*$"""
)


def count_placeholders(query: str) -> int:
    """Return the highest ``$n`` placeholder number used in ``query``."""
    highest = 0
    for match in _PLACEHOLDER_RE.finditer(query):
        num = match.group("num")
        if num is not None:
            highest = max(highest, int(num))
    return highest


def check_type_name(name: str) -> str:
    """Validate a type name passed to ``prepare_typed``."""
    name = name.strip()
    if not _TYPE_NAME_RE.match(name):
        raise ValueError(f"invalid type name: {name!r}")
    return name


class Statement:
    """
    A prepared statement owned by the caller.

    Valid while the connection that prepared it stays open; executing it on
    another connection fails server-side.

    Attributes
    ----------
    name : str
        Server-side statement name.
    query : str
        SQL text the statement was prepared from.
    params : tuple of str
        Parameter type names, one per placeholder.
    columns : tuple of str, optional
        Result column type names, when the server reports them.
    """

    __slots__ = ("name", "query", "params", "columns")

    def __init__(
        self,
        name: str,
        query: str,
        params: Sequence[str],
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        self.name = name
        self.query = query
        self.params: Tuple[str, ...] = tuple(params)
        self.columns: Optional[Tuple[str, ...]] = tuple(columns) if columns is not None else None

    def __repr__(self) -> str:
        return f"<Statement {self.name} params={list(self.params)}>"


Query = Union[str, Statement]


def expected_params(query: Query) -> int:
    if isinstance(query, Statement):
        return len(query.params)
    return count_placeholders(query)


def check_params(query: Query, params: Sequence[Any]) -> None:
    """
    Raise `TypeError` when ``params`` does not match the placeholders.

    Checked before anything is sent, so the connection is left untouched.
    """
    expected = expected_params(query)
    if len(params) != expected:
        raise TypeError(f"expected {expected} parameters but got {len(params)}")


__all__ = [
    "Query",
    "Statement",
    "check_params",
    "check_type_name",
    "count_placeholders",
    "expected_params",
]
