"""
Messages returned by the simple query protocol.

`simple_query` yields, for each statement in the query string, one
`SimpleQueryRow` per returned row followed by a `CommandComplete` carrying the
statement's row count. Values stay in the text form the server sent them in.
"""
from __future__ import annotations

from typing import Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator


class SimpleQueryRow(BaseModel):
    """
    One row of a simple-protocol result, values as text (``None`` for NULL).
    """

    columns: Tuple[str, ...] = Field(..., description="Column names, in order.")
    values: Tuple[Optional[str], ...] = Field(..., description="Text values, in column order.")

    model_config = {
        "frozen": True,
    }

    @model_validator(mode="after")
    def _same_width(self) -> "SimpleQueryRow":
        if len(self.columns) != len(self.values):
            raise ValueError("columns and values differ in length")
        return self

    def get(self, key: Union[int, str]) -> Optional[str]:
        """Return a value by position or column name."""
        if isinstance(key, str):
            try:
                key = self.columns.index(key)
            except ValueError:
                raise KeyError(key) from None
        return self.values[key]

    def __len__(self) -> int:
        return len(self.values)


class CommandComplete(BaseModel):
    """End of one statement's results."""

    rows: int = Field(0, description="Rows affected or returned; 0 when not reported.")
    tag: Optional[str] = Field(None, description="Command tag sent by the server, e.g. 'INSERT 0 3'.")

    model_config = {
        "frozen": True,
    }


SimpleQueryMessage = Union[SimpleQueryRow, CommandComplete]


__all__ = ["CommandComplete", "SimpleQueryMessage", "SimpleQueryRow"]
