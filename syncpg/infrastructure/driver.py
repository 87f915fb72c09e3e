"""
Coroutines driving a psycopg `AsyncConnection`.

Everything here is asynchronous and knows nothing about the blocking facade:
the facade builds these coroutines and hands them to its runtime. The
connection is opened in autocommit mode with `AsyncRawCursor` as cursor
factory, so SQL strings use PostgreSQL's native ``$n`` placeholders and
transactions are controlled with explicit SQL.

Prepared statements are executed with ``EXECUTE name(...)`` through an
`AsyncClientCursor`, which renders the arguments as literals the server then
coerces to the statement's declared parameter types.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, List, Optional, Sequence, Tuple

import psycopg
from psycopg import AsyncClientCursor, AsyncConnection, pq, sql

from syncpg.domain.messages import CommandComplete, SimpleQueryMessage, SimpleQueryRow
from syncpg.statement import Query, Statement

Row = Tuple[Any, ...]


class CopyAbandoned(Exception):
    """Reason reported to the server when a COPY is aborted by the client."""


def _execute_statement_sql(stmt: Statement) -> sql.Composable:
    if not stmt.params:
        return sql.SQL("EXECUTE {}").format(sql.Identifier(stmt.name))
    return sql.SQL("EXECUTE {}({})").format(
        sql.Identifier(stmt.name),
        sql.SQL(", ").join([sql.Placeholder()] * len(stmt.params)),
    )


def _cursor(conn: AsyncConnection, query: Query, params: Sequence[Any]) -> Tuple[Any, Any, Optional[Sequence[Any]]]:
    """Pick the cursor and the wire form for ``query``."""
    if isinstance(query, Statement):
        return AsyncClientCursor(conn), _execute_statement_sql(query), list(params)
    return conn.cursor(), query, list(params) if params else None


async def execute(conn: AsyncConnection, query: Query, params: Sequence[Any] = ()) -> int:
    cur, wire, args = _cursor(conn, query, params)
    async with cur:
        await cur.execute(wire, args)
        return max(cur.rowcount, 0)


async def fetch_all(conn: AsyncConnection, query: Query, params: Sequence[Any] = ()) -> List[Row]:
    cur, wire, args = _cursor(conn, query, params)
    async with cur:
        await cur.execute(wire, args)
        if cur.pgresult is None or cur.pgresult.status != pq.ExecStatus.TUPLES_OK:
            return []
        return await cur.fetchall()


def stream(conn: AsyncConnection, query: Query, params: Sequence[Any] = ()) -> AsyncIterator[Row]:
    """
    Return an async iterator yielding rows one at a time.

    Nothing is sent until the first row is requested. Closing the iterator
    (``aclose()``) before exhaustion cancels the query and drains the
    connection.
    """
    cur, wire, args = _cursor(conn, query, params)
    return cur.stream(wire, args)


async def prepare(
    conn: AsyncConnection, name: str, query: str, types: Sequence[str] = ()
) -> Statement:
    """``PREPARE`` ``query`` under ``name`` and describe the result."""
    head = sql.SQL("PREPARE {} ").format(sql.Identifier(name))
    if types:
        head = head + sql.SQL("({}) ").format(sql.SQL(", ").join(sql.SQL(t) for t in types))
    prepare_sql = sql.Composed([head, sql.SQL("AS "), sql.SQL(query)])

    describe = "SELECT parameter_types::text[]"
    if conn.info.server_version >= 160000:
        describe += ", result_types::text[]"
    describe += " FROM pg_prepared_statements WHERE name = $1"

    async with conn.cursor() as cur:
        await cur.execute(prepare_sql)
        await cur.execute(describe, [name])
        row = await cur.fetchone()
    if row is None:
        raise psycopg.InterfaceError(f"prepared statement {name!r} was not found after PREPARE")
    params = row[0] or []
    columns = row[1] if len(row) > 1 and row[1] is not None else None
    return Statement(name, query, params, columns)


def _decode(value: Optional[bytes], encoding: str) -> Optional[str]:
    return None if value is None else value.decode(encoding)


async def simple_query(conn: AsyncConnection, query: str) -> List[SimpleQueryMessage]:
    """
    Run ``query`` over the simple protocol.

    Values are returned as the text the server sent, without type
    conversion.
    """
    encoding = conn.info.encoding
    messages: List[SimpleQueryMessage] = []
    async with conn.cursor() as cur:
        await cur.execute(query)
        async for result in cur.results():
            res = result.pgresult
            if res is None or res.status == pq.ExecStatus.EMPTY_QUERY:
                continue
            if res.status == pq.ExecStatus.TUPLES_OK:
                columns = tuple(_decode(res.fname(i), encoding) or "" for i in range(res.nfields))
                for r in range(res.ntuples):
                    values = tuple(_decode(res.get_value(r, c), encoding) for c in range(res.nfields))
                    messages.append(SimpleQueryRow(columns=columns, values=values))
            messages.append(CommandComplete(rows=max(result.rowcount, 0), tag=result.statusmessage))
    return messages


async def batch_execute(conn: AsyncConnection, query: str) -> None:
    async with conn.cursor() as cur:
        await cur.execute(query)


class CopySession:
    """
    A COPY kept open across several blocking calls.

    psycopg only offers COPY as an async context manager; the exit stack keeps
    that context open until `finish` or `abort` closes it. The cursor lives
    outside the stack: closing it resets ``rowcount``, which is only set once
    the COPY context has exited.
    """

    def __init__(self, cursor: Any, copy: Any, stack: AsyncExitStack) -> None:
        self._cursor = cursor
        self._copy = copy
        self._stack = stack
        self.done = False

    @classmethod
    async def start(cls, conn: AsyncConnection, statement: Query) -> "CopySession":
        text = statement.query if isinstance(statement, Statement) else statement
        cur = conn.cursor()
        stack = AsyncExitStack()
        try:
            copy = await stack.enter_async_context(cur.copy(text))
        except BaseException:
            await cur.close()
            raise
        return cls(cur, copy, stack)

    async def write(self, data: bytes) -> None:
        await self._copy.write(data)

    async def read(self) -> bytes:
        return bytes(await self._copy.read())

    async def finish(self) -> int:
        """Complete the COPY and return the row count the server reported."""
        self.done = True
        try:
            await self._stack.aclose()
            return max(self._cursor.rowcount, 0)
        finally:
            await self._cursor.close()

    async def abort(self, reason: str = "COPY abandoned by the client") -> None:
        """Fail a COPY FROM (CopyFail) or cancel a COPY TO and drain it."""
        if self.done:
            return
        self.done = True
        exc = CopyAbandoned(reason)
        try:
            await self._stack.__aexit__(CopyAbandoned, exc, None)
        finally:
            await self._cursor.close()


async def close(conn: AsyncConnection) -> None:
    await conn.close()


__all__ = [
    "CopyAbandoned",
    "CopySession",
    "Row",
    "batch_execute",
    "close",
    "execute",
    "fetch_all",
    "prepare",
    "simple_query",
    "stream",
]
