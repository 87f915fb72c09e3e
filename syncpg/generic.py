"""
The query surface shared by clients and transactions.

`GenericClient` is the structural interface; `AbstractGenericClient`
implements every operation once on top of three primitives its subclasses
provide: run a coroutine on behalf of the current holder, stack a new lease
on top of that holder, and reach the session's connection. `Client` drives
the runtime directly; `Transaction` drives it through its lease.
"""

from __future__ import annotations

import abc
from typing import (
    TYPE_CHECKING,
    Any,
    Coroutine,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

from psycopg import AsyncConnection

from syncpg.domain.messages import SimpleQueryMessage
from syncpg.errors import UnexpectedRowCount
from syncpg.infrastructure import driver
from syncpg.infrastructure.driver import CopySession, Row
from syncpg.infrastructure.runtime import Lease, Remediation
from syncpg.statement import Query, Statement, check_params, check_type_name
from syncpg.streams import CopyInWriter, CopyOutReader, RowIter
from syncpg.utils.logging import get_logger

if TYPE_CHECKING:
    from syncpg.transaction import Transaction

log = get_logger(__name__)

T = TypeVar("T")


@runtime_checkable
class GenericClient(Protocol):
    """Operations available on both `Client` and `Transaction`."""

    def execute(self, query: Query, params: Sequence[Any] = ()) -> int: ...

    def query(self, query: Query, params: Sequence[Any] = ()) -> List[Row]: ...

    def query_one(self, query: Query, params: Sequence[Any] = ()) -> Row: ...

    def query_opt(self, query: Query, params: Sequence[Any] = ()) -> Optional[Row]: ...

    def query_raw(self, query: Query, params: Sequence[Any] = ()) -> RowIter: ...

    def prepare(self, query: str) -> Statement: ...

    def prepare_typed(self, query: str, types: Sequence[str]) -> Statement: ...

    def copy_in(self, statement: Query) -> CopyInWriter: ...

    def copy_out(self, statement: Query) -> CopyOutReader: ...

    def simple_query(self, query: str) -> List[SimpleQueryMessage]: ...

    def batch_execute(self, query: str) -> None: ...

    def transaction(self) -> "Transaction": ...


class AbstractGenericClient(abc.ABC):
    """
    Implements `GenericClient` on top of a runtime holder.

    Every call blocks until the server has answered and returns the result or
    raises the driver's error unchanged. Parameter-count mismatches raise
    `TypeError` before anything is sent.
    """

    @abc.abstractmethod
    def _block_on(self, coro: Coroutine[Any, Any, T]) -> T:  # pragma: no cover - interface only
        """Run ``coro`` as the current runtime holder."""
        raise NotImplementedError

    @abc.abstractmethod
    def _lease(self, name: str, remediation: Optional[Remediation] = None) -> Lease:  # pragma: no cover
        """Stack a lease on top of the current holder."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def _connection(self) -> AsyncConnection:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def _next_statement_name(self) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    # -- queries ---------------------------------------------------------

    def execute(self, query: Query, params: Sequence[Any] = ()) -> int:
        """
        Execute a statement and return the number of rows it affected.

        Commands that report no row count return 0.
        """
        check_params(query, params)
        return self._block_on(driver.execute(self._connection, query, params))

    def query(self, query: Query, params: Sequence[Any] = ()) -> List[Row]:
        """Execute a statement and return every resulting row."""
        check_params(query, params)
        return self._block_on(driver.fetch_all(self._connection, query, params))

    def query_one(self, query: Query, params: Sequence[Any] = ()) -> Row:
        """
        Execute a statement that must return exactly one row.

        Raises
        ------
        UnexpectedRowCount
            If zero rows or more than one row come back.
        """
        rows = self.query(query, params)
        if len(rows) != 1:
            raise UnexpectedRowCount(f"query returned {len(rows)} rows, expected exactly one")
        return rows[0]

    def query_opt(self, query: Query, params: Sequence[Any] = ()) -> Optional[Row]:
        """
        Execute a statement returning at most one row; ``None`` if there is none.

        Raises
        ------
        UnexpectedRowCount
            If more than one row comes back.
        """
        rows = self.query(query, params)
        if len(rows) > 1:
            raise UnexpectedRowCount(f"query returned {len(rows)} rows, expected at most one")
        return rows[0] if rows else None

    def query_raw(self, query: Query, params: Sequence[Any] = ()) -> RowIter:
        """
        Execute a statement and return an iterator over its rows.

        Rows are fetched one at a time as the iterator advances. The iterator
        holds the connection until it is exhausted or closed; closing it early
        cancels the rest of the query.
        """
        check_params(query, params)
        rows = driver.stream(self._connection, query, params)
        lease = self._lease("RowIter", rows.aclose)  # type: ignore[attr-defined]
        return RowIter.start(lease, rows)

    # -- prepared statements ---------------------------------------------

    def prepare(self, query: str) -> Statement:
        """Prepare ``query`` on the server, letting it infer parameter types."""
        return self.prepare_typed(query, ())

    def prepare_typed(self, query: str, types: Sequence[str]) -> Statement:
        """
        Prepare ``query`` with explicit parameter type names.

        ``types`` may be shorter than the number of placeholders; the server
        infers the rest.
        """
        names = [check_type_name(t) for t in types]
        name = self._next_statement_name()
        stmt = self._block_on(driver.prepare(self._connection, name, query, names))
        log.debug("statement prepared", extra={"statement": stmt.name})
        return stmt

    # -- COPY --------------------------------------------------------------

    def _start_copy(self, statement: Query, name: str) -> tuple[Lease, CopySession]:
        if isinstance(statement, Statement) and statement.params:
            raise TypeError("COPY statements cannot take parameters")
        session = self._block_on(CopySession.start(self._connection, statement))
        return self._lease(name, session.abort), session

    def copy_in(self, statement: Query) -> CopyInWriter:
        """
        Start ``COPY ... FROM STDIN`` and return a writer for the data.

        Call `CopyInWriter.finish` to commit the data; closing the writer
        without finishing aborts the COPY.
        """
        lease, session = self._start_copy(statement, "CopyInWriter")
        return CopyInWriter(lease, session)

    def copy_out(self, statement: Query) -> CopyOutReader:
        """Start ``COPY ... TO STDOUT`` and return a reader over the data."""
        lease, session = self._start_copy(statement, "CopyOutReader")
        return CopyOutReader(lease, session)

    # -- simple protocol ---------------------------------------------------

    def simple_query(self, query: str) -> List[SimpleQueryMessage]:
        """
        Run one or more ``;``-separated statements over the simple protocol.

        Returns the rows of every statement as `SimpleQueryRow` values, each
        statement's end marked by a `CommandComplete`. Values are text.

        Never interpolate untrusted data into ``query``; it takes no
        parameters.
        """
        return self._block_on(driver.simple_query(self._connection, query))

    def batch_execute(self, query: str) -> None:
        """Run one or more ``;``-separated statements, discarding results."""
        self._block_on(driver.batch_execute(self._connection, query))


__all__ = ["AbstractGenericClient", "GenericClient"]
