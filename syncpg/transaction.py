"""
Transactions and savepoints.

Connections run in autocommit mode, so a transaction is explicit SQL:
``BEGIN``/``START TRANSACTION`` on the client, ``SAVEPOINT`` for nested
transactions. A `Transaction` leases its client's runtime; until it is
committed or rolled back every query goes through it, and it resolves
exactly once. A transaction that is dropped or leaves its ``with`` block
without `commit` is rolled back.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any, Coroutine, List, Optional, TypeVar, Union

from psycopg import AsyncConnection, IsolationLevel, sql

from syncpg.generic import AbstractGenericClient
from syncpg.infrastructure import driver
from syncpg.infrastructure.runtime import Lease, Remediation
from syncpg.utils.logging import get_logger

if TYPE_CHECKING:
    from syncpg.cancel import CancelToken
    from syncpg.client import Client

log = get_logger(__name__)

T = TypeVar("T")


class Transaction(AbstractGenericClient):
    """
    An open transaction (``depth`` 0) or savepoint (``depth`` > 0).

    Obtain one from `Client.transaction`, `Client.build_transaction` or, for
    nesting, `Transaction.transaction` / `Transaction.savepoint`.
    """

    def __init__(
        self,
        client: "Client",
        holder: Union["Client", "Transaction"],
        depth: int,
        savepoint: Optional[str] = None,
    ) -> None:
        self._client = client
        self._depth = depth
        self._savepoint = savepoint
        self._outcome: Optional[str] = None
        # The remediation must not reference self, or the runtime would keep
        # an abandoned transaction alive.
        rollback = functools.partial(driver.batch_execute, client._connection, self._rollback_sql())
        self._lease_: Lease = holder._lease(self._describe(), rollback)

    @classmethod
    def begin(
        cls,
        client: "Client",
        holder: Union["Client", "Transaction"],
        depth: int,
        begin_sql: Any,
        savepoint: Optional[str] = None,
    ) -> "Transaction":
        holder._block_on(driver.batch_execute(client._connection, begin_sql))
        log.debug("transaction started", extra={"depth": depth})
        return cls(client, holder, depth, savepoint)

    def _describe(self) -> str:
        return "Transaction" if self._savepoint is None else f"Savepoint({self._savepoint})"

    # -- AbstractGenericClient primitives ---------------------------------

    def _block_on(self, coro: Coroutine[Any, Any, T]) -> T:
        return self._lease_.block_on(coro)

    def _lease(self, name: str, remediation: Optional[Remediation] = None) -> Lease:
        return self._lease_.lease(name, remediation)

    @property
    def _connection(self) -> AsyncConnection:
        return self._client._connection

    def _next_statement_name(self) -> str:
        return self._client._next_statement_name()

    # -- resolution -------------------------------------------------------

    def _commit_sql(self) -> sql.Composable:
        if self._savepoint is None:
            return sql.SQL("COMMIT")
        return sql.SQL("RELEASE SAVEPOINT {}").format(sql.Identifier(self._savepoint))

    def _rollback_sql(self) -> sql.Composable:
        if self._savepoint is None:
            return sql.SQL("ROLLBACK")
        name = sql.Identifier(self._savepoint)
        return sql.SQL("ROLLBACK TO SAVEPOINT {0}; RELEASE SAVEPOINT {0}").format(name)

    def _resolve(self, statement: sql.Composable, outcome: str) -> None:
        if self._outcome is not None:
            raise RuntimeError(f"transaction already {self._outcome}")
        # Handles still open on top of this transaction are abandoned first.
        self._lease_.reclaim()
        self._outcome = outcome
        try:
            self._lease_.block_on(driver.batch_execute(self._connection, statement))
        finally:
            self._lease_.release()
        log.debug("transaction %s", outcome, extra={"depth": self._depth})

    def commit(self) -> None:
        """Commit the transaction, or release the savepoint."""
        self._resolve(self._commit_sql(), "committed")

    def rollback(self) -> None:
        """Roll back the transaction, or roll back to the savepoint."""
        self._resolve(self._rollback_sql(), "rolled back")

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def done(self) -> bool:
        return self._outcome is not None

    # -- nesting ----------------------------------------------------------

    def transaction(self) -> "Transaction":
        """Start a nested transaction backed by an automatically named savepoint."""
        return self.savepoint(f"sp_{self._depth + 1}")

    def savepoint(self, name: str) -> "Transaction":
        """Start a nested transaction backed by the savepoint ``name``."""
        stmt = sql.SQL("SAVEPOINT {}").format(sql.Identifier(name))
        return Transaction.begin(self._client, self, self._depth + 1, stmt, savepoint=name)

    def cancel_token(self) -> "CancelToken":
        """Return the owning client's `CancelToken`."""
        return self._client.cancel_token()

    # -- scope ------------------------------------------------------------

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._outcome is None:
            self._outcome = "rolled back"
            self._lease_.abandon()

    def __del__(self) -> None:
        try:
            if self._outcome is None:
                self._lease_.abandon()
        except Exception:
            pass

    def __repr__(self) -> str:
        state = self._outcome or "open"
        return f"<{self._describe()} depth={self._depth} {state}>"


class TransactionBuilder:
    """
    Configures and starts a transaction.

    Example
    -------
        with client.build_transaction().isolation_level(IsolationLevel.SERIALIZABLE).read_only().start() as tx:
            tx.query("SELECT 1")
    """

    def __init__(self, client: "Client") -> None:
        self._client = client
        self._isolation: Optional[IsolationLevel] = None
        self._read_only: Optional[bool] = None
        self._deferrable: Optional[bool] = None

    def isolation_level(self, level: IsolationLevel) -> "TransactionBuilder":
        self._isolation = IsolationLevel(level)
        return self

    def read_only(self, read_only: bool = True) -> "TransactionBuilder":
        self._read_only = read_only
        return self

    def deferrable(self, deferrable: bool = True) -> "TransactionBuilder":
        self._deferrable = deferrable
        return self

    def begin_sql(self) -> str:
        modes: List[str] = []
        if self._isolation is not None:
            modes.append("ISOLATION LEVEL " + self._isolation.name.replace("_", " "))
        if self._read_only is not None:
            modes.append("READ ONLY" if self._read_only else "READ WRITE")
        if self._deferrable is not None:
            modes.append("DEFERRABLE" if self._deferrable else "NOT DEFERRABLE")
        if not modes:
            return "BEGIN"
        return "START TRANSACTION " + ", ".join(modes)

    def start(self) -> Transaction:
        """Issue the configured ``START TRANSACTION`` and return the transaction."""
        return Transaction.begin(self._client, self._client, 0, self.begin_sql())


__all__ = ["Transaction", "TransactionBuilder"]
