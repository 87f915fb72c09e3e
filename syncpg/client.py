"""
Synchronous PostgreSQL client.

`Client` owns one psycopg `AsyncConnection` and the private runtime that
drives it. Every method blocks the calling thread until the server has
answered. A client serves one operation at a time; handles it returns
(row iterators, COPY streams, transactions) hold the connection until they
end.

Example
-------
    from syncpg import Client, NoTls

    with Client.connect("host=localhost user=postgres", NoTls()) as client:
        client.batch_execute("CREATE TEMPORARY TABLE foo (id SERIAL, bar INT)")
        client.execute("INSERT INTO foo (bar) VALUES ($1)", [1])
        for row in client.query("SELECT id, bar FROM foo"):
            print(row)
"""

from __future__ import annotations

import itertools
from typing import Any, Coroutine, Optional, TypeVar, Union

from psycopg import AsyncConnection

from syncpg.cancel import CancelToken
from syncpg.config import Settings, get_settings
from syncpg.generic import AbstractGenericClient
from syncpg.infrastructure import driver
from syncpg.infrastructure.connect import build_conninfo, open_connection
from syncpg.infrastructure.runtime import Lease, Remediation, Runtime
from syncpg.tls.factory import MakeTlsConnector, NoTls
from syncpg.transaction import Transaction, TransactionBuilder
from syncpg.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

TlsPolicy = Union[MakeTlsConnector, NoTls]


class Client(AbstractGenericClient):
    """
    A synchronous PostgreSQL client over one connection.

    Create instances with `Client.connect` or `Client.from_settings`.
    """

    def __init__(self, runtime: Runtime, connection: AsyncConnection) -> None:
        self._runtime = runtime
        self._conn = connection
        self._statement_ids = itertools.count(1)

    @classmethod
    def connect(
        cls,
        params: str = "",
        tls: Optional[TlsPolicy] = None,
        *,
        attempts: int = 1,
        **kwargs: Any,
    ) -> "Client":
        """
        Connect to a server.

        Parameters
        ----------
        params : str
            libpq conninfo string (``"host=... user=..."`` or a
            ``postgresql://`` URI).
        tls : MakeTlsConnector | NoTls, optional
            TLS policy. Defaults to `NoTls`, which refuses sslmodes that
            demand TLS.
        attempts : int
            Attempts made for transient failures (refused or unreachable
            server, timeouts, a server starting up).
        **kwargs
            Extra conninfo keywords overriding ``params``.

        Raises
        ------
        ConnectError
            If the connection cannot be established.
        """
        conninfo = build_conninfo(params, tls if tls is not None else NoTls(), **kwargs)
        runtime = Runtime()
        try:
            conn = runtime.block_on(open_connection(conninfo, attempts))
        except BaseException:
            runtime.close()
            raise
        return cls(runtime, conn)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, tls: Optional[TlsPolicy] = None) -> "Client":
        """Connect using `Settings` (environment and ``.env``)."""
        settings = settings or get_settings()
        return cls.connect(
            settings.conninfo(),
            tls if tls is not None else settings.tls_connector(),
            attempts=settings.db_connect_attempts,
        )

    # -- AbstractGenericClient primitives ---------------------------------

    def _block_on(self, coro: Coroutine[Any, Any, T]) -> T:
        return self._runtime.block_on(coro)

    def _lease(self, name: str, remediation: Optional[Remediation] = None) -> Lease:
        return self._runtime.lease(name, remediation)

    @property
    def _connection(self) -> AsyncConnection:
        return self._conn

    def _next_statement_name(self) -> str:
        return f"s{next(self._statement_ids)}"

    # -- transactions -----------------------------------------------------

    def transaction(self) -> Transaction:
        """
        Begin a transaction.

        The transaction holds the connection until it is committed or rolled
        back; if neither happens it is rolled back when dropped or when its
        ``with`` block exits.
        """
        return Transaction.begin(self, self, 0, "BEGIN")

    def build_transaction(self) -> TransactionBuilder:
        """Return a builder for transactions with non-default settings."""
        return TransactionBuilder(self)

    # -- session ----------------------------------------------------------

    def cancel_token(self) -> CancelToken:
        """
        Return a token able to cancel this session's running query.

        The token does not keep the client alive and may be used from any
        thread.
        """
        return CancelToken(self._conn.pgconn.get_cancel(), self._conn.info.backend_pid)

    @property
    def backend_pid(self) -> int:
        return self._conn.info.backend_pid

    def is_closed(self) -> bool:
        """Whether the client was closed or its connection is broken."""
        return self._runtime.closed or self._conn.closed or self._conn.broken

    def close(self) -> None:
        """
        Close the connection and release the runtime.

        Outstanding handles are abandoned first: COPYs are aborted, row
        streams cancelled and transactions rolled back. Using a handle
        afterwards raises `RuntimeError`. Idempotent.
        """
        if self._runtime.closed:
            return
        pid = self._conn.info.backend_pid if not self._conn.closed else None
        self._runtime.close(driver.close(self._conn))
        log.info("connection closed", extra={"backend_pid": pid})

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    def __repr__(self) -> str:
        state = "closed" if self.is_closed() else f"pid={self._conn.info.backend_pid}"
        return f"<Client {state}>"


__all__ = ["Client"]
