"""
Query cancellation detached from the client.

A `CancelToken` captures what the server needs to identify a session (the
backend pid, the secret key and the server address, kept inside libpq's
cancel handle) at the moment it is created. Cancelling opens a separate
connection, sends the CancelRequest and hangs up; it never touches the
originating client, so it can run from any thread while that client is
blocked in a long query.
"""

from __future__ import annotations

from typing import Any

from syncpg.utils.logging import get_logger

log = get_logger(__name__)


class CancelToken:
    """
    Cancels whatever the originating session is running.

    The server gives no feedback: the in-flight query, if any, fails with
    `psycopg.errors.QueryCanceled` on the original connection, and a token
    used when nothing is running has no effect.
    """

    __slots__ = ("_cancel", "backend_pid")

    def __init__(self, cancel: Any, backend_pid: int) -> None:
        self._cancel = cancel
        self.backend_pid = backend_pid

    def cancel_query(self) -> None:
        """
        Ask the server to cancel the session's current query.

        The cancel connection is opened by libpq with the session's own
        connection parameters (host, port, sslmode, certificates), so the TLS
        policy used to connect applies here too and no TLS choice is taken.

        Raises
        ------
        psycopg.OperationalError
            If the cancel request could not be delivered.
        """
        log.info("sending cancel request", extra={"backend_pid": self.backend_pid})
        self._cancel.cancel()

    def __copy__(self) -> "CancelToken":
        return CancelToken(self._cancel, self.backend_pid)

    def __repr__(self) -> str:
        return f"<CancelToken backend_pid={self.backend_pid}>"


__all__ = ["CancelToken"]
