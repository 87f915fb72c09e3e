"""
Error types added on top of psycopg's exception tree.

Per-call failures are psycopg errors and propagate unchanged. The classes here
only distinguish connection-phase failures from operational ones and report
result-cardinality violations of `query_one` / `query_opt`. Because they
subclass psycopg's own classes, callers catching `psycopg.OperationalError`
or `psycopg.Error` keep working.
"""

from __future__ import annotations

import psycopg


class ConnectError(psycopg.OperationalError):
    """A connection could not be established (network, auth, TLS, protocol)."""


class TlsHandshakeError(ConnectError):
    """The TLS handshake failed; the underlying stream has been closed."""


class UnexpectedRowCount(psycopg.ProgrammingError):
    """A query returned a number of rows its caller did not allow for."""


__all__ = ["ConnectError", "TlsHandshakeError", "UnexpectedRowCount"]
