"""
Connection establishment for syncpg clients.

Merges caller parameters with the TLS policy's libpq parameters, opens a
psycopg `AsyncConnection` and retries transient failures using tenacity.
Authentication, TLS and configuration errors are never retried.
"""

from __future__ import annotations

from typing import Any, Dict, Union

import psycopg
from psycopg import AsyncConnection, AsyncRawCursor
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from syncpg.errors import ConnectError
from syncpg.tls.factory import MakeTlsConnector, NoTls
from syncpg.utils.logging import get_logger

log = get_logger(__name__)


# Server messages that mean "try again later"
_TRANSIENT_SERVER_ERRORS = (
    "the database system is starting up",
    "the database system is shutting down",
    "the database system is in recovery mode",
    "too many clients already",
    "remaining connection slots are reserved",
)
# SQLSTATE classes: invalid authorization (28), invalid catalog name (3D)
_PERMANENT_CLASSES = ("28", "3D")


def _is_transient(exc: BaseException) -> bool:
    """
    Whether a failed connection attempt is worth repeating.

    libpq reports connection failures as plain `psycopg.OperationalError`
    without a SQLSTATE. Failures the server rejected carry its ``FATAL``
    message; only the ones in `_TRANSIENT_SERVER_ERRORS` are retried.
    Failures before the server answered (refused, unreachable, timed out)
    are retried unless they come from TLS.
    """
    if isinstance(exc, (psycopg.errors.ConnectionTimeout, OSError)):
        return True
    if not isinstance(exc, psycopg.OperationalError):
        return False
    if exc.sqlstate and exc.sqlstate[:2] in _PERMANENT_CLASSES:
        return False
    message = str(exc)
    if "FATAL:" in message:
        return any(marker in message for marker in _TRANSIENT_SERVER_ERRORS)
    return "SSL" not in message and "certificate" not in message


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "connection attempt failed, retrying: %s",
        exc,
        extra={"attempt": state.attempt_number},
    )


def build_conninfo(params: str, tls: Union[MakeTlsConnector, NoTls], **kwargs: Any) -> str:
    """
    Combine a conninfo string, keyword overrides and the TLS policy.

    Raises
    ------
    ConnectError
        If ``NoTls`` is combined with an sslmode that demands TLS.
    psycopg.ProgrammingError
        If ``params`` is not a valid conninfo string.
    """
    info: Dict[str, Any] = conninfo_to_dict(params)
    info.update({k: v for k, v in kwargs.items() if v is not None})
    info.update(tls.conninfo_params(info.get("sslmode")))
    return make_conninfo("", **info)


@retry(
    stop=stop_after_attempt(1),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(_is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
async def _open(conninfo: str) -> AsyncConnection:
    return await AsyncConnection.connect(conninfo, autocommit=True, cursor_factory=AsyncRawCursor)


async def open_connection(conninfo: str, attempts: int = 1) -> AsyncConnection:
    """
    Open an autocommit `AsyncConnection` using ``$n`` placeholders.

    Parameters
    ----------
    conninfo : str
        Complete libpq conninfo, TLS parameters included.
    attempts : int
        Total attempts for transient failures (refused or unreachable server,
        timeouts, a server starting up or out of connection slots).

    Raises
    ------
    ConnectError
        Chained to the driver error when the connection cannot be made.
    """
    opener = _open.retry_with(stop=stop_after_attempt(max(attempts, 1)))
    try:
        conn = await opener(conninfo)
    except ConnectError:
        raise
    except psycopg.OperationalError as exc:
        raise ConnectError(str(exc)) from exc
    except OSError as exc:
        raise ConnectError(f"could not connect: {exc}") from exc

    info = conn.info
    log.info(
        "connected",
        extra={
            "backend_pid": info.backend_pid,
            "host": info.host,
            "port": info.port,
            "dbname": info.dbname,
            "sslmode": info.get_parameters().get("sslmode"),
        },
    )
    return conn


__all__ = ["build_conninfo", "open_connection"]
