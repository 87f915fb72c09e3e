"""
PostgreSQL TLS negotiation over a fresh TCP connection.

PostgreSQL does not speak TLS from the first byte: the client sends an
8-byte SSLRequest and the server answers with a single ``S`` (go ahead) or
``N`` (no TLS here). Only after ``S`` does the TLS handshake start, run by the
adapter in `syncpg.tls.connector`.
"""

from __future__ import annotations

import asyncio
import struct
from typing import Optional, Tuple, Union

from syncpg.errors import ConnectError
from syncpg.tls.connector import AsyncByteStream, RawStream
from syncpg.tls.factory import MakeTlsConnector, NoTls, TLS_REQUIRED, check_sslmode
from syncpg.utils.logging import get_logger

log = get_logger(__name__)

SSL_REQUEST_CODE = 80877103
SSL_REQUEST = struct.pack("!ii", 8, SSL_REQUEST_CODE)


async def negotiate_tls(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    tls: Union[MakeTlsConnector, NoTls],
    host: str,
    sslmode: Optional[str] = "prefer",
) -> Tuple[AsyncByteStream, bool]:
    """
    Run the SSLRequest exchange on an open connection.

    Returns the stream to continue the protocol on and whether it is
    encrypted. ``allow`` and ``disable`` never ask for TLS; ``prefer`` asks and
    falls back to plaintext on ``N``; ``require`` and ``verify-*`` fail.
    """
    mode = check_sslmode(sslmode)
    connector = tls.make_tls_connect(host) if mode not in ("disable", "allow") else None
    if connector is None:
        if mode in TLS_REQUIRED:
            writer.close()
            raise ConnectError(f"sslmode={mode} requires TLS but no TLS connector was configured")
        return RawStream(reader, writer), False

    writer.write(SSL_REQUEST)
    await writer.drain()
    try:
        answer = await reader.readexactly(1)
    except asyncio.IncompleteReadError as exc:
        writer.close()
        raise ConnectError("server closed the connection in response to SSLRequest") from exc

    if answer == b"S":
        stream = await connector.connect(reader, writer)
        return stream, True
    if answer == b"N":
        if mode in TLS_REQUIRED:
            writer.close()
            raise ConnectError(f"server does not support TLS, but sslmode={mode}")
        log.debug("server declined TLS, continuing in plaintext", extra={"host": host, "sslmode": mode})
        return RawStream(reader, writer), False

    writer.close()
    raise ConnectError(f"unexpected response {answer!r} to SSLRequest")


async def connect_tls(
    host: str,
    port: int,
    tls: Union[MakeTlsConnector, NoTls],
    sslmode: Optional[str] = "prefer",
    timeout: float = 10.0,
) -> Tuple[AsyncByteStream, bool]:
    """
    Open a TCP connection to ``host:port`` and negotiate TLS per ``sslmode``.

    Parameters
    ----------
    host, port : str, int
        Server address. ``host`` is also the TLS domain.
    tls : MakeTlsConnector | NoTls
        Policy supplying the per-connection `TlsConnector`.
    sslmode : str
        libpq sslmode.
    timeout : float
        Seconds allowed for the TCP connect plus the negotiation.

    Returns
    -------
    tuple
        ``(stream, encrypted)``.
    """
    try:
        async with asyncio.timeout(timeout):
            reader, writer = await asyncio.open_connection(host, port)
            try:
                stream, encrypted = await negotiate_tls(reader, writer, tls, host, sslmode)
            except BaseException:
                writer.close()
                raise
    except TimeoutError as exc:
        raise ConnectError(f"timed out connecting to {host}:{port}") from exc
    except ConnectError:
        raise
    except OSError as exc:
        raise ConnectError(f"could not connect to {host}:{port}: {exc}") from exc

    log.info(
        "transport established",
        extra={"host": host, "port": port, "sslmode": sslmode, "encrypted": encrypted},
    )
    return stream, encrypted


__all__ = ["SSL_REQUEST", "SSL_REQUEST_CODE", "connect_tls", "negotiate_tls"]
