"""
TLS adapter bridging Python's synchronous TLS engine onto asyncio streams.

`ssl.SSLObject` never touches a socket: it reads ciphertext from an incoming
`ssl.MemoryBIO` and writes ciphertext to an outgoing one, raising
`ssl.SSLWantReadError` whenever it needs more input. `MidHandshake` turns that
into an explicit, re-entrant state machine whose `advance()` reports what it
is waiting for; `TlsConnector.connect` is the asyncio driver that waits for
that readiness and calls `advance()` again. Once the handshake completes,
`TlsStream` exposes the same read/write surface as the raw stream pair while
encrypting and decrypting through the negotiated session.
"""

from __future__ import annotations

import asyncio
import enum
import selectors
import ssl
from typing import Any, Optional, Protocol, runtime_checkable

from syncpg.errors import TlsHandshakeError
from syncpg.utils.logging import get_logger

log = get_logger(__name__)

_READ_CHUNK = 64 * 1024


class Wait(enum.IntEnum):
    """Readiness a suspended handshake needs before it can be advanced."""

    R = selectors.EVENT_READ
    W = selectors.EVENT_WRITE


@runtime_checkable
class AsyncByteStream(Protocol):
    """The read/write contract shared by raw and TLS-wrapped streams."""

    async def read(self, n: int = -1) -> bytes: ...

    async def readexactly(self, n: int) -> bytes: ...

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    async def wait_closed(self) -> None: ...

    def get_extra_info(self, name: str, default: Any = None) -> Any: ...


class RawStream:
    """Plaintext `AsyncByteStream` over an asyncio reader/writer pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    async def read(self, n: int = -1) -> bytes:
        return await self._reader.read(n)

    async def readexactly(self, n: int) -> bytes:
        return await self._reader.readexactly(n)

    def write(self, data: bytes) -> None:
        self._writer.write(data)

    async def drain(self) -> None:
        await self._writer.drain()

    def close(self) -> None:
        self._writer.close()

    async def wait_closed(self) -> None:
        await self._writer.wait_closed()

    def get_extra_info(self, name: str, default: Any = None) -> Any:
        return self._writer.get_extra_info(name, default)


class MidHandshake:
    """
    A client handshake that can be advanced step by step.

    `advance()` returns:

    - ``None`` once the handshake is complete and every handshake byte has
      been handed to `data_to_send()`;
    - ``Wait.W`` when handshake bytes are pending and must be written to the
      peer before progress is possible;
    - ``Wait.R`` when the engine needs more bytes from the peer, to be passed
      in with `receive_data()`.

    Failures (certificate validation, protocol mismatch, unexpected EOF)
    surface as the `ssl.SSLError` raised by the engine. Calling `advance()`
    again after it returned a `Wait` resumes exactly where it stopped.
    """

    def __init__(self, sslobj: ssl.SSLObject, incoming: ssl.MemoryBIO, outgoing: ssl.MemoryBIO) -> None:
        self._sslobj = sslobj
        self._incoming = incoming
        self._outgoing = outgoing
        self._done = False

    @property
    def done(self) -> bool:
        return self._done and not self._outgoing.pending

    def advance(self) -> Optional[Wait]:
        if self._outgoing.pending:
            return Wait.W
        if self._done:
            return None
        try:
            self._sslobj.do_handshake()
        except ssl.SSLWantReadError:
            return Wait.W if self._outgoing.pending else Wait.R
        except ssl.SSLWantWriteError:
            return Wait.W
        self._done = True
        # The final flight (e.g. the client Finished message) may still be queued.
        return Wait.W if self._outgoing.pending else None

    def data_to_send(self) -> bytes:
        return self._outgoing.read()

    def receive_data(self, data: bytes) -> None:
        if data:
            self._incoming.write(data)
        else:
            self._incoming.write_eof()


class TlsStream:
    """
    An `AsyncByteStream` carrying application data through a TLS session.

    Created by `TlsConnector.connect` only after the handshake has completed.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        sslobj: ssl.SSLObject,
        incoming: ssl.MemoryBIO,
        outgoing: ssl.MemoryBIO,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._sslobj = sslobj
        self._incoming = incoming
        self._outgoing = outgoing

    def _flush(self) -> None:
        if self._outgoing.pending:
            self._writer.write(self._outgoing.read())

    async def read(self, n: int = -1) -> bytes:
        if n == 0:
            return b""
        if n < 0:
            chunks = []
            while chunk := await self.read(_READ_CHUNK):
                chunks.append(chunk)
            return b"".join(chunks)

        while True:
            try:
                return self._sslobj.read(n)
            except ssl.SSLWantReadError:
                if self._incoming.eof:
                    return b""
                # TLS 1.3 key updates are answered while reading.
                self._flush()
                data = await self._reader.read(_READ_CHUNK)
                if data:
                    self._incoming.write(data)
                else:
                    self._incoming.write_eof()
            except (ssl.SSLZeroReturnError, ssl.SSLEOFError):
                # close_notify, or a peer that closed without one
                return b""

    async def readexactly(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = await self.read(n - len(buf))
            if not chunk:
                raise asyncio.IncompleteReadError(bytes(buf), n)
            buf += chunk
        return bytes(buf)

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = self._sslobj.write(view)
            view = view[written:]
        self._flush()

    async def drain(self) -> None:
        await self._writer.drain()

    def close(self) -> None:
        if self._writer.is_closing():
            return
        try:
            self._sslobj.unwrap()
        except ssl.SSLError:
            # unwrap() waits for the peer's close_notify, which we never read.
            pass
        self._flush()
        self._writer.close()

    async def wait_closed(self) -> None:
        await self._writer.wait_closed()

    def get_extra_info(self, name: str, default: Any = None) -> Any:
        if name == "ssl_object":
            return self._sslobj
        if name == "peercert":
            return self._sslobj.getpeercert()
        if name == "cipher":
            return self._sslobj.cipher()
        return self._writer.get_extra_info(name, default)

    def version(self) -> Optional[str]:
        return self._sslobj.version()

    def cipher(self) -> Optional[tuple[str, str, int]]:
        return self._sslobj.cipher()

    def peer_certificate(self, binary_form: bool = False) -> Any:
        return self._sslobj.getpeercert(binary_form=binary_form)


async def drive_handshake(
    handshake: MidHandshake, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
) -> None:
    """Advance ``handshake`` until it completes, waiting only where it asks to."""
    while (wait := handshake.advance()) is not None:
        if wait is Wait.W:
            writer.write(handshake.data_to_send())
            await writer.drain()
        else:
            data = await reader.read(_READ_CHUNK)
            if not data:
                raise ConnectionResetError("server closed the connection during the TLS handshake")
            handshake.receive_data(data)


class TlsConnector:
    """
    Performs one TLS client handshake over an already-connected stream pair.

    Instances are cheap and hold configuration only; the connector factory
    (`MakeTlsConnector`) creates a fresh one for every connection attempt.

    Parameters
    ----------
    context : ssl.SSLContext
        Client context carrying trust roots, identity and verification policy.
    domain : str | None
        Hostname used for SNI and certificate hostname checks.
    """

    def __init__(self, context: ssl.SSLContext, domain: Optional[str]) -> None:
        self._context = context
        self._domain = domain

    @property
    def domain(self) -> Optional[str]:
        return self._domain

    def start(self) -> tuple[MidHandshake, ssl.SSLObject, ssl.MemoryBIO, ssl.MemoryBIO]:
        """Create the TLS engine and the handshake state machine driving it."""
        incoming = ssl.MemoryBIO()
        outgoing = ssl.MemoryBIO()
        sslobj = self._context.wrap_bio(incoming, outgoing, server_hostname=self._domain)
        return MidHandshake(sslobj, incoming, outgoing), sslobj, incoming, outgoing

    async def connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> TlsStream:
        """
        Run the handshake and return the encrypted stream.

        Raises
        ------
        TlsHandshakeError
            If the handshake fails for any reason. The raw writer is closed
            before the error propagates.
        """
        handshake, sslobj, incoming, outgoing = self.start()
        try:
            await drive_handshake(handshake, reader, writer)
        except OSError as exc:
            writer.close()
            log.debug("TLS handshake failed", extra={"host": self._domain})
            raise TlsHandshakeError(f"TLS handshake with {self._domain or 'server'} failed: {exc}") from exc
        except BaseException:
            writer.close()
            raise

        log.debug(
            "TLS handshake complete",
            extra={"host": self._domain, "encrypted": sslobj.version()},
        )
        return TlsStream(reader, writer, sslobj, incoming, outgoing)


__all__ = [
    "AsyncByteStream",
    "MidHandshake",
    "RawStream",
    "TlsConnector",
    "TlsStream",
    "Wait",
    "drive_handshake",
]
