"""
Blocking handles over streaming operations.

Each handle holds a `Lease` on its client's runtime for as long as it is
open. While it does, the client (or transaction) that produced it cannot run
anything else; ending the handle (exhaustion, `finish`, `close`, leaving a
``with`` block or garbage collection) gives the connection back.
"""

from __future__ import annotations

import io
from typing import Any, AsyncIterator, Iterator

from syncpg.infrastructure.driver import CopySession, Row
from syncpg.infrastructure.runtime import Lease

_DONE: Any = object()


async def _advance(rows: AsyncIterator[Row]) -> Any:
    try:
        return await rows.__anext__()
    except StopAsyncIteration:
        return _DONE


class RowIter:
    """
    Iterator over the rows of a query, one blocking fetch per row.

    Usable as a context manager; leaving the block or calling `close` before
    exhaustion cancels the remainder of the query.
    """

    def __init__(self, lease: Lease, rows: AsyncIterator[Row]) -> None:
        self._lease = lease
        self._rows = rows
        self._pending: Any = _DONE
        self._finished = False

    @classmethod
    def start(cls, lease: Lease, rows: AsyncIterator[Row]) -> "RowIter":
        """Send the query and wait for its first row so errors surface here."""
        it = cls(lease, rows)
        it._pending = it._fetch()
        return it

    def _fetch(self) -> Any:
        try:
            row = self._lease.block_on(_advance(self._rows))
        except BaseException:
            self._finished = True
            self._lease.abandon()
            raise
        if row is _DONE:
            self._finished = True
            self._lease.release()
        return row

    def __iter__(self) -> Iterator[Row]:
        return self

    def __next__(self) -> Row:
        if self._pending is not _DONE:
            row, self._pending = self._pending, _DONE
            return row
        if self._finished:
            raise StopIteration
        row = self._fetch()
        if row is _DONE:
            raise StopIteration
        return row

    @property
    def closed(self) -> bool:
        return self._finished or not self._lease.active

    def close(self) -> None:
        """Stop iterating and release the connection."""
        self._pending = _DONE
        if not self._finished:
            self._finished = True
            self._lease.abandon()

    def __enter__(self) -> "RowIter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass


class CopyInWriter(io.RawIOBase):
    """
    Writable binary stream feeding ``COPY ... FROM STDIN``.

    Bytes are forwarded verbatim in the format named by the COPY statement.
    Nothing is committed until `finish` returns; `close` without `finish`
    (including garbage collection) aborts the COPY.
    """

    def __init__(self, lease: Lease, session: CopySession) -> None:
        super().__init__()
        self._lease = lease
        self._session = session

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        self._checkClosed()
        data = bytes(b)
        if data:
            self._lease.block_on(self._session.write(data))
        return len(data)

    def finish(self) -> int:
        """Complete the COPY and return the number of rows written."""
        self._checkClosed()
        try:
            rows = self._lease.block_on(self._session.finish())
        finally:
            self._lease.release()
            super().close()
        return rows

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._lease.abandon()
        finally:
            super().close()


class CopyOutReader(io.RawIOBase):
    """
    Readable binary stream over ``COPY ... TO STDOUT``.

    Reaching the end of the data completes the COPY; closing the reader
    earlier cancels it.
    """

    def __init__(self, lease: Lease, session: CopySession) -> None:
        super().__init__()
        self._lease = lease
        self._session = session
        self._buffer = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def _read_chunk(self) -> bytes:
        if self._eof:
            return b""
        try:
            data = self._lease.block_on(self._session.read())
            if not data:
                self._eof = True
                self._lease.block_on(self._session.finish())
                self._lease.release()
        except BaseException:
            self._eof = True
            self._lease.abandon()
            raise
        return data

    def readinto(self, b: Any) -> int:
        self._checkClosed()
        if not self._buffer:
            self._buffer = self._read_chunk()
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n

    def readall(self) -> bytes:
        self._checkClosed()
        parts = [self._buffer]
        self._buffer = b""
        while chunk := self._read_chunk():
            parts.append(chunk)
        return b"".join(parts)

    def chunks(self) -> Iterator[bytes]:
        """Yield the data as the server sends it, typically one row per chunk."""
        self._checkClosed()
        if self._buffer:
            yield self._buffer
            self._buffer = b""
        while chunk := self._read_chunk():
            yield chunk

    def close(self) -> None:
        if self.closed:
            return
        try:
            if not self._eof:
                self._lease.abandon()
        finally:
            super().close()


__all__ = ["CopyInWriter", "CopyOutReader", "RowIter"]
