"""
Pytest configuration for syncpg.

Provides fixtures for:
- Settings and DSN for integration tests (from DB_* environment variables)
- A connected `Client` that skips when the database is unreachable
- Test certificates and a TLS-capable local server for adapter tests
- A fake driver so the blocking facade can be tested without a server
"""

from __future__ import annotations

import asyncio
import os
import ssl
from pathlib import Path
from types import SimpleNamespace
from typing import Any, AsyncIterator, Dict, Generator, List, Optional, Tuple

import psycopg
import pytest
import pytest_asyncio
from psycopg import sql

from syncpg.client import Client
from syncpg.config import Settings
from syncpg.infrastructure import driver
from syncpg.infrastructure.runtime import Runtime
from syncpg.statement import Statement, count_placeholders
from syncpg.tls.factory import NoTls
from syncpg.tls.negotiate import SSL_REQUEST

CERTS_DIR = Path(__file__).parent / "fixtures" / "certs"
CA_CERT = CERTS_DIR / "ca.crt"
OTHER_CA_CERT = CERTS_DIR / "other-ca.crt"
SERVER_CERT = CERTS_DIR / "server.crt"
SERVER_KEY = CERTS_DIR / "server.key"


# -- database ---------------------------------------------------------------


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "postgres"),
        db_sslmode=os.getenv("DB_SSLMODE", "prefer"),
        db_connect_timeout=5,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.conninfo()


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture()
def client(test_dsn: str, db_connection_available: bool) -> Generator[Client, None, None]:
    """
    Provide a connected client for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    c = Client.connect(test_dsn, NoTls())
    try:
        yield c
    finally:
        c.close()


# -- TLS ----------------------------------------------------------------------


@pytest.fixture(scope="session")
def server_ssl_context() -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(str(SERVER_CERT), str(SERVER_KEY))
    return ctx


async def _echo_upper(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    line = await reader.readline()
    writer.write(line.upper())
    await writer.drain()


class FakeServer:
    """
    Local TCP server used by TLS tests.

    mode:
      "tls"        handshake immediately, then echo one line upper-cased
      "pg"         PostgreSQL-style: answer SSLRequest with b"S" and start TLS,
                   or echo plaintext when the first 8 bytes are not an SSLRequest
      "pg-refuse"  answer SSLRequest with b"N", then echo plaintext
      "close"      hang up straight away
    """

    def __init__(self, ssl_context: ssl.SSLContext, mode: str) -> None:
        self.ssl_context = ssl_context
        self.mode = mode
        self.requests: List[bytes] = []
        self.errors: List[BaseException] = []
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def address(self) -> Tuple[str, int]:
        assert self._server is not None
        host, port = self._server.sockets[0].getsockname()[:2]
        return host, port

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            if self.mode == "close":
                return
            if self.mode == "tls":
                await writer.start_tls(self.ssl_context)
                await _echo_upper(reader, writer)
                return
            first = await reader.readexactly(8)
            self.requests.append(first)
            if first != SSL_REQUEST:
                writer.write(first)
                await writer.drain()
                return
            if self.mode == "pg-refuse":
                writer.write(b"N")
                await writer.drain()
                await _echo_upper(reader, writer)
                return
            writer.write(b"S")
            await writer.drain()
            await writer.start_tls(self.ssl_context)
            await _echo_upper(reader, writer)
        except (OSError, asyncio.IncompleteReadError) as exc:
            self.errors.append(exc)
        finally:
            writer.close()

    async def start(self) -> "FakeServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


@pytest_asyncio.fixture()
async def make_server(server_ssl_context: ssl.SSLContext):
    servers: List[FakeServer] = []

    async def factory(mode: str = "tls") -> FakeServer:
        server = await FakeServer(server_ssl_context, mode).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        await server.stop()


# -- fake driver ---------------------------------------------------------------


def sql_text(query: Any) -> str:
    if isinstance(query, sql.Composable):
        return query.as_string(None)
    if isinstance(query, Statement):
        return f"EXECUTE {query.name}"
    return query


class FakeCancel:
    def __init__(self) -> None:
        self.calls = 0

    def cancel(self) -> None:
        self.calls += 1


class FakeConnection:
    def __init__(self, backend_pid: int = 4242) -> None:
        self.closed = False
        self.broken = False
        self.info = SimpleNamespace(backend_pid=backend_pid)
        self.cancel = FakeCancel()
        self.pgconn = SimpleNamespace(get_cancel=lambda: self.cancel)


class FakeBackend:
    """
    Stand-in for `syncpg.infrastructure.driver`, recording every statement.

    ``results`` maps SQL text to the rows a query returns.
    """

    def __init__(self) -> None:
        self.log: List[str] = []
        self.params: List[Tuple[Any, ...]] = []
        self.results: Dict[str, List[Tuple[Any, ...]]] = {}
        self.streams_closed = 0
        self.closed = False
        self.fail_on: Optional[str] = None

    def _record(self, query: Any, params: Any = ()) -> str:
        text = sql_text(query)
        self.log.append(text)
        self.params.append(tuple(params))
        if self.fail_on is not None and self.fail_on in text:
            raise psycopg.errors.SyntaxError(f"syntax error at or near {self.fail_on!r}")
        return text

    async def execute(self, conn: Any, query: Any, params: Any = ()) -> int:
        text = self._record(query, params)
        return len(self.results.get(text, []))

    async def fetch_all(self, conn: Any, query: Any, params: Any = ()) -> List[Tuple[Any, ...]]:
        text = self._record(query, params)
        return list(self.results.get(text, []))

    def stream(self, conn: Any, query: Any, params: Any = ()) -> AsyncIterator[Tuple[Any, ...]]:
        backend = self

        async def rows() -> AsyncIterator[Tuple[Any, ...]]:
            text = backend._record(query, params)
            try:
                for row in backend.results.get(text, []):
                    yield row
            finally:
                backend.streams_closed += 1

        return rows()

    async def prepare(self, conn: Any, name: str, query: str, types: Any = ()) -> Statement:
        self._record(f"PREPARE {name} AS {query}")
        count = count_placeholders(query)
        params = list(types) + ["text"] * (count - len(types))
        return Statement(name, query, params, ["integer"])

    async def simple_query(self, conn: Any, query: str) -> list:
        self._record(query)
        return []

    async def batch_execute(self, conn: Any, query: Any) -> None:
        self._record(query)

    async def close(self, conn: Any) -> None:
        self.closed = True
        conn.closed = True


@pytest.fixture()
def backend(monkeypatch: pytest.MonkeyPatch) -> FakeBackend:
    fake = FakeBackend()
    for name in ("execute", "fetch_all", "stream", "prepare", "simple_query", "batch_execute", "close"):
        monkeypatch.setattr(driver, name, getattr(fake, name))
    return fake


@pytest.fixture()
def fake_client(backend: FakeBackend) -> Generator[Client, None, None]:
    c = Client(Runtime(), FakeConnection())
    try:
        yield c
    finally:
        c.close()
