from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import psycopg
import typer

from syncpg.client import Client
from syncpg.config import Settings, get_settings
from syncpg.errors import ConnectError
from syncpg.reporter import print_messages, print_rows, print_settings, print_tls_session
from syncpg.tls.connector import TlsStream
from syncpg.tls.factory import MakeTlsConnector
from syncpg.tls.negotiate import connect_tls
from syncpg.utils.logging import configure_logging

app = typer.Typer(help="syncpg: blocking PostgreSQL client CLI.")


def _setup() -> Settings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    return settings


def _fail(exc: Exception, code: int = 1) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    values: Dict[str, Any] = settings.model_dump()
    values["tls_policy"] = repr(settings.tls_connector())
    print_settings(values)


@app.command()
def query(
    sql: str = typer.Argument(..., help="SQL using $1, $2, ... placeholders."),
    params: Optional[List[str]] = typer.Option(
        None,
        "--param",
        "-p",
        help="Parameter value, repeatable; the server converts it to the placeholder's type.",
    ),
) -> None:
    """
    Prepare and run a query, rendering its rows.
    """
    settings = _setup()
    try:
        with Client.from_settings(settings) as client:
            stmt = client.prepare(sql)
            rows = client.query(stmt, params or [])
    except ConnectError as exc:
        _fail(exc, code=2)
    except (psycopg.Error, TypeError) as exc:
        _fail(exc)
    print_rows(rows, stmt.columns)


@app.command()
def simple(sql: str = typer.Argument(..., help="One or more ;-separated statements.")) -> None:
    """
    Run statements over the simple query protocol.
    """
    settings = _setup()
    try:
        with Client.from_settings(settings) as client:
            messages = client.simple_query(sql)
    except ConnectError as exc:
        _fail(exc, code=2)
    except psycopg.Error as exc:
        _fail(exc)
    print_messages(messages)


@app.command("copy-out")
def copy_out(
    statement: str = typer.Argument(..., help="A COPY ... TO STDOUT statement."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File to write (default: stdout)."),
) -> None:
    """
    Stream the output of a COPY TO STDOUT statement.
    """
    settings = _setup()
    try:
        with Client.from_settings(settings) as client:
            with client.copy_out(statement) as reader:
                if output is None:
                    for chunk in reader.chunks():
                        sys.stdout.buffer.write(chunk)
                    sys.stdout.buffer.flush()
                else:
                    with output.open("wb") as fh:
                        for chunk in reader.chunks():
                            fh.write(chunk)
    except ConnectError as exc:
        _fail(exc, code=2)
    except psycopg.Error as exc:
        _fail(exc)


async def _probe(host: str, port: int, settings: Settings, sslmode: str) -> Dict[str, Any]:
    stream, encrypted = await connect_tls(
        host, port, MakeTlsConnector(settings.tls_config()), sslmode=sslmode, timeout=settings.db_connect_timeout
    )
    session: Dict[str, Any] = {"server": f"{host}:{port}", "sslmode": sslmode, "encrypted": encrypted}
    if isinstance(stream, TlsStream):
        cipher = stream.cipher()
        cert = stream.peer_certificate() or {}
        subject = ", ".join("=".join(pair) for rdn in cert.get("subject", ()) for pair in rdn)
        session.update(
            {
                "protocol": stream.version(),
                "cipher": cipher[0] if cipher else None,
                "peer subject": subject or None,
                "peer expires": cert.get("notAfter"),
            }
        )
    stream.close()
    await stream.wait_closed()
    return session


@app.command("tls-probe")
def tls_probe(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Server host (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port (default from settings)."),
    sslmode: Optional[str] = typer.Option(None, "--sslmode", help="libpq sslmode (default from settings)."),
) -> None:
    """
    Negotiate TLS with a server and show the resulting session.
    """
    settings = _setup()
    try:
        session = asyncio.run(
            _probe(host or settings.db_host, port or settings.db_port, settings, sslmode or settings.db_sslmode)
        )
    except (ConnectError, ValueError, OSError) as exc:
        _fail(exc, code=2)
    print_tls_session(session)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
