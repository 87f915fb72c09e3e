"""
Integration tests for the syncpg client.

These tests run against a real PostgreSQL instance and verify that:
1. Queries, prepared statements and the simple protocol round-trip values
2. COPY IN/OUT commit on finish and abort when abandoned
3. Transactions commit, roll back when dropped, and nest via savepoints
4. A cancel token stops a running query from another thread

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
import threading

import psycopg
import pytest
from psycopg import IsolationLevel

from syncpg import Client, CommandComplete, SimpleQueryRow

# Test configuration constants
STREAM_ROWS = 100
CANCEL_DELAY_SECONDS = 0.5
SLEEP_SECONDS = 10
COPY_ROWS = [b"1\tone\n", b"2\ttwo\n"]

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture()
def table(client: Client) -> str:
    client.batch_execute("CREATE TEMPORARY TABLE foo (id INT PRIMARY KEY, name TEXT)")
    return "foo"


class TestQueries:
    def test_select_with_parameter(self, client: Client) -> None:
        assert client.query_one("SELECT $1::INT4", [1]) == (1,)

    def test_execute_reports_rows(self, client: Client, table: str) -> None:
        inserted = client.execute("INSERT INTO foo VALUES ($1, $2), ($3, $4)", [1, "a", 2, "b"])
        updated = client.execute("UPDATE foo SET name = upper(name)")

        assert (inserted, updated) == (2, 2)
        assert client.execute("CREATE INDEX ON foo (name)") == 0
        assert client.query("SELECT id, name FROM foo ORDER BY id") == [(1, "A"), (2, "B")]

    def test_error_leaves_the_client_usable(self, client: Client) -> None:
        with pytest.raises(psycopg.errors.SyntaxError):
            client.query("SELEC 1")

        assert client.query_one("SELECT 1") == (1,)

    def test_query_raw_streams_rows(self, client: Client) -> None:
        rows = client.query_raw("SELECT generate_series(1, $1::INT4)", [STREAM_ROWS])

        assert [r[0] for r in rows] == list(range(1, STREAM_ROWS + 1))
        assert client.query_one("SELECT 2") == (2,)

    def test_query_raw_closed_early(self, client: Client) -> None:
        with client.query_raw("SELECT generate_series(1, 1000000)") as rows:
            assert next(rows) == (1,)

        assert client.query_one("SELECT 3") == (3,)

    def test_simple_query_framing(self, client: Client) -> None:
        messages = client.simple_query(
            "SELECT 1 AS a; SELECT 'x' AS b, NULL AS c; CREATE TEMPORARY TABLE bar (i INT)"
        )

        assert messages == [
            SimpleQueryRow(columns=("a",), values=("1",)),
            CommandComplete(rows=1, tag="SELECT 1"),
            SimpleQueryRow(columns=("b", "c"), values=("x", None)),
            CommandComplete(rows=1, tag="SELECT 1"),
            CommandComplete(rows=0, tag="CREATE TABLE"),
        ]


class TestPreparedStatements:
    def test_reuse(self, client: Client) -> None:
        stmt = client.prepare("SELECT $1::INT4 + 1")

        assert stmt.params == ("integer",)
        assert [client.query_one(stmt, [i])[0] for i in range(3)] == [1, 2, 3]

    def test_typed(self, client: Client) -> None:
        stmt = client.prepare_typed("SELECT $1", ["int8"])

        assert stmt.params == ("bigint",)
        assert client.query_one(stmt, [5]) == (5,)

    def test_text_values_are_coerced(self, client: Client) -> None:
        stmt = client.prepare_typed("SELECT $1 + $2", ["int4", "int4"])
        assert client.query_one(stmt, ["20", "22"]) == (42,)


class TestCopy:
    def test_copy_in_finish(self, client: Client, table: str) -> None:
        writer = client.copy_in("COPY foo (id, name) FROM STDIN")
        for line in COPY_ROWS:
            writer.write(line)

        assert writer.finish() == len(COPY_ROWS)
        assert client.query_one("SELECT count(*) FROM foo") == (len(COPY_ROWS),)

    def test_copy_in_abandoned(self, client: Client, table: str) -> None:
        writer = client.copy_in("COPY foo (id, name) FROM STDIN")
        writer.write(COPY_ROWS[0])
        writer.close()

        assert client.query_one("SELECT count(*) FROM foo") == (0,)

    def test_copy_in_bad_data(self, client: Client, table: str) -> None:
        writer = client.copy_in("COPY foo (id, name) FROM STDIN")
        writer.write(b"not-a-number\tx\n")

        with pytest.raises(psycopg.errors.InvalidTextRepresentation):
            writer.finish()
        assert client.query_one("SELECT 1") == (1,)

    def test_copy_out(self, client: Client, table: str) -> None:
        client.execute("INSERT INTO foo VALUES (1, 'one'), (2, 'two')")

        with client.copy_out("COPY (SELECT * FROM foo ORDER BY id) TO STDOUT") as reader:
            assert reader.readall() == b"".join(COPY_ROWS)

    def test_copy_out_closed_early(self, client: Client) -> None:
        reader = client.copy_out("COPY (SELECT generate_series(1, 1000000)) TO STDOUT")
        assert reader.read(2) == b"1\n"
        reader.close()

        assert client.query_one("SELECT 4") == (4,)


class TestTransactions:
    def test_commit(self, client: Client, table: str) -> None:
        with client.transaction() as tx:
            tx.execute("INSERT INTO foo VALUES (1, 'one')")
            tx.commit()

        assert client.query_one("SELECT count(*) FROM foo") == (1,)

    def test_dropped_transaction_rolls_back(self, client: Client, table: str) -> None:
        tx = client.transaction()
        tx.execute("INSERT INTO foo VALUES (1, 'one')")
        del tx

        assert client.query_one("SELECT count(*) FROM foo") == (0,)

    def test_savepoint_rollback(self, client: Client, table: str) -> None:
        tx = client.transaction()
        tx.execute("INSERT INTO foo VALUES (1, 'one')")
        with tx.transaction() as inner:
            inner.execute("INSERT INTO foo VALUES (2, 'two')")
        tx.commit()

        assert client.query("SELECT id FROM foo") == [(1,)]

    def test_builder_settings_apply(self, client: Client) -> None:
        tx = client.build_transaction().isolation_level(IsolationLevel.SERIALIZABLE).read_only().start()

        assert tx.query_one("SHOW transaction_isolation") == ("serializable",)
        assert tx.query_one("SHOW transaction_read_only") == ("on",)
        with pytest.raises(psycopg.errors.ReadOnlySqlTransaction):
            tx.execute("CREATE TEMPORARY TABLE nope (i INT)")
        tx.rollback()


class TestCancel:
    def test_cancel_from_another_thread(self, client: Client) -> None:
        token = client.cancel_token()
        timer = threading.Timer(CANCEL_DELAY_SECONDS, token.cancel_query)
        timer.start()
        try:
            with pytest.raises(psycopg.errors.QueryCanceled):
                client.execute("SELECT pg_sleep($1::float8)", [SLEEP_SECONDS])
        finally:
            timer.cancel()

        assert client.query_one("SELECT 5") == (5,)

    def test_cancel_with_nothing_running_is_harmless(self, client: Client) -> None:
        client.cancel_token().cancel_query()
        assert client.query_one("SELECT 6") == (6,)


class TestLifecycle:
    def test_backend_pid_matches_the_server(self, client: Client) -> None:
        assert client.query_one("SELECT pg_backend_pid()") == (client.backend_pid,)

    def test_close(self, client: Client) -> None:
        client.close()

        assert client.is_closed()
        with pytest.raises(RuntimeError, match="client is closed"):
            client.query("SELECT 1")
