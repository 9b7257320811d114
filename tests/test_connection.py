"""
Tests for PooledConnection and DriverTransport

Coverage includes:
- open success / failure wrapping
- ping liveness and BROKEN transition
- execute / query passthrough and failure handling
- idempotent close
"""

import asyncio

import pytest

from mysqlpool.core.connection import ConnectionState, DriverTransport, PooledConnection
from mysqlpool.exceptions.database import (
    DatabaseConnectionError,
    DatabaseHealthCheckError,
    DatabaseQueryError
)

from fakes import FakeFactory, FakeRaw, make_config


async def open_connection(factory=None) -> PooledConnection:
    connection = PooledConnection(make_config(), factory or FakeFactory())
    return await connection.open()


class TestPooledConnection:
    """Tests for PooledConnection"""

    class TestOpen:
        async def test_open_moves_to_idle(self):
            """Should be IDLE with a live transport after open"""
            connection = PooledConnection(make_config(), FakeFactory())
            assert connection.state == ConnectionState.CONNECTING

            await connection.open()

            assert connection.state == ConnectionState.IDLE
            assert isinstance(connection.raw, FakeRaw)

        async def test_ids_are_unique(self):
            """Should give every connection its own id"""
            first = PooledConnection(make_config(), FakeFactory())
            second = PooledConnection(make_config(), FakeFactory())
            assert first.id != second.id

        async def test_open_failure_raises_connect_error(self):
            """Should wrap transport failures in DatabaseConnectionError"""
            factory = FakeFactory()
            factory.errors.append(OSError("connection refused"))
            connection = PooledConnection(make_config(), factory)

            with pytest.raises(DatabaseConnectionError) as exc_info:
                await connection.open()

            assert isinstance(exc_info.value.original_error, OSError)
            assert connection.state == ConnectionState.BROKEN
            assert factory.attempts == 1

    class TestPing:
        async def test_ping_runs_select_one(self):
            """Should probe with SELECT 1"""
            connection = await open_connection()
            await connection.ping()
            assert connection.raw.executed == [("SELECT 1", None)]

        async def test_ping_failure_marks_broken(self):
            """Should raise DatabaseHealthCheckError and mark BROKEN"""
            connection = await open_connection()
            connection.raw.ping_error = ConnectionResetError("gone away")

            with pytest.raises(DatabaseHealthCheckError):
                await connection.ping()

            assert connection.is_broken

        async def test_ping_on_closed_connection(self):
            """Should fail the health check once closed"""
            connection = await open_connection()
            await connection.close()

            with pytest.raises(DatabaseHealthCheckError):
                await connection.ping()

    class TestExecute:
        async def test_execute_passes_raw_connection(self):
            """Should hand the raw driver connection to the unit of work"""
            connection = await open_connection()
            seen = []

            async def work(raw):
                seen.append(raw)
                return "done"

            assert await connection.execute(work) == "done"
            assert seen == [connection.raw]

        async def test_execute_failure_marks_broken(self):
            """Should raise DatabaseQueryError chained to the cause and mark BROKEN"""
            connection = await open_connection()

            async def work(raw):
                raise RuntimeError("lost connection during query")

            with pytest.raises(DatabaseQueryError) as exc_info:
                await connection.execute(work)

            assert isinstance(exc_info.value.__cause__, RuntimeError)
            assert connection.is_broken

        async def test_cancelled_execute_marks_broken(self):
            """Should not trust a connection interrupted mid-query"""
            connection = await open_connection()
            connection.raw.query_delay = 10

            task = asyncio.create_task(connection.query("SELECT * FROM t"))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert connection.is_broken

        async def test_execute_on_broken_connection(self):
            """Should refuse work on a BROKEN connection"""
            connection = await open_connection()
            connection.mark_broken()

            async def work(raw):
                return 1

            with pytest.raises(DatabaseQueryError):
                await connection.execute(work)

    class TestQuery:
        async def test_select_returns_rows(self):
            """Should return fetched rows for statements with a result set"""
            connection = await open_connection()
            rows = await connection.query("SELECT * FROM your_table WHERE id = %s", (1,))
            assert rows == [(connection.raw.number,)]
            assert connection.raw.executed[-1] == ("SELECT * FROM your_table WHERE id = %s", (1,))

        async def test_write_returns_rowcount(self):
            """Should return rowcount and lastrowid for writes"""
            connection = await open_connection()
            result = await connection.query("INSERT INTO t (a) VALUES (%s)", (1,))
            assert result == {"rowcount": 1, "lastrowid": 42}

    class TestClose:
        async def test_close_is_idempotent(self):
            """Should close the transport once and tolerate repeated calls"""
            connection = await open_connection()
            raw = connection.raw

            await connection.close()
            await connection.close()

            assert connection.is_closed
            assert raw.closed
            assert connection.raw is None

        async def test_close_never_opened(self):
            """Should close a connection that never opened"""
            connection = PooledConnection(make_config(), FakeFactory())
            await connection.close()
            assert connection.is_closed


class TestDriverTransport:
    """Tests for DriverTransport"""

    async def test_close_falls_back_to_hard_close(self):
        """Should hard-close the socket when the graceful quit fails"""
        raw = FakeRaw(1)
        raw.close_error = BrokenPipeError("pipe")

        await DriverTransport(raw).close()

        assert raw.hard_closed
        assert not raw.closed
