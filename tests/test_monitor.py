"""
Tests for the monitor, the FastAPI routes and plugin registration
"""

import httpx
import pytest
from fastapi import FastAPI

import mysqlpool
from mysqlpool.core.pool import PoolStats
from mysqlpool.exceptions.database import DatabaseConfigError, DatabaseTimeoutError
from mysqlpool.features.monitor import DatabaseMonitor, PerformanceAnalyzer

from fakes import make_config


def pool_stats(**overrides) -> PoolStats:
    values = dict(total=1, idle=1, in_use=0, waiting=0, connecting=0, max_size=10, closed=False)
    values.update(overrides)
    return PoolStats(**values)


class TestDatabaseMonitor:
    """Tests for DatabaseMonitor"""

    def test_records_queries(self):
        """Should aggregate timings per normalised statement"""
        monitor = DatabaseMonitor()
        monitor.record_query("SELECT *\n  FROM t", 0.2)
        monitor.record_query("SELECT * FROM t", 0.1)
        monitor.record_query("UPDATE t SET a = 1", 0.5, success=False)

        metrics = monitor.get_metrics()
        assert metrics.query_count == 3
        assert metrics.error_count == 1
        assert metrics.min_execution_time == 0.1
        assert metrics.max_execution_time == 0.5

        stats = monitor.get_query_stats()
        assert [s.sql for s in stats] == ["UPDATE t SET a = 1", "SELECT * FROM t"]
        assert stats[1].execution_count == 2
        assert stats[1].avg_time == pytest.approx(0.15)

    def test_records_acquires(self):
        """Should track wait times and timeouts separately"""
        monitor = DatabaseMonitor()
        monitor.record_acquire(0.01)
        monitor.record_acquire(0.03)
        monitor.record_acquire(0.05, DatabaseTimeoutError("timeout", 0.05))

        metrics = monitor.get_metrics()
        assert metrics.acquire_count == 2
        assert metrics.acquire_errors == 1
        assert metrics.timeouts == 1
        assert metrics.avg_acquire_wait == pytest.approx(0.02)

    def test_tracked_query_limit(self):
        """Should stop tracking new statements at the limit"""
        monitor = DatabaseMonitor(max_tracked_queries=1)
        monitor.record_query("SELECT 1", 0.1)
        monitor.record_query("SELECT 2", 0.1)

        assert len(monitor.get_query_stats()) == 1
        assert monitor.get_metrics().query_count == 2

    def test_reset(self):
        """Should clear everything"""
        monitor = DatabaseMonitor()
        monitor.record_query("SELECT 1", 0.1)
        monitor.reset_metrics()

        assert monitor.get_metrics().query_count == 0
        assert monitor.get_query_stats() == []


class TestPerformanceAnalyzer:
    """Tests for PerformanceAnalyzer"""

    def test_healthy(self):
        assert PerformanceAnalyzer(DatabaseMonitor()).analyze(pool_stats())["status"] == "healthy"

    def test_saturated_pool(self):
        """Should recommend a larger pool when callers queue"""
        result = PerformanceAnalyzer(DatabaseMonitor()).analyze(pool_stats(waiting=3, in_use=10))
        assert result["status"] == "degraded"
        assert "max_size" in result["recommendations"][0]

    def test_error_rate(self):
        """Should flag a high query error rate"""
        monitor = DatabaseMonitor()
        monitor.record_query("SELECT 1", 0.1, success=False)
        result = PerformanceAnalyzer(monitor).analyze(pool_stats())
        assert result["status"] == "degraded"

    def test_closed(self):
        assert PerformanceAnalyzer(DatabaseMonitor()).analyze(pool_stats(closed=True))["status"] == "closed"


@pytest.fixture
async def app(factory):
    app = FastAPI()
    mysqlpool.register(app, config=make_config(max_size=2), factory=factory)
    yield app
    await mysqlpool.shutdown(app)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestRoutes:
    """Tests for the /mysqlpool routes"""

    async def test_stats(self, client):
        """Should expose the pool snapshot"""
        response = await client.get("/mysqlpool/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total": 0, "idle": 0, "in_use": 0, "waiting": 0,
            "connecting": 0, "max_size": 2, "closed": False,
        }

    async def test_health(self, client):
        """Should report healthy when the probe succeeds"""
        response = await client.get("/mysqlpool/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["pool"]["idle"] == 1

    async def test_health_unavailable(self, client, factory):
        """Should return 503 when the database cannot be reached"""
        factory.errors.append(OSError("refused"))

        response = await client.get("/mysqlpool/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    async def test_metrics(self, app, client):
        """Should expose monitor metrics with the analysis"""
        await app.state.mysqlpool.execute_query("SELECT * FROM your_table")

        response = await client.get("/mysqlpool/metrics")

        body = response.json()
        assert response.status_code == 200
        assert body["query_count"] == 1
        assert body["status"] == "healthy"
        assert body["slowest_queries"][0]["sql"] == "SELECT * FROM your_table"


class TestRegister:
    """Tests for plugin registration"""

    async def test_register_from_environment(self, monkeypatch):
        """Should build the pool from MYSQL_* variables and mount the routes"""
        monkeypatch.setenv("MYSQL_HOST", "localhost")
        monkeypatch.setenv("MYSQL_USER", "root")
        monkeypatch.setenv("MYSQL_PASSWORD", "password")
        monkeypatch.setenv("MYSQL_DATABASE", "my_db")
        monkeypatch.setenv("MYSQL_POOL_MAX_SIZE", "3")
        app = FastAPI()

        api = mysqlpool.register(app)

        assert app.state.mysqlpool is api
        assert api.pool.max_size == 3
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/mysqlpool/stats")
        assert response.status_code == 200
        assert response.json()["max_size"] == 3
        await mysqlpool.shutdown(app)

    def test_register_fails_on_bad_config(self, monkeypatch):
        """Should raise when required variables are missing"""
        for name in ("MYSQL_HOST", "MYSQL_USER", "MYSQL_PASSWORD", "MYSQL_DATABASE"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(DatabaseConfigError):
            mysqlpool.register(FastAPI())

    async def test_shutdown_without_register(self):
        """Should be a no-op for apps without the plugin"""
        await mysqlpool.shutdown(FastAPI())
