"""
连接池监控模块
记录获取连接的等待时间与查询耗时，并通过 FastAPI 路由暴露统计、指标和健康检查
"""

import re
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.pool import PoolStats
from ..exceptions.database import DatabaseTimeoutError

_WHITESPACE = re.compile(r"\s+")


@dataclass
class PerformanceMetrics:
    """性能指标数据类"""
    acquire_count: int = 0
    acquire_errors: int = 0
    timeouts: int = 0
    total_acquire_wait: float = 0.0
    max_acquire_wait: float = 0.0
    query_count: int = 0
    error_count: int = 0
    total_execution_time: float = 0.0
    max_execution_time: float = 0.0
    min_execution_time: Optional[float] = None

    @property
    def avg_acquire_wait(self) -> float:
        return self.total_acquire_wait / self.acquire_count if self.acquire_count else 0.0

    @property
    def avg_execution_time(self) -> float:
        return self.total_execution_time / self.query_count if self.query_count else 0.0

    @property
    def error_rate(self) -> float:
        return self.error_count / self.query_count if self.query_count else 0.0


@dataclass
class QueryStats:
    """单条SQL的统计信息"""
    sql: str
    execution_count: int = 0
    error_count: int = 0
    total_time: float = 0.0
    max_time: float = 0.0
    min_time: Optional[float] = None

    @property
    def avg_time(self) -> float:
        return self.total_time / self.execution_count if self.execution_count else 0.0


class DatabaseMonitor:
    """
    数据库监控器
    统计连接获取与查询执行，按SQL文本聚合，最多跟踪 max_tracked_queries 条不同的SQL
    """

    def __init__(self, max_tracked_queries: int = 200):
        self.max_tracked_queries = max_tracked_queries
        self._metrics = PerformanceMetrics()
        self._query_stats: Dict[str, QueryStats] = {}

    def record_acquire(self, wait_time: float, error: Optional[BaseException] = None) -> None:
        """记录一次连接获取"""
        metrics = self._metrics
        if error is not None:
            metrics.acquire_errors += 1
            if isinstance(error, DatabaseTimeoutError):
                metrics.timeouts += 1
            return
        metrics.acquire_count += 1
        metrics.total_acquire_wait += wait_time
        metrics.max_acquire_wait = max(metrics.max_acquire_wait, wait_time)

    def record_query(self, sql: str, execution_time: float, success: bool = True) -> None:
        """记录查询执行信息"""
        metrics = self._metrics
        metrics.query_count += 1
        metrics.total_execution_time += execution_time
        metrics.max_execution_time = max(metrics.max_execution_time, execution_time)
        if metrics.min_execution_time is None or execution_time < metrics.min_execution_time:
            metrics.min_execution_time = execution_time
        if not success:
            metrics.error_count += 1

        key = _WHITESPACE.sub(" ", sql).strip()
        stats = self._query_stats.get(key)
        if stats is None:
            if len(self._query_stats) >= self.max_tracked_queries:
                return
            stats = self._query_stats[key] = QueryStats(sql=key)
        stats.execution_count += 1
        stats.total_time += execution_time
        stats.max_time = max(stats.max_time, execution_time)
        if stats.min_time is None or execution_time < stats.min_time:
            stats.min_time = execution_time
        if not success:
            stats.error_count += 1

    def get_metrics(self) -> PerformanceMetrics:
        """获取性能指标（副本）"""
        return replace(self._metrics)

    def get_query_stats(self, limit: Optional[int] = None) -> List[QueryStats]:
        """按总耗时从高到低获取查询统计"""
        ordered = sorted(self._query_stats.values(), key=lambda s: s.total_time, reverse=True)
        return ordered[:limit] if limit is not None else ordered

    def reset_metrics(self) -> None:
        """重置性能指标"""
        self._metrics = PerformanceMetrics()
        self._query_stats.clear()

    def snapshot(self, slowest: int = 10) -> Dict[str, Any]:
        metrics = self._metrics
        data = asdict(metrics)
        data.update(
            avg_acquire_wait=metrics.avg_acquire_wait,
            avg_execution_time=metrics.avg_execution_time,
            error_rate=metrics.error_rate,
            slowest_queries=[
                dict(asdict(stats), avg_time=stats.avg_time)
                for stats in self.get_query_stats(slowest)
            ]
        )
        return data


class PerformanceAnalyzer:
    """
    性能分析器
    结合连接池快照与监控指标给出调优建议
    """

    def __init__(self, monitor: DatabaseMonitor, error_rate_threshold: float = 0.05):
        self.monitor = monitor
        self.error_rate_threshold = error_rate_threshold

    def analyze(self, stats: PoolStats) -> Dict[str, Any]:
        """分析连接池状态"""
        if stats.closed:
            return {"status": "closed", "recommendations": []}

        metrics = self.monitor.get_metrics()
        recommendations = []
        if stats.waiting > 0 or metrics.timeouts > 0:
            recommendations.append(
                f"pool saturated ({stats.in_use}/{stats.max_size} in use, {stats.waiting} waiting, "
                f"{metrics.timeouts} timeouts); consider raising max_size"
            )
        if metrics.query_count and metrics.error_rate > self.error_rate_threshold:
            recommendations.append(
                f"query error rate {metrics.error_rate:.1%} exceeds {self.error_rate_threshold:.0%}; "
                f"failed queries discard their connections"
            )

        return {
            "status": "degraded" if recommendations else "healthy",
            "recommendations": recommendations
        }


def create_monitor_router(api_dependency: Callable) -> APIRouter:
    """
    创建监控路由

    Args:
        api_dependency: 返回 DatabaseInternalAPI 的 FastAPI 依赖项

    Returns:
        APIRouter: 包含 /stats、/metrics、/health 的路由
    """
    router = APIRouter()

    @router.get("/stats")
    async def pool_stats(api=Depends(api_dependency)) -> Dict[str, Any]:
        return api.stats().as_dict()

    @router.get("/metrics")
    async def pool_metrics(api=Depends(api_dependency)) -> Dict[str, Any]:
        analysis = PerformanceAnalyzer(api.monitor).analyze(api.stats())
        return {**api.monitor.snapshot(), **analysis}

    @router.get("/health")
    async def pool_health(api=Depends(api_dependency)):
        healthy = await api.health_check()
        body = {"status": "healthy" if healthy else "unhealthy", "pool": api.stats().as_dict()}
        return JSONResponse(body, status_code=200 if healthy else 503)

    return router
