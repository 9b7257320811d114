"""
功能模块 - 连接池监控
提供获取/查询指标统计、调优建议以及监控路由
"""

from .monitor import DatabaseMonitor, PerformanceAnalyzer, PerformanceMetrics, QueryStats, create_monitor_router

__all__ = [
    'DatabaseMonitor',
    'PerformanceAnalyzer',
    'PerformanceMetrics',
    'QueryStats',
    'create_monitor_router'
]
