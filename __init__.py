"""
yoapi-plugin-mysqlpool - MySQL 异步连接池插件
提供有界连接池、排队等待、失效连接剔除、空闲回收和优雅关闭，以及连接池监控路由
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import Request

from .config.settings import DatabaseConfig, DatabaseConfigManager, PoolConfig
from .core.connection import PooledConnection, TransportFactory
from .core.pool import AsyncConnectionPool, PoolStats
from .exceptions.database import (
    ConnectionPoolExhaustedError,
    DatabaseConfigError,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseHealthCheckError,
    DatabaseQueryError,
    DatabaseRuntimeError,
    DatabaseTimeoutError,
    PoolClosedError
)
from .features.monitor import create_monitor_router
from .interfaces.internal_api import DatabaseInternalAPI, init_internal_api, open_single_connection

# 加载环境变量
env_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(env_path):
    load_dotenv(env_path)

logger = logging.getLogger(__name__)

STATE_KEY = "mysqlpool"

__all__ = [
    'AsyncConnectionPool',
    'ConnectionPoolExhaustedError',
    'DatabaseConfig',
    'DatabaseConfigError',
    'DatabaseConfigManager',
    'DatabaseConnectionError',
    'DatabaseError',
    'DatabaseHealthCheckError',
    'DatabaseInternalAPI',
    'DatabaseQueryError',
    'DatabaseRuntimeError',
    'DatabaseTimeoutError',
    'PoolClosedError',
    'PoolConfig',
    'PoolStats',
    'PooledConnection',
    'get_database_api',
    'init_internal_api',
    'open_single_connection',
    'register',
    'shutdown'
]


def get_database_api(request: Request) -> DatabaseInternalAPI:
    """
    获取数据库API实例依赖项

    Returns:
        DatabaseInternalAPI: 注册在应用上的数据库内部API实例
    """
    api = getattr(request.app.state, STATE_KEY, None)
    if api is None:
        raise DatabaseError("数据库API未初始化")
    return api


def register(app, config: Optional[DatabaseConfig] = None,
             factory: Optional[TransportFactory] = None, **dependencies) -> DatabaseInternalAPI:
    """
    插件注册函数
    创建连接池与内部API，挂到 app.state 上并注册 /mysqlpool 监控路由

    连接池在第一次获取连接时惰性启动，需要预建连接时在应用启动阶段调用 api.start()。

    Args:
        app: FastAPI 应用
        config: 数据库配置，为None时从 MYSQL_* 环境变量加载
        factory: 传输工厂，默认使用配置的驱动
        dependencies: 宿主框架传入的共享依赖项，本插件不使用

    Returns:
        DatabaseInternalAPI: 数据库内部API实例
    """
    try:
        if config is None:
            config = DatabaseConfigManager().get_default_config()

        api = init_internal_api(config, factory)
        setattr(app.state, STATE_KEY, api)
        app.include_router(create_monitor_router(get_database_api), prefix="/mysqlpool", tags=["mysqlpool"])

        logger.info("MySQL连接池插件已成功注册")
        logger.info(
            f"数据库配置: {config.host}:{config.port}/{config.database} "
            f"(driver={config.driver}, max_size={config.pool.max_size}, min_idle={config.pool.min_idle})"
        )
        return api
    except DatabaseError as e:
        logger.error(f"MySQL连接池插件注册失败: {e}")
        raise


async def shutdown(app) -> None:
    """插件关闭时的清理操作"""
    api = getattr(app.state, STATE_KEY, None)
    if api is None:
        return
    await api.close()
    logger.info("MySQL连接池插件已关闭，连接池已清理")
