"""
内部公共API接口模块
在连接池之上提供插件内部使用的非HTTP接口：
上下文管理器、回调风格适配、单条查询以及不经过连接池的单连接
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, Optional, Sequence, Union

from ..config.settings import DatabaseConfig
from ..core.connection import PooledConnection, TransportFactory, UnitOfWork
from ..core.pool import AsyncConnectionPool, PoolStats
from ..exceptions.database import DatabaseError, DatabaseQueryError
from ..features.monitor import DatabaseMonitor

logger = logging.getLogger(__name__)

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]
AcquireCallback = Callable[[Optional[DatabaseError], Optional[PooledConnection]], Any]


class DatabaseInternalAPI:
    """
    数据库内部公共API接口
    所有获取方式（上下文管理器、回调、一次性查询）都基于同一个 AsyncConnectionPool.acquire
    """

    def __init__(self, pool: AsyncConnectionPool, monitor: Optional[DatabaseMonitor] = None):
        self.pool = pool
        self.monitor = monitor or DatabaseMonitor()

    async def start(self) -> None:
        """启动连接池（预建 min_idle 个连接）"""
        await self.pool.start()

    # ========== 连接获取 ==========

    async def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """
        获取连接并记录等待时间

        Args:
            timeout: 等待秒数，None 使用连接池配置

        Returns:
            PooledConnection: 数据库连接，用完需调用 release
        """
        started = time.perf_counter()
        try:
            connection = await self.pool.acquire(timeout)
        except DatabaseError as e:
            self.monitor.record_acquire(time.perf_counter() - started, e)
            raise
        self.monitor.record_acquire(time.perf_counter() - started)
        return connection

    async def release(self, connection: PooledConnection) -> None:
        """归还连接"""
        await self.pool.release(connection)

    @asynccontextmanager
    async def get_connection(self, timeout: Optional[float] = None) -> AsyncGenerator[PooledConnection, None]:
        """
        获取数据库连接（上下文管理器），退出时自动归还

        Yields:
            PooledConnection: 数据库连接
        """
        connection = await self.acquire(timeout)
        try:
            yield connection
        finally:
            await self.release(connection)

    def acquire_with_callback(self, callback: AcquireCallback,
                              timeout: Optional[float] = None) -> "asyncio.Task":
        """
        回调风格获取连接

        callback(error, connection) 只会被调用一次：成功时 error 为 None，
        调用方负责对 connection 调用 release；失败时 connection 为 None。
        callback 自身抛出的异常会保存在返回的任务上，调用方需要 await 或保留该任务。

        Returns:
            asyncio.Task: 执行获取的任务
        """
        async def _run():
            try:
                connection = await self.acquire(timeout)
            except DatabaseError as e:
                callback(e, None)
                return
            try:
                callback(None, connection)
            except BaseException:
                await self.release(connection)
                raise

        return asyncio.get_running_loop().create_task(_run())

    # ========== 执行 ==========

    async def execute(self, work: UnitOfWork, timeout: Optional[float] = None) -> Any:
        """
        借一个连接执行工作单元后归还

        Args:
            work: 接收底层驱动连接的协程函数
            timeout: 获取连接的等待秒数
        """
        async with self.get_connection(timeout) as connection:
            return await connection.execute(work)

    async def _run_sql(self, sql: str, params: Params, timeout: Optional[float]) -> Any:
        async with self.get_connection(timeout) as connection:
            started = time.perf_counter()
            try:
                result = await connection.query(sql, params)
            except DatabaseQueryError:
                self.monitor.record_query(sql, time.perf_counter() - started, success=False)
                raise
            self.monitor.record_query(sql, time.perf_counter() - started)
            return result

    async def execute_query(self, sql: str, params: Params = None,
                            timeout: Optional[float] = None) -> Any:
        """
        执行SQL查询

        Args:
            sql: SQL语句
            params: 参数列表或字典
            timeout: 获取连接的等待秒数

        Returns:
            Any: 结果行
        """
        return await self._run_sql(sql, params, timeout)

    async def execute_write(self, sql: str, params: Params = None,
                            timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        执行写操作

        Returns:
            Dict[str, Any]: rowcount 与 lastrowid
        """
        result = await self._run_sql(sql, params, timeout)
        if not isinstance(result, dict):
            raise DatabaseQueryError(f"写操作返回了结果集: {sql}")
        return result

    # ========== 状态 ==========

    async def health_check(self, timeout: Optional[float] = None) -> bool:
        """
        执行健康检查：借出一个连接并探活

        Returns:
            bool: 连接池可用且探活成功
        """
        try:
            async with self.get_connection(timeout) as connection:
                await connection.ping()
        except DatabaseError as e:
            logger.warning(f"Database health check failed: {e}")
            return False
        return True

    def stats(self) -> PoolStats:
        """获取连接池统计信息"""
        return self.pool.stats

    async def close(self) -> None:
        """关闭连接池"""
        await self.pool.shutdown()


def init_internal_api(config: DatabaseConfig,
                      factory: Optional[TransportFactory] = None,
                      monitor: Optional[DatabaseMonitor] = None) -> DatabaseInternalAPI:
    """
    创建内部API实例

    Args:
        config: 数据库配置
        factory: 传输工厂，默认使用配置的驱动
        monitor: 监控器，默认新建

    Returns:
        DatabaseInternalAPI: 内部API实例
    """
    return DatabaseInternalAPI(AsyncConnectionPool(config, factory), monitor)


async def open_single_connection(config: DatabaseConfig,
                                 factory: Optional[TransportFactory] = None) -> PooledConnection:
    """
    不经过连接池建立一个独立连接，调用方负责 close

    Raises:
        DatabaseConnectionError: 连接建立失败
    """
    connection = PooledConnection(config, factory)
    await connection.open()
    logger.info(f"Opened standalone connection {connection.id} to {config.connection_url}")
    return connection
