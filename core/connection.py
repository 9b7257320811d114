"""
数据库连接模块
封装单个物理MySQL连接的生命周期：建立、健康检查、执行工作单元、关闭
驱动层支持 aiomysql 与 asyncmy，也可以注入自定义的传输工厂
"""

import asyncio
import itertools
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import aiomysql
from asyncmy import connect as asyncmy_connect

from ..config import DatabaseConfig
from ..exceptions.database import (
    DatabaseConnectionError,
    DatabaseHealthCheckError,
    DatabaseQueryError
)

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[Any], Awaitable[Any]]


class ConnectionState(str, Enum):
    """连接状态"""
    CONNECTING = "connecting"
    IDLE = "idle"
    IN_USE = "in_use"
    CLOSED = "closed"
    BROKEN = "broken"


class DriverTransport:
    """驱动连接适配器，统一 aiomysql / asyncmy 的探活与关闭方式"""

    def __init__(self, raw: Any):
        self.raw = raw

    async def ping(self) -> None:
        async with self.raw.cursor() as cursor:
            await cursor.execute("SELECT 1")
            await cursor.fetchone()

    async def close(self) -> None:
        try:
            # 发送 COM_QUIT 后关闭
            await self.raw.ensure_closed()
        except Exception as e:
            logger.debug(f"Graceful close failed ({e}), closing socket")
            self.raw.close()


TransportFactory = Callable[[DatabaseConfig], Awaitable[Any]]


async def open_transport(config: DatabaseConfig) -> DriverTransport:
    """
    根据配置的驱动建立物理连接

    Args:
        config: 数据库配置

    Returns:
        DriverTransport: 包装后的驱动连接
    """
    if config.driver == "aiomysql":
        raw = await aiomysql.connect(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            db=config.database,
            charset=config.charset,
            autocommit=config.autocommit,
            connect_timeout=config.connect_timeout
        )
    elif config.driver == "asyncmy":
        raw = await asyncmy_connect(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            database=config.database,
            charset=config.charset,
            autocommit=config.autocommit,
            connect_timeout=config.connect_timeout
        )
    else:
        raise DatabaseConnectionError(f"Unsupported database driver: {config.driver}")
    return DriverTransport(raw)


_connection_ids = itertools.count(1)


class PooledConnection:
    """
    池化连接

    持有一个驱动传输对象以及连接池记账所需的状态和时间戳（time.monotonic）。
    任何执行期的失败都会把连接标记为 BROKEN，之后不会再被复用。
    """

    def __init__(self, config: DatabaseConfig, factory: Optional[TransportFactory] = None):
        self.id = f"conn-{next(_connection_ids)}"
        self.config = config
        self._factory = factory or open_transport
        self.transport: Any = None
        self.state = ConnectionState.CONNECTING
        self.created_at = time.monotonic()
        self.last_used_at = self.created_at
        self.use_count = 0

    def __repr__(self) -> str:
        return f"<PooledConnection {self.id} state={self.state.value}>"

    @property
    def raw(self) -> Any:
        """底层驱动连接对象"""
        return self.transport.raw if self.transport is not None else None

    @property
    def is_broken(self) -> bool:
        return self.state == ConnectionState.BROKEN

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def idle_for(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_used_at

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.created_at

    def mark_broken(self) -> None:
        if self.state != ConnectionState.CLOSED:
            self.state = ConnectionState.BROKEN

    async def open(self) -> "PooledConnection":
        """
        建立物理连接，失败不在内部重试

        Raises:
            DatabaseConnectionError: 传输层无法建立
        """
        try:
            self.transport = await self._factory(self.config)
        except asyncio.CancelledError:
            self.state = ConnectionState.CLOSED
            raise
        except DatabaseConnectionError:
            self.state = ConnectionState.BROKEN
            raise
        except Exception as e:
            self.state = ConnectionState.BROKEN
            raise DatabaseConnectionError(f"Failed to create database connection: {e}", e) from e

        self.created_at = self.last_used_at = time.monotonic()
        self.state = ConnectionState.IDLE
        logger.debug(f"Opened {self.id} to {self.config.host}:{self.config.port}")
        return self

    async def ping(self) -> None:
        """
        轻量探活

        Raises:
            DatabaseHealthCheckError: 连接已失效
        """
        if self.transport is None or self.state in (ConnectionState.CLOSED, ConnectionState.BROKEN):
            raise DatabaseHealthCheckError(f"Connection {self.id} is {self.state.value}")
        try:
            await self.transport.ping()
        except asyncio.CancelledError:
            self.mark_broken()
            raise
        except Exception as e:
            self.mark_broken()
            raise DatabaseHealthCheckError(f"Health check failed for {self.id}: {e}", e) from e

    async def execute(self, work: UnitOfWork) -> Any:
        """
        在本连接上执行一个工作单元

        Args:
            work: 接收底层驱动连接的协程函数

        Returns:
            Any: 工作单元的返回值

        Raises:
            DatabaseQueryError: 执行失败，连接同时被标记为 BROKEN
        """
        if self.transport is None or self.state in (ConnectionState.CLOSED, ConnectionState.BROKEN):
            raise DatabaseQueryError(f"Connection {self.id} is {self.state.value}")
        try:
            return await work(self.transport.raw)
        except asyncio.CancelledError:
            # 协议交互被打断，连接状态不可知
            self.mark_broken()
            raise
        except Exception as e:
            self.mark_broken()
            raise DatabaseQueryError(f"Failed to execute query: {e}", e) from e

    async def query(self, sql: str, params: Optional[Union[Sequence[Any], dict]] = None) -> Any:
        """
        执行单条SQL

        Returns:
            Any: 有结果集时返回 fetchall() 的行，否则返回影响行数与 lastrowid
        """
        async def work(raw):
            async with raw.cursor() as cursor:
                await cursor.execute(sql, params)
                if cursor.description is not None:
                    return await cursor.fetchall()
                return {"rowcount": cursor.rowcount, "lastrowid": cursor.lastrowid}

        return await self.execute(work)

    async def close(self) -> None:
        """关闭连接，可重复调用"""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        transport, self.transport = self.transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing connection {self.id}: {e}")
        else:
            logger.debug(f"Closed {self.id}")
