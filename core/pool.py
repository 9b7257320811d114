"""
连接池管理模块
负责连接的借出、归还、按需创建、失效连接剔除、空闲回收以及优雅关闭

所有计数与登记表的修改都在事件循环的同步片段中完成（检查与修改之间没有 await），
网络 I/O（open / ping / close）都发生在名额已经记账之后。
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncGenerator, Dict, Optional, Set

from ..config import DatabaseConfig
from ..exceptions.database import (
    ConnectionPoolExhaustedError,
    DatabaseConfigError,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseHealthCheckError,
    DatabaseRuntimeError,
    DatabaseTimeoutError,
    PoolClosedError
)
from .connection import ConnectionState, PooledConnection, TransportFactory
from .registry import IdleRegistry
from .waiters import Waiter, WaiterQueue

logger = logging.getLogger(__name__)


@dataclass
class PoolStats:
    """连接池统计快照"""
    total: int
    idle: int
    in_use: int
    waiting: int
    connecting: int
    max_size: int
    closed: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AsyncConnectionPool:
    """异步MySQL连接池管理类"""

    def __init__(self, config: DatabaseConfig, factory: Optional[TransportFactory] = None):
        """
        初始化连接池

        Args:
            config: 数据库配置，连接池参数取自 config.pool
            factory: 传输工厂，默认按 config.driver 使用 aiomysql / asyncmy

        Raises:
            DatabaseConfigError: 连接池配置非法
        """
        config.pool.validate()
        self.config = config
        self.pool_config = config.pool
        self._factory = factory
        self._max_size = config.pool.max_size
        self._min_idle = self._clamp_min_idle(config.pool.min_idle, self._max_size)

        self._idle = IdleRegistry()
        self._in_use: Dict[str, PooledConnection] = {}
        self._connecting = 0
        self._waiters = WaiterQueue()
        # 已出队、正在为其新建连接的等待者
        self._assigned: Dict[int, Waiter] = {}

        self._closed = False
        self._is_initialized = False
        self._sweeper: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def _clamp_min_idle(min_idle: int, max_size: int) -> int:
        if min_idle > max_size:
            logger.warning(f"min_idle ({min_idle}) exceeds max_size ({max_size}), using {max_size}")
            return max_size
        return min_idle

    # ========== 状态 ==========

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def min_idle(self) -> int:
        return self._min_idle

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def _total(self) -> int:
        return len(self._idle) + len(self._in_use) + self._connecting

    @property
    def stats(self) -> PoolStats:
        """获取连接池统计信息"""
        return PoolStats(
            total=self._total,
            idle=len(self._idle),
            in_use=len(self._in_use),
            waiting=len(self._waiters),
            connecting=self._connecting,
            max_size=self._max_size,
            closed=self._closed
        )

    # ========== 生命周期 ==========

    async def start(self) -> None:
        """
        启动连接池：预先创建 min_idle 个连接并启动空闲回收任务

        Raises:
            PoolClosedError: 连接池已关闭
            DatabaseConnectionError: 预建连接失败
        """
        if self._closed:
            raise PoolClosedError("Connection pool is closed")
        # 连接池可能已被 acquire 惰性启动，预建仍然需要补足
        self._ensure_started()
        await self._fill_min_idle()
        logger.info(
            f"Connection pool initialized for {self.config.connection_url} "
            f"with {self._total} connections (max {self._max_size})"
        )

    def _ensure_started(self) -> None:
        if self._is_initialized:
            return
        self._is_initialized = True
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def shutdown(self) -> None:
        """
        关闭连接池

        等待中的与之后的获取请求都会收到 PoolClosedError；空闲连接立即关闭，
        使用中的连接在归还时关闭，不会打断正在执行的工作。
        """
        if self._closed:
            return
        self._closed = True

        for waiter in self._waiters.drain() + list(self._assigned.values()):
            waiter.fail(PoolClosedError("Connection pool is closed"))

        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        # 进行中的建连与关闭在 connect_timeout 内结束，之后各自关闭连接
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        idle = self._idle.drain()
        for connection in idle:
            await connection.close()

        logger.info(
            f"Connection pool closed ({len(idle)} idle closed, "
            f"{len(self._in_use)} in use will close on release)"
        )

    close = shutdown

    async def resize(self, max_size: int) -> None:
        """
        运行时调整最大连接数

        缩小时多余的空闲连接立即关闭，使用中的连接在归还时关闭；
        扩大时立即为等待中的请求创建连接。
        """
        if not isinstance(max_size, int) or max_size <= 0:
            raise DatabaseConfigError(f"max_size must be a positive integer, got {max_size!r}")
        self._max_size = max_size
        self._min_idle = self._clamp_min_idle(self.pool_config.min_idle, max_size)

        excess = []
        while self._total > self._max_size and len(self._idle):
            excess.append(self._idle.pop_oldest())
        self._serve_waiters()

        for connection in excess:
            await connection.close()
        logger.info(f"Connection pool resized to {max_size} ({len(excess)} idle closed)")

    # ========== 借出与归还 ==========

    async def acquire(self, timeout: Optional[float] = None) -> PooledConnection:
        """
        从连接池获取连接

        Args:
            timeout: 等待秒数，None 使用配置的 acquire_timeout_ms，<= 0 表示无限等待

        Returns:
            PooledConnection: 处于 IN_USE 状态的连接，用完必须 release

        Raises:
            PoolClosedError: 连接池已关闭
            DatabaseTimeoutError: 等待超时
            DatabaseConnectionError: 为本次请求新建连接失败
            ConnectionPoolExhaustedError: 等待队列已满
        """
        if self._closed:
            raise PoolClosedError("Connection pool is closed")
        self._ensure_started()

        loop = asyncio.get_running_loop()
        if timeout is None:
            timeout = self.pool_config.acquire_timeout
        deadline = loop.time() + timeout if timeout and timeout > 0 else None

        while True:
            if self._closed:
                raise PoolClosedError("Connection pool is closed")

            connection = self._idle.pop_most_recent()
            if connection is not None:
                if self._is_expired(connection, time.monotonic(), len(self._idle) + 1):
                    self._serve_waiters()
                    await connection.close()
                    continue
                self._checkout(connection)
                if self._needs_health_check(connection):
                    try:
                        await connection.ping()
                    except DatabaseHealthCheckError as e:
                        logger.warning(f"Discarding unhealthy connection: {e}")
                        self._in_use.pop(connection.id, None)
                        self._serve_waiters()
                        await connection.close()
                        continue
                    except BaseException:
                        self._in_use.pop(connection.id, None)
                        self._serve_waiters()
                        self._spawn(connection.close())
                        raise
                return connection

            if self._total < self._max_size:
                self._connecting += 1
                connection = await self._open_reserved()
                if self._closed:
                    await connection.close()
                    raise PoolClosedError("Connection pool is closed")
                self._checkout(connection)
                return connection

            return await self._wait(loop, deadline, timeout)

    async def _wait(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float],
                    timeout: Optional[float]) -> PooledConnection:
        max_waiters = self.pool_config.max_waiters
        if max_waiters and len(self._waiters) >= max_waiters:
            raise ConnectionPoolExhaustedError(
                f"Connection pool exhausted ({self._max_size} connections, {len(self._waiters)} waiting)"
            )

        waiter = Waiter(loop, deadline)
        self._waiters.push(waiter)
        if deadline is not None:
            waiter.timer = loop.call_at(deadline, self._expire_waiter, waiter, timeout)

        try:
            return await waiter.future
        except asyncio.CancelledError:
            self._waiters.cancel(waiter)
            future = waiter.future
            if future.done() and not future.cancelled() and future.exception() is None:
                # 取消之前已经交付了连接，收回
                self._reclaim(future.result())
            raise

    def _expire_waiter(self, waiter: Waiter, timeout: float) -> None:
        waiter.timer = None
        self._waiters.remove(waiter)
        waiter.fail(DatabaseTimeoutError(
            f"Timeout waiting for database connection after {timeout:.3f}s", timeout
        ))

    async def release(self, connection: PooledConnection) -> None:
        """
        归还连接

        健康的连接直接交给最早的等待者，没有等待者时放回空闲表；
        损坏的连接被关闭，并在容量允许时为等待者补建新连接。

        Raises:
            DatabaseRuntimeError: 连接不属于本连接池或已经归还过
        """
        if self._in_use.get(connection.id) is not connection:
            raise DatabaseRuntimeError(f"Connection {connection.id} is not in use by this pool")
        del self._in_use[connection.id]

        healthy = connection.state == ConnectionState.IN_USE
        if healthy and self._recycle(connection):
            return

        if not healthy:
            logger.debug(f"Released {connection.state.value} connection {connection.id}, closing")
        self._serve_waiters()
        await connection.close()

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None) -> AsyncGenerator[PooledConnection, None]:
        """
        获取连接上下文管理器，退出时自动归还

        Yields:
            PooledConnection: 数据库连接
        """
        connection = await self.acquire(timeout)
        try:
            yield connection
        finally:
            await self.release(connection)

    # ========== 空闲回收 ==========

    async def evict_idle_expired(self) -> int:
        """
        关闭超过 idle_timeout 或 max_lifetime 的空闲连接

        空闲超时的回收不会让空闲连接数低于 min_idle，超过最长存活时间的连接总是回收；
        回收后会补足 min_idle，补建失败只记录警告，下一次回收时重试。

        Returns:
            int: 被关闭的连接数
        """
        now = time.monotonic()
        idle_timeout = self.pool_config.idle_timeout
        remaining = len(self._idle)
        expired = []

        for connection in self._idle:
            if self._lifetime_exceeded(connection, now):
                expired.append(connection)
                remaining -= 1
            elif idle_timeout and connection.idle_for(now) > idle_timeout and remaining > self._min_idle:
                expired.append(connection)
                remaining -= 1

        for connection in expired:
            self._idle.remove(connection)
        if expired:
            self._serve_waiters()
            logger.debug(f"Evicting {len(expired)} expired idle connections")
        for connection in expired:
            await connection.close()

        if not self._closed:
            try:
                await self._fill_min_idle()
            except DatabaseConnectionError as e:
                logger.warning(f"Failed to top up idle connections after eviction: {e}")
        return len(expired)

    async def _sweep_forever(self) -> None:
        interval = self.pool_config.eviction_interval
        while not self._closed:
            await asyncio.sleep(interval)
            try:
                await self.evict_idle_expired()
            except DatabaseError as e:
                logger.warning(f"Idle sweep failed: {e}")

    async def _fill_min_idle(self) -> None:
        while (not self._closed
               and len(self._idle) + self._connecting < self._min_idle
               and self._total < self._max_size):
            self._connecting += 1
            connection = await self._open_reserved()
            if not self._recycle(connection):
                await connection.close()

    # ========== 内部记账 ==========

    def _is_expired(self, connection: PooledConnection, now: float, idle_count: int) -> bool:
        """idle_count 包含该连接本身；空闲超时不会让空闲连接数低于 min_idle"""
        if self._lifetime_exceeded(connection, now):
            return True
        idle_timeout = self.pool_config.idle_timeout
        return bool(idle_timeout) and idle_count > self._min_idle and connection.idle_for(now) > idle_timeout

    def _lifetime_exceeded(self, connection: PooledConnection, now: float) -> bool:
        max_lifetime = self.pool_config.max_lifetime
        return bool(max_lifetime) and connection.age(now) > max_lifetime

    def _needs_health_check(self, connection: PooledConnection) -> bool:
        if not self.pool_config.health_check_on_borrow:
            return False
        return connection.idle_for() >= self.pool_config.health_check_after

    def _checkout(self, connection: PooledConnection) -> None:
        connection.state = ConnectionState.IN_USE
        connection.use_count += 1
        self._in_use[connection.id] = connection

    def _recycle(self, connection: PooledConnection) -> bool:
        """
        把一个不在任何登记表中的健康连接交给等待者或放回空闲表

        Returns:
            bool: False 表示连接应被关闭（连接池已关闭、超出容量或超过最长存活时间）
        """
        now = time.monotonic()
        if self._closed or self._total >= self._max_size or self._lifetime_exceeded(connection, now):
            return False
        connection.last_used_at = now

        waiter = self._waiters.pop_next()
        if waiter is not None:
            self._checkout(connection)
            waiter.fulfil(connection)
            logger.debug(f"Handed {connection.id} to waiter {waiter.id}")
            return True

        connection.state = ConnectionState.IDLE
        self._idle.push(connection)
        return True

    def _reclaim(self, connection: PooledConnection) -> None:
        if self._in_use.pop(connection.id, None) is None:
            return
        connection.state = ConnectionState.IN_USE
        if not self._recycle(connection):
            self._serve_waiters()
            self._spawn(connection.close())

    async def _open_reserved(self) -> PooledConnection:
        """在已经占用 connecting 名额的前提下建立新连接，失败时释放名额"""
        connection = PooledConnection(self.config, self._factory)
        try:
            await connection.open()
        except BaseException:
            self._connecting -= 1
            self._serve_waiters()
            raise
        self._connecting -= 1
        return connection

    def _serve_waiters(self) -> None:
        """容量空出时为排队的请求补建连接"""
        if self._closed:
            return
        while len(self._waiters) and self._total < self._max_size:
            waiter = self._waiters.pop_next()
            if waiter is None:
                break
            self._connecting += 1
            self._assigned[waiter.id] = waiter
            self._spawn(self._open_for_waiter(waiter))

    async def _open_for_waiter(self, waiter: Waiter) -> None:
        try:
            connection = await self._open_reserved()
        except DatabaseConnectionError as e:
            if not waiter.fail(e):
                logger.warning(f"Replacement connection failed after its waiter gave up: {e}")
            return
        finally:
            self._assigned.pop(waiter.id, None)

        if self._closed:
            waiter.fail(PoolClosedError("Connection pool is closed"))
            await connection.close()
            return
        self._checkout(connection)
        if waiter.fulfil(connection):
            return
        # 等待者已超时或被取消
        self._in_use.pop(connection.id, None)
        if not self._recycle(connection):
            await connection.close()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
