"""等待队列模块"""

import asyncio
import itertools
from collections import OrderedDict
from typing import List, Optional

from .connection import PooledConnection

_waiter_ids = itertools.count(1)


class Waiter:
    """
    挂起中的获取请求

    完成槽是一个 asyncio.Future，只能交付一次：交付连接、交付异常、
    被取消三者中先发生的一方生效，后到的调用返回 False。
    """

    __slots__ = ("id", "future", "deadline", "timer")

    def __init__(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float] = None):
        self.id = next(_waiter_ids)
        self.future: asyncio.Future = loop.create_future()
        self.deadline = deadline
        self.timer: Optional[asyncio.TimerHandle] = None

    @property
    def done(self) -> bool:
        return self.future.done()

    def fulfil(self, connection: PooledConnection) -> bool:
        if self.future.done():
            return False
        self._cancel_timer()
        self.future.set_result(connection)
        return True

    def fail(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self._cancel_timer()
        self.future.set_exception(error)
        return True

    def cancel(self) -> bool:
        """取消等待；已经交付过的请求返回 False"""
        self._cancel_timer()
        if self.future.done():
            return False
        self.future.cancel()
        return True

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class WaiterQueue:
    """严格先进先出的等待队列，支持按对象移除而不打乱其余顺序"""

    def __init__(self):
        self._waiters: "OrderedDict[int, Waiter]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._waiters)

    def __contains__(self, waiter: Waiter) -> bool:
        return waiter.id in self._waiters

    def push(self, waiter: Waiter) -> None:
        self._waiters[waiter.id] = waiter

    def remove(self, waiter: Waiter) -> bool:
        return self._waiters.pop(waiter.id, None) is not None

    def cancel(self, waiter: Waiter) -> bool:
        """从队列中移除并取消一个请求，若它已被交付则不做任何事"""
        self.remove(waiter)
        return waiter.cancel()

    def pop_next(self) -> Optional[Waiter]:
        """弹出最早的仍在等待的请求，顺带丢弃已被取消的请求"""
        while self._waiters:
            _, waiter = self._waiters.popitem(last=False)
            if not waiter.done:
                return waiter
        return None

    def drain(self) -> List[Waiter]:
        waiters = list(self._waiters.values())
        self._waiters.clear()
        return waiters
