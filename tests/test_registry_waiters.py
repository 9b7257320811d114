"""
Tests for IdleRegistry, Waiter and WaiterQueue
"""

import asyncio

from mysqlpool.core.connection import PooledConnection
from mysqlpool.core.registry import IdleRegistry
from mysqlpool.core.waiters import Waiter, WaiterQueue

from fakes import FakeFactory, make_config


def new_connection() -> PooledConnection:
    return PooledConnection(make_config(), FakeFactory())


class TestIdleRegistry:
    """Tests for IdleRegistry"""

    def test_pop_most_recent_returns_last_pushed(self):
        """Should hand out the most recently returned connection first"""
        registry = IdleRegistry()
        a, b, c = new_connection(), new_connection(), new_connection()
        for connection in (a, b, c):
            registry.push(connection)

        assert registry.pop_most_recent() is c
        assert registry.pop_most_recent() is b
        assert len(registry) == 1

    def test_iterates_oldest_first(self):
        """Should iterate from longest idle to most recent"""
        registry = IdleRegistry()
        a, b, c = new_connection(), new_connection(), new_connection()
        for connection in (a, b, c):
            registry.push(connection)
        registry.push(a)

        assert list(registry) == [b, c, a]
        assert registry.pop_oldest() is b

    def test_remove(self):
        """Should remove by identity and report whether it was present"""
        registry = IdleRegistry()
        a, b = new_connection(), new_connection()
        registry.push(a)
        registry.push(b)

        assert registry.remove(a) is True
        assert registry.remove(a) is False
        assert a not in registry
        assert b in registry

    def test_empty_registry(self):
        """Should return None when empty"""
        registry = IdleRegistry()
        assert registry.pop_most_recent() is None
        assert registry.pop_oldest() is None
        assert registry.drain() == []


class TestWaiter:
    """Tests for Waiter single delivery"""

    async def test_fulfil_only_once(self):
        """Should accept exactly one delivery"""
        waiter = Waiter(asyncio.get_running_loop())
        connection = new_connection()

        assert waiter.fulfil(connection) is True
        assert waiter.fulfil(new_connection()) is False
        assert waiter.fail(RuntimeError("late")) is False
        assert await waiter.future is connection

    async def test_cancel_after_fulfil_is_noop(self):
        """Should not let cancellation win after fulfilment"""
        waiter = Waiter(asyncio.get_running_loop())
        waiter.fulfil(new_connection())

        assert waiter.cancel() is False
        assert not waiter.future.cancelled()

    async def test_fulfil_after_cancel_is_rejected(self):
        """Should not deliver to a cancelled waiter"""
        waiter = Waiter(asyncio.get_running_loop())

        assert waiter.cancel() is True
        assert waiter.fulfil(new_connection()) is False

    async def test_delivery_cancels_timer(self):
        """Should cancel the deadline timer on delivery"""
        loop = asyncio.get_running_loop()
        waiter = Waiter(loop, loop.time() + 10)
        fired = []
        waiter.timer = loop.call_at(waiter.deadline, fired.append, True)

        waiter.fulfil(new_connection())
        await asyncio.sleep(0)

        assert waiter.timer is None
        assert fired == []


class TestWaiterQueue:
    """Tests for WaiterQueue"""

    async def test_fifo_order(self):
        """Should serve waiters in arrival order"""
        loop = asyncio.get_running_loop()
        queue = WaiterQueue()
        waiters = [Waiter(loop) for _ in range(3)]
        for waiter in waiters:
            queue.push(waiter)

        assert [queue.pop_next() for _ in range(3)] == waiters
        assert queue.pop_next() is None

    async def test_remove_keeps_order_of_the_rest(self):
        """Should remove one waiter without disturbing the others"""
        loop = asyncio.get_running_loop()
        queue = WaiterQueue()
        first, middle, last = Waiter(loop), Waiter(loop), Waiter(loop)
        for waiter in (first, middle, last):
            queue.push(waiter)

        assert queue.remove(middle) is True
        assert queue.remove(middle) is False
        assert len(queue) == 2
        assert queue.pop_next() is first
        assert queue.pop_next() is last

    async def test_pop_next_skips_finished_waiters(self):
        """Should skip waiters that were cancelled but not yet removed"""
        loop = asyncio.get_running_loop()
        queue = WaiterQueue()
        stale, live = Waiter(loop), Waiter(loop)
        queue.push(stale)
        queue.push(live)
        stale.future.cancel()

        assert queue.pop_next() is live
        assert len(queue) == 0

    async def test_cancel_removes_pending_waiter(self):
        """Should remove and cancel a waiter that has not been served"""
        loop = asyncio.get_running_loop()
        queue = WaiterQueue()
        waiter = Waiter(loop)
        queue.push(waiter)

        assert queue.cancel(waiter) is True
        assert waiter not in queue
        assert waiter.future.cancelled()
