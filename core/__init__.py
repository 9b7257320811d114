"""
核心模块 - 连接池机制
提供池化连接、空闲登记表、等待队列以及连接池管理器
"""

from .connection import ConnectionState, DriverTransport, PooledConnection, open_transport
from .pool import AsyncConnectionPool, PoolStats
from .registry import IdleRegistry
from .waiters import Waiter, WaiterQueue

__all__ = [
    'AsyncConnectionPool',
    'ConnectionState',
    'DriverTransport',
    'IdleRegistry',
    'PoolStats',
    'PooledConnection',
    'Waiter',
    'WaiterQueue',
    'open_transport'
]
