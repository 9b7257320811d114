"""异常模块"""

from .database import (
    DatabaseError,
    DatabaseConnectionError,
    DatabaseHealthCheckError,
    DatabaseQueryError,
    DatabaseConfigError,
    DatabaseTimeoutError,
    PoolClosedError,
    ConnectionPoolExhaustedError,
    DatabaseRuntimeError
)

__all__ = [
    'DatabaseError',
    'DatabaseConnectionError',
    'DatabaseHealthCheckError',
    'DatabaseQueryError',
    'DatabaseConfigError',
    'DatabaseTimeoutError',
    'PoolClosedError',
    'ConnectionPoolExhaustedError',
    'DatabaseRuntimeError'
]
