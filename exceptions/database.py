"""数据库异常模块"""

from typing import Optional


class DatabaseError(Exception):
    """数据库基础异常类"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class DatabaseConnectionError(DatabaseError):
    """连接建立失败（不会自动重试，只抛给发起请求的调用方）"""
    pass


class DatabaseHealthCheckError(DatabaseError):
    """健康检查失败，连接视为已失效"""
    pass


class DatabaseQueryError(DatabaseError):
    """查询执行错误，连接会被标记为损坏"""
    pass


class DatabaseConfigError(DatabaseError):
    """配置错误"""
    pass


class DatabaseTimeoutError(DatabaseError):
    """等待连接超时"""

    def __init__(self, message: str, timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message)


class PoolClosedError(DatabaseError):
    """连接池已关闭或正在关闭"""
    pass


class ConnectionPoolExhaustedError(DatabaseError):
    """连接池耗尽且等待队列已满"""
    pass


class DatabaseRuntimeError(DatabaseError):
    """运行时错误（重复释放、释放不属于本连接池的连接等）"""
    pass
