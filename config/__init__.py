"""配置模块初始化文件"""

from .settings import DatabaseConfig, DatabaseConfigManager, PoolConfig, SUPPORTED_DRIVERS

__all__ = [
    'DatabaseConfig',
    'DatabaseConfigManager',
    'PoolConfig',
    'SUPPORTED_DRIVERS'
]
