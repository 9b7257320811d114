"""
接口模块初始化文件
导出内部公共API接口和相关功能
"""

from .internal_api import (
    DatabaseInternalAPI,
    init_internal_api,
    open_single_connection
)

__all__ = [
    'DatabaseInternalAPI',
    'init_internal_api',
    'open_single_connection'
]
