"""工具模块"""

from .env_validator import EnvVarType, SimpleEnvValidator, get_env_validator

__all__ = ['EnvVarType', 'SimpleEnvValidator', 'get_env_validator']
