"""环境变量验证器，按模式校验连接池相关的环境变量"""

import os
from enum import Enum
from typing import Dict, Any, Mapping, Optional

from ..exceptions.database import DatabaseConfigError


class EnvVarType(Enum):
    """环境变量类型枚举"""
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"


_TRUE_VALUES = ('true', '1', 'yes', 'on')
_FALSE_VALUES = ('false', '0', 'no', 'off')


class SimpleEnvValidator:
    """简化的环境变量验证器"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        # 为None时每次读取os.environ，测试可传入独立的字典
        self._environ = environ

    def _lookup(self, name: str) -> Optional[str]:
        source = os.environ if self._environ is None else self._environ
        return source.get(name)

    def validate_env_vars(self, plugin_name: str, env_schema: Dict[str, dict]) -> Dict[str, Any]:
        """
        验证插件的环境变量

        Args:
            plugin_name: 插件名称，仅用于错误信息
            env_schema: 环境变量模式定义

        Returns:
            验证后的环境变量字典，未设置且无默认值的可选变量不会出现在结果中

        Raises:
            DatabaseConfigError: 必需变量缺失或取值非法
        """
        validated_vars = {}

        for var_name, var_config in env_schema.items():
            value = self._lookup(var_name)

            if value is None and 'default' in var_config:
                value = var_config['default']

            if value is None:
                if var_config.get('required', False):
                    raise DatabaseConfigError(f"[{plugin_name}] 必需环境变量 {var_name} 未设置")
                continue

            var_type = var_config.get('type', EnvVarType.STRING)
            try:
                validated_vars[var_name] = self._convert(value, var_type, var_config)
            except ValueError as e:
                raise DatabaseConfigError(f"[{plugin_name}] 环境变量 {var_name} 验证失败: {e}") from e

        return validated_vars

    def _convert(self, value: Any, var_type: EnvVarType, config: dict) -> Any:
        if var_type == EnvVarType.INTEGER:
            return self._check_range(self._to_int(value), config)
        if var_type == EnvVarType.FLOAT:
            return self._check_range(self._to_float(value), config)
        if var_type == EnvVarType.BOOLEAN:
            return self._to_bool(value)
        return self._to_string(value, config)

    def _to_string(self, value: Any, config: dict) -> str:
        value = str(value)
        if 'enum' in config and value not in config['enum']:
            raise ValueError(f"值 '{value}' 不在允许的枚举值中: {config['enum']}")
        return value

    def _to_int(self, value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"无法转换为整数: '{value}'")
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValueError(f"无法转换为整数: '{value}'")

    def _to_float(self, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValueError(f"无法转换为浮点数: '{value}'")

    def _to_bool(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        value_lower = str(value).strip().lower()
        if value_lower in _TRUE_VALUES:
            return True
        if value_lower in _FALSE_VALUES:
            return False
        raise ValueError(f"无法转换为布尔值: '{value}'")

    def _check_range(self, number, config: dict):
        min_val = config.get('min')
        max_val = config.get('max')

        if min_val is not None and number < min_val:
            raise ValueError(f"值不能小于 {min_val}")

        if max_val is not None and number > max_val:
            raise ValueError(f"值不能大于 {max_val}")

        return number


_env_validator = SimpleEnvValidator()


def get_env_validator() -> SimpleEnvValidator:
    """获取环境变量验证器实例"""
    return _env_validator
