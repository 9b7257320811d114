"""数据库与连接池配置设置模块"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from ..exceptions.database import DatabaseConfigError
from ..utils.env_validator import SimpleEnvValidator, get_env_validator, EnvVarType

SUPPORTED_DRIVERS = ("aiomysql", "asyncmy")


@dataclass
class PoolConfig:
    """
    连接池配置数据类

    时间类配置均以毫秒为单位，acquire_timeout_ms 为 0 或 None 表示无限等待，
    idle_timeout_ms / max_lifetime_ms 为 0 或 None 表示不限制。
    """
    max_size: int = 10
    min_idle: int = 0
    acquire_timeout_ms: Optional[int] = 30000
    idle_timeout_ms: Optional[int] = 600000
    max_lifetime_ms: Optional[int] = 1800000
    health_check_on_borrow: bool = True
    health_check_after_ms: int = 30000
    eviction_interval_ms: int = 30000
    max_waiters: int = 0

    def validate(self) -> None:
        """校验配置，非法配置在构造连接池时直接失败"""
        if not isinstance(self.max_size, int) or self.max_size <= 0:
            raise DatabaseConfigError(f"max_size must be a positive integer, got {self.max_size!r}")
        if self.min_idle < 0:
            raise DatabaseConfigError(f"min_idle must be >= 0, got {self.min_idle!r}")
        if self.max_waiters < 0:
            raise DatabaseConfigError(f"max_waiters must be >= 0, got {self.max_waiters!r}")
        for name in ("acquire_timeout_ms", "idle_timeout_ms", "max_lifetime_ms"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise DatabaseConfigError(f"{name} must be >= 0, got {value!r}")
        if self.health_check_after_ms < 0:
            raise DatabaseConfigError(
                f"health_check_after_ms must be >= 0, got {self.health_check_after_ms!r}"
            )
        if self.eviction_interval_ms <= 0:
            raise DatabaseConfigError(
                f"eviction_interval_ms must be > 0, got {self.eviction_interval_ms!r}"
            )

    @staticmethod
    def _seconds(value_ms: Optional[int]) -> Optional[float]:
        if not value_ms:
            return None
        return value_ms / 1000.0

    @property
    def acquire_timeout(self) -> Optional[float]:
        """获取连接的等待上限（秒），None 表示无限等待"""
        return self._seconds(self.acquire_timeout_ms)

    @property
    def idle_timeout(self) -> Optional[float]:
        return self._seconds(self.idle_timeout_ms)

    @property
    def max_lifetime(self) -> Optional[float]:
        return self._seconds(self.max_lifetime_ms)

    @property
    def health_check_after(self) -> float:
        return self.health_check_after_ms / 1000.0

    @property
    def eviction_interval(self) -> float:
        return self.eviction_interval_ms / 1000.0


@dataclass
class DatabaseConfig:
    """数据库配置数据类"""
    host: str
    user: str
    password: str
    database: str
    port: int = 3306
    driver: str = "aiomysql"
    charset: str = "utf8mb4"
    autocommit: bool = True
    connect_timeout: int = 10
    pool: PoolConfig = field(default_factory=PoolConfig)

    def __post_init__(self):
        if self.driver not in SUPPORTED_DRIVERS:
            raise DatabaseConfigError(
                f"Unsupported database driver: {self.driver} (expected one of {SUPPORTED_DRIVERS})"
            )

    @property
    def connection_url(self) -> str:
        """生成数据库连接URL（不包含密码）"""
        return f"mysql+{self.driver}://{self.user}@{self.host}:{self.port}/{self.database}?charset={self.charset}"


class DatabaseConfigManager:
    """数据库配置管理器，从环境变量加载默认库及命名的次要库配置"""

    def __init__(self, validator: Optional[SimpleEnvValidator] = None):
        self.validator = validator or get_env_validator()
        self._configs: Dict[str, DatabaseConfig] = {}

    def get_env_schema(self, prefix: str = "MYSQL_") -> Dict[str, Any]:
        """获取环境变量验证模式"""
        return {
            f"{prefix}HOST": {
                "type": EnvVarType.STRING,
                "required": True,
                "description": "MySQL数据库主机地址"
            },
            f"{prefix}PORT": {
                "type": EnvVarType.INTEGER,
                "default": 3306,
                "min": 1,
                "max": 65535,
                "description": "MySQL数据库端口"
            },
            f"{prefix}USER": {
                "type": EnvVarType.STRING,
                "required": True,
                "description": "MySQL数据库用户名"
            },
            f"{prefix}PASSWORD": {
                "type": EnvVarType.STRING,
                "required": True,
                "description": "MySQL数据库密码"
            },
            f"{prefix}DATABASE": {
                "type": EnvVarType.STRING,
                "required": True,
                "description": "MySQL数据库名称"
            },
            f"{prefix}DRIVER": {
                "type": EnvVarType.STRING,
                "default": "aiomysql",
                "enum": list(SUPPORTED_DRIVERS),
                "description": "异步驱动"
            },
            f"{prefix}CHARSET": {
                "type": EnvVarType.STRING,
                "default": "utf8mb4",
                "description": "数据库字符集"
            },
            f"{prefix}CONNECT_TIMEOUT": {
                "type": EnvVarType.INTEGER,
                "default": 10,
                "min": 1,
                "description": "建立连接超时时间（秒）"
            },
            f"{prefix}POOL_MAX_SIZE": {
                "type": EnvVarType.INTEGER,
                "default": 10,
                "min": 1,
                "max": 1000,
                "description": "连接池最大连接数"
            },
            f"{prefix}POOL_MIN_IDLE": {
                "type": EnvVarType.INTEGER,
                "default": 0,
                "min": 0,
                "description": "连接池最少空闲连接数"
            },
            f"{prefix}POOL_ACQUIRE_TIMEOUT_MS": {
                "type": EnvVarType.INTEGER,
                "default": 30000,
                "min": 0,
                "description": "获取连接超时时间（毫秒），0表示无限等待"
            },
            f"{prefix}POOL_IDLE_TIMEOUT_MS": {
                "type": EnvVarType.INTEGER,
                "default": 600000,
                "min": 0,
                "description": "空闲连接回收时间（毫秒）"
            },
            f"{prefix}POOL_MAX_LIFETIME_MS": {
                "type": EnvVarType.INTEGER,
                "default": 1800000,
                "min": 0,
                "description": "连接最长存活时间（毫秒）"
            },
            f"{prefix}POOL_HEALTH_CHECK_ON_BORROW": {
                "type": EnvVarType.BOOLEAN,
                "default": True,
                "description": "借出前是否对空闲过久的连接做健康检查"
            },
            f"{prefix}POOL_MAX_WAITERS": {
                "type": EnvVarType.INTEGER,
                "default": 0,
                "min": 0,
                "description": "等待队列上限，0表示不限制"
            }
        }

    def load_config(self, prefix: str = "MYSQL_") -> DatabaseConfig:
        """加载数据库配置"""
        env_vars = self.validator.validate_env_vars("mysqlpool", self.get_env_schema(prefix))

        pool = PoolConfig(
            max_size=env_vars[f"{prefix}POOL_MAX_SIZE"],
            min_idle=env_vars[f"{prefix}POOL_MIN_IDLE"],
            acquire_timeout_ms=env_vars[f"{prefix}POOL_ACQUIRE_TIMEOUT_MS"],
            idle_timeout_ms=env_vars[f"{prefix}POOL_IDLE_TIMEOUT_MS"],
            max_lifetime_ms=env_vars[f"{prefix}POOL_MAX_LIFETIME_MS"],
            health_check_on_borrow=env_vars[f"{prefix}POOL_HEALTH_CHECK_ON_BORROW"],
            max_waiters=env_vars[f"{prefix}POOL_MAX_WAITERS"]
        )
        pool.validate()

        return DatabaseConfig(
            host=env_vars[f"{prefix}HOST"],
            port=env_vars[f"{prefix}PORT"],
            user=env_vars[f"{prefix}USER"],
            password=env_vars[f"{prefix}PASSWORD"],
            database=env_vars[f"{prefix}DATABASE"],
            driver=env_vars[f"{prefix}DRIVER"],
            charset=env_vars[f"{prefix}CHARSET"],
            connect_timeout=env_vars[f"{prefix}CONNECT_TIMEOUT"],
            pool=pool
        )

    def add_config(self, name: str, config: DatabaseConfig) -> None:
        """手动注册一个配置"""
        self._configs[name] = config

    def get_default_config(self) -> DatabaseConfig:
        """获取默认数据库配置"""
        if "default" not in self._configs:
            self._configs["default"] = self.load_config("MYSQL_")
        return self._configs["default"]

    def get_secondary_config(self, name: str) -> DatabaseConfig:
        """获取次要数据库配置，环境变量前缀为 MYSQL_<NAME>_"""
        if name not in self._configs:
            self._configs[name] = self.load_config(f"MYSQL_{name.upper()}_")
        return self._configs[name]

    def get_all_configs(self, environ: Optional[Dict[str, str]] = None) -> Dict[str, DatabaseConfig]:
        """获取默认库以及通过 MYSQL_<NAME>_HOST 声明的所有次要库配置"""
        environ = os.environ if environ is None else environ
        configs = {"default": self.get_default_config()}

        for key in environ:
            if key == "MYSQL_HOST" or not (key.startswith("MYSQL_") and key.endswith("_HOST")):
                continue
            name = key[len("MYSQL_"):-len("_HOST")].lower()
            if name:
                configs[name] = self.get_secondary_config(name)

        return configs
