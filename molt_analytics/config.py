"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """数据库配置"""
    path: str = "data/analytics.db"
    timeout: int = 30


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: List[str] = ["http://localhost:3001", "http://127.0.0.1:3001"]
    frontend_path: str = "gallery-public"
    frontend_enabled: bool = False


class UpstreamConfig(BaseModel):
    """上游 MoltCities API 配置"""
    base_url: str = "https://moltcities.org/api"
    # 上游单次最多返回 100 条，且分页不可用
    agents_limit: int = 100
    timeout: float = 10.0
    user_agent: str = "skarlun-analytics/1.0"


class TrendsConfig(BaseModel):
    """趋势计算配置"""
    rising_window: int = 24
    rising_top_n: int = 10
    soul_preview_chars: int = 150


class LedgerConfig(BaseModel):
    """担保账本配置"""
    review_min: int = 10
    review_max: int = 500
    max_tags: int = 5
    top_tags: int = 3


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseModel):
    """应用配置（完整配置）"""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    trends: TrendsConfig = Field(default_factory=TrendsConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class EnvOverrides(BaseSettings):
    """环境变量覆盖（优先级高于配置文件）"""
    model_config = SettingsConfigDict(env_prefix="MOLT_ANALYTICS_")

    database_path: Optional[str] = None
    upstream_base_url: Optional[str] = None
    api_port: Optional[int] = None


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    env = EnvOverrides()
    if env.database_path:
        config.database.path = env.database_path
    if env.upstream_base_url:
        config.upstream.base_url = env.upstream_base_url
    if env.api_port:
        config.api.port = env.api_port
    return config


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 MOLT_ANALYTICS_CONFIG_PATH
    3. 默认路径 config.yaml

    配置文件中的相对路径以配置文件所在目录为基准。
    """
    if config_path is None:
        config_path = os.environ.get("MOLT_ANALYTICS_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
        if raw_config:
            base_dir = config_file.resolve().parent

            def _resolve_path(value: Optional[str]) -> Optional[str]:
                if not value:
                    return value
                path = Path(value)
                if path.is_absolute():
                    return str(path)
                return str((base_dir / path).resolve())

            raw_config.setdefault("database", {})
            raw_config["database"]["path"] = _resolve_path(
                raw_config["database"].get("path", DatabaseConfig().path)
            )

            api_section = raw_config.get("api") or {}
            if api_section.get("frontend_path"):
                api_section["frontend_path"] = _resolve_path(api_section["frontend_path"])
                raw_config["api"] = api_section

            logging_section = raw_config.get("logging") or {}
            if logging_section.get("file"):
                logging_section["file"] = _resolve_path(logging_section["file"])
                raw_config["logging"] = logging_section

            return _apply_env_overrides(AppConfig(**raw_config))

    # 配置文件不存在时使用默认配置
    return _apply_env_overrides(AppConfig())


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
