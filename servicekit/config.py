from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
    log_output: str = Field(default="stdout", alias="LOG_OUTPUT")
    log_file: str = Field(default="", alias="LOG_FILE")
    log_file_max_mb: int = Field(default=100, alias="LOG_FILE_MAX_MB")
    log_file_backups: int = Field(default=5, alias="LOG_FILE_BACKUPS")
    log_file_max_age_days: int = Field(default=14, alias="LOG_FILE_MAX_AGE_DAYS")
    log_file_compress: bool = Field(default=True, alias="LOG_FILE_COMPRESS")
    log_caller: bool = Field(default=False, alias="LOG_CALLER")

    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_slow_ms: int = Field(default=100, alias="REDIS_SLOW_MS")
    sql_slow_ms: int = Field(default=1000, alias="SQL_SLOW_MS")
    command_max_length: int = Field(default=1024, gt=0, alias="COMMAND_MAX_LENGTH")
    sensitive_commands: list[str] = Field(default_factory=lambda: ["auth", "hello"], alias="SENSITIVE_COMMANDS")

    request_id_header: str = Field(default="X-Request-ID", alias="REQUEST_ID_HEADER")
    access_log_skip_paths: list[str] = Field(default_factory=list, alias="ACCESS_LOG_SKIP_PATHS")

    database_url: str = Field(default="sqlite+pysqlite:///:memory:", alias="DATABASE_URL")

    jwt_secret: str = Field(default="change-me", alias="JWT_SECRET")
    jwt_access_expire_seconds: int = Field(default=7200, alias="JWT_ACCESS_EXPIRE_SECONDS")
    jwt_refresh_expire_seconds: int = Field(default=7 * 86400, alias="JWT_REFRESH_EXPIRE_SECONDS")

    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def load_settings(env_file: str | Path) -> Settings:
    """Settings from an explicit env file; process environment variables still win."""

    return Settings(_env_file=env_file)
