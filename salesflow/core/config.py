from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Salesflow API"
    app_version: str = "0.1.0"
    app_env: str = "local"
    app_debug: bool = True
    log_level: str = "INFO"
    api_port: int = 8000
    database_url: str = "sqlite+pysqlite:///./salesflow.db"
    store_backend: str = "memory"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    default_user_role: str = "sales.rep"
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_service_name: str = "salesflow"
    otel_console_exporter: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    authz_default_allow: bool = True
    default_payment_terms_days: int = 30

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
