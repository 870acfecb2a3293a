from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "CRM Client"
    app_env: str = "local"
    log_level: str = "INFO"
    break_glass_email: str | None = None
    request_timeout_seconds: float = 15.0
    audit_enabled: bool = True
    audit_retention_period: str = "7 years"
    default_success_message: str = "Update successful"
    default_error_message: str = "Update failed"
    database_url: str = "sqlite+pysqlite:///./crm_client.db"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    otel_enabled: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    return Settings()
