"""Application settings loaded from the environment."""
from typing import List, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.errors import ErrorKind, TableAdminError


class DatabaseSettings(BaseSettings):
    host: Optional[str] = None
    port: int = 5432
    name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = 10
    min_connections: int = 1
    max_connections: int = 10

    model_config = SettingsConfigDict(env_prefix="DB_", env_file=".env", env_file_encoding="utf-8", extra="ignore")


class Settings(BaseSettings):
    app_name: str = Field(default="pg-table-admin", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    debug: bool = Field(default=False, validation_alias="APP_DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    default_page_size: int = Field(default=50, validation_alias="API_DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=1000, validation_alias="API_MAX_PAGE_SIZE")
    cors_allowed_origins: str = Field(default="*", validation_alias="CORS_ALLOWED_ORIGINS")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value):
        return str(value).strip().upper()

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]


REQUIRED_DATABASE_SETTINGS = ("host", "name", "user")


def load_settings() -> Settings:
    """Load and check settings; raise a configuration error on problems."""
    try:
        settings = Settings()
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        ]
        raise TableAdminError(
            ErrorKind.CONFIGURATION,
            "Invalid configuration: " + "; ".join(problems),
        ) from e

    missing = [
        f"database.{key}" for key in REQUIRED_DATABASE_SETTINGS if not getattr(settings.database, key)
    ]
    if missing:
        raise TableAdminError(
            ErrorKind.CONFIGURATION,
            f"Missing required configuration: {', '.join(missing)}",
        )

    if not 0 < settings.database.port <= 65535:
        raise TableAdminError(ErrorKind.CONFIGURATION, f"Invalid database port: {settings.database.port}")

    if settings.default_page_size < 1 or settings.max_page_size < settings.default_page_size:
        raise TableAdminError(
            ErrorKind.CONFIGURATION,
            "API_DEFAULT_PAGE_SIZE must be at least 1 and no larger than API_MAX_PAGE_SIZE",
        )

    return settings
