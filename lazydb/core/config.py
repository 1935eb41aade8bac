from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LAZYDB_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    DEFAULT_DRIVER: Literal["mysql", "postgres"] = "mysql"
    DEFAULT_PORTS: dict[str, int] = {"mysql": 3306, "postgres": 5432}
    CONNECT_TIMEOUT: int = 10

    # Per-pool connection reuse
    POOL_SIZE: int = 10
    POOL_MAX_AGE_SEC: float = 600
    POOL_PING_IDLE_SEC: float = 30

    # Default connection list handed to the web glue and the model loader,
    # e.g. LAZYDB_DATABASES='[{"name": "main", "host": "db", "database": "shop"}]'
    DATABASES: list[dict[str, Any]] = []


settings = Settings()
