from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment driven defaults for workers started from the CLI.
    Engine options themselves are validated by ConsumerOptions.
    """
    # Valkey connection
    VALKEY_HOST: str = "localhost"
    VALKEY_PORT: int = 6379
    VALKEY_PASSWORD: Optional[str] = None
    VALKEY_DB: int = 0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    # Admin API
    ADMIN_PORT: int = 8001

    # Consumer defaults
    BATCH_SIZE: int = Field(10, gt=0)
    BLOCK_INTERVAL_MS: int = Field(0, ge=0)
    CHECK_ABANDONED_MS: int = Field(1000, gt=0)
    DISABLE_ABANDONED_CHECK: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
