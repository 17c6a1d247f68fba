"""
Centralized configuration for the oplog tailer.

Uses Pydantic Settings for validation and environment variable loading.
Loads from .env file if present, falls back to environment variables, then defaults.
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .tailer import TailConfig


class MongoSettings(BaseSettings):
    """MongoDB connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Connection URI (preferred) or individual components
    uri: Optional[str] = Field(
        default=None,
        description="Full MongoDB connection URI. Overrides host/port if set."
    )

    host: str = Field(default="localhost", description="MongoDB host")
    port: int = Field(default=27017, description="MongoDB port")
    replica_set: Optional[str] = Field(default=None, description="Replica set name")

    # Connection settings
    connect_timeout: int = Field(default=10, description="Connection timeout in seconds")
    server_selection_timeout: int = Field(default=10, description="Server selection timeout in seconds")

    @property
    def connection_uri(self) -> str:
        """Get the MongoDB connection URI."""
        if self.uri:
            return self.uri
        uri = f"mongodb://{self.host}:{self.port}/"
        if self.replica_set:
            uri += f"?replicaSet={self.replica_set}"
        return uri


class OplogSettings(BaseSettings):
    """Oplog tailing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPLOG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database: str = Field(default="local", description="Database holding the oplog")
    collection: str = Field(default="oplog.rs", description="Oplog collection name")

    max_await_time_ms: Optional[int] = Field(
        default=1000,
        description="How long the server waits for new entries before returning an empty batch"
    )

    # Retry settings for failing fetches
    max_retries: Optional[int] = Field(
        default=5,
        description="Consecutive fetch errors tolerated before failing (unset = unbounded)"
    )
    retry_backoff_base: float = Field(default=2.0, description="Exponential backoff base in seconds")
    max_retry_delay: float = Field(default=60.0, description="Max seconds between retries")
    open_attempts: int = Field(default=3, description="Attempts made to open the cursor")

    @field_validator("max_await_time_ms")
    @classmethod
    def validate_max_await_time_ms(cls, v: Optional[int]) -> Optional[int]:
        """Validate await time."""
        if v is not None and v <= 0:
            raise ValueError("max_await_time_ms must be positive")
        return v

    @field_validator("open_attempts")
    @classmethod
    def validate_open_attempts(cls, v: int) -> int:
        """Validate open attempts."""
        if v < 1:
            raise ValueError("open_attempts must be at least 1")
        return v

    @property
    def namespace(self) -> str:
        """Oplog namespace as ``database.collection``."""
        return f"{self.database}.{self.collection}"

    def tail_config(self) -> TailConfig:
        """Build the tailer configuration."""
        return TailConfig(
            max_retries=self.max_retries,
            retry_backoff_base=self.retry_backoff_base,
            max_retry_delay=self.max_retry_delay,
            max_await_time_ms=self.max_await_time_ms
        )


class Settings(BaseSettings):
    """Main settings combining all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    debug: bool = Field(default=False, description="Debug mode")

    mongo: MongoSettings = Field(default_factory=MongoSettings)
    oplog: OplogSettings = Field(default_factory=OplogSettings)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
