"""
Task Cache Configuration

Configuration management with environment variable support.
Implements short store timeouts and per-namespace cache TTLs.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Cache and rate limiting settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )
    SERVICE_NAME: str = Field(
        default="task-service", description="Service name used in logs and spans"
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379", description="Redis connection URL"
    )
    REDIS_PREFIX: str = Field(
        default="task:",
        description="Key prefix shared by every key of this deployment",
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=1.0, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=0.25, description="Redis command timeout in seconds"
    )

    # Cache TTLs (seconds)
    CACHE_TTL_USER_TASKS: int = Field(default=180, ge=1)
    CACHE_TTL_USER_CATEGORIES: int = Field(default=600, ge=1)
    CACHE_TTL_USER_STATS: int = Field(default=300, ge=1)
    CACHE_TTL_TASK_DETAIL: int = Field(default=300, ge=1)
    CACHE_TTL_CATEGORY_DETAIL: int = Field(default=600, ge=1)
    CACHE_TTL_SEARCH_RESULTS: int = Field(default=120, ge=1)
    CACHE_TTL_RATE_LIMIT: int = Field(default=900, ge=1)

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable rate limiting")
    RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=900, ge=1, description="Default rate limit window in seconds"
    )
    RATE_LIMIT_MAX_REQUESTS: int = Field(
        default=200, ge=1, description="Default requests allowed per window"
    )
    RATE_LIMIT_WHITELIST_SECONDS: int = Field(
        default=3600, ge=1, description="Default lifetime of a temporary whitelist entry"
    )

    # Development and debugging
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("REDIS_CONNECTION_TIMEOUT", "REDIS_OPERATION_TIMEOUT")
    @classmethod
    def validate_timeout(cls, v):
        """Store timeouts must be short and positive."""
        if v <= 0:
            raise ValueError("Redis timeouts must be positive")
        if v > 5:
            raise ValueError("Redis timeouts above 5s would stall requests")
        return v

    @field_validator("REDIS_PREFIX")
    @classmethod
    def validate_prefix(cls, v):
        if any(char.isspace() for char in v):
            raise ValueError("REDIS_PREFIX cannot contain whitespace")
        if any(char in v for char in "*?[]"):
            raise ValueError("REDIS_PREFIX cannot contain glob characters")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
