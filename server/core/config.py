"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Automation engine settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3020, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    workers: int = Field(default=1, env="WORKERS", ge=1, le=8)
    cors_origins: List[str] = Field(default=["http://localhost:3000"], env="CORS_ORIGINS")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/automation.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Internal system-to-system authentication (advance callback)
    internal_api_token: str = Field(env="INTERNAL_API_TOKEN", min_length=32)

    # Continuation dispatch
    dispatch_mode: Literal["local", "http"] = Field(default="local", env="DISPATCH_MODE")
    engine_base_url: str = Field(default="http://localhost:3020", env="ENGINE_BASE_URL")
    dispatch_timeout: float = Field(default=10.0, env="DISPATCH_TIMEOUT", ge=1.0, le=120.0)
    dispatch_max_attempts: int = Field(default=3, env="DISPATCH_MAX_ATTEMPTS", ge=1, le=10)
    dispatch_initial_delay: float = Field(default=0.5, env="DISPATCH_INITIAL_DELAY", ge=0.0, le=30.0)
    dispatch_max_delay: float = Field(default=10.0, env="DISPATCH_MAX_DELAY", ge=0.0, le=300.0)

    # Step execution
    step_lease_seconds: int = Field(default=300, env="STEP_LEASE_SECONDS", ge=5)
    default_failure_policy: Literal["continue", "halt"] = Field(default="continue", env="DEFAULT_FAILURE_POLICY")

    # Watchdog (re-drives stalled executions)
    watchdog_enabled: bool = Field(default=True, env="WATCHDOG_ENABLED")
    watchdog_interval: int = Field(default=60, env="WATCHDOG_INTERVAL", ge=1)
    watchdog_stall_timeout: int = Field(default=300, env="WATCHDOG_STALL_TIMEOUT", ge=5)
    watchdog_batch_size: int = Field(default=100, env="WATCHDOG_BATCH_SIZE", ge=1, le=1000)

    # Node collaborators
    checkout_base_url: str = Field(default="http://localhost:8080", env="CHECKOUT_BASE_URL")
    http_timeout: float = Field(default=30.0, env="HTTP_TIMEOUT", ge=1.0, le=300.0)
    ai_timeout: int = Field(default=60, env="AI_TIMEOUT", ge=5, le=300)
    openai_base_url: str = Field(default="https://api.openai.com/v1", env="OPENAI_BASE_URL")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @field_validator("engine_base_url", "checkout_base_url", "openai_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
