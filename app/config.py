from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # RECYCLE SESSION FLOW (product -> bin -> video)
    # =================================================================
    SESSION_TTL_MS: int = 60_000
    SESSION_SWEEP_INTERVAL_SECONDS: float = 30.0

    USER_COOLDOWN_MS: int = 30_000
    BIN_COOLDOWN_MS: int = 15_000
    USER_PRODUCT_COOLDOWN_MS: int = 86_400_000  # 24h
    USER_PRODUCT_COOLDOWN_ENABLED: bool = False

    RECYCLE_POINTS: int = 50
    POINTS_PER_DOLLAR: int = 100

    # =================================================================
    # RATE LIMITING - fixed window per "<ip>|<identity>"
    # =================================================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_MS: int = 60_000
    RATE_LIMIT_MAX: int = 60
    RATE_LIMIT_BACKEND: Literal["memory", "redis"] = "memory"
    RATE_LIMIT_FAIL_OPEN: bool = True

    # Client IP extraction
    TRUST_X_FORWARDED_FOR: bool = False
    TRUSTED_PROXY_IPS: list[str] = []

    # Browser client origins ("*" = any)
    CORS_ALLOWED_ORIGINS: list[str] = ["*"]

    # =================================================================
    # AI VERIFICATION (OpenRouter, OpenAI-compatible API)
    # =================================================================
    OPENROUTER_API_KEY: str | None = None
    OPENROUTER_MODEL: str = "google/gemini-2.5-flash"
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_SITE_URL: str = "http://localhost"
    OPENROUTER_APP_TITLE: str = "ClearCycle"
    VERIFICATION_TIMEOUT_SECONDS: float = 30.0
    VERIFICATION_CONFIDENCE_THRESHOLD: float = 0.65
    VERIFICATION_MAX_FRAMES: int = 3

    # =================================================================
    # STORAGE
    # =================================================================
    EVENT_STORE_BACKEND: Literal["memory", "postgres"] = "memory"
    DATABASE_URL: str | None = None

    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    REDIS_URL: str | None = None

    UPLOAD_DIR: str = "uploads"
    MAX_VIDEO_BYTES: int = 12 * 1024 * 1024
    MAX_IMAGE_BYTES: int = 6 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # More conservative for local development
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config


settings = Settings()
