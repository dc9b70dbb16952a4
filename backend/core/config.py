from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "Authgate API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Security settings
    SECRET_KEY: str = ""
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Database settings (SQL)
    DATABASE_URL: str = "sqlite+aiosqlite:///./authgate.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300
    DB_POOL_TIMEOUT: int = 10
    DB_PRE_PING: bool = True

    # MongoDB (optional)
    USE_MONGO: bool = False
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "authgate"

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5173",
    ]

    # Password reset
    RESET_OTP_TTL_MINUTES: int = 10
    PASSWORD_MIN_LENGTH: int = 8
    # 0 disables the per-email cap on /forgot-password
    RESET_REQUEST_LIMIT: int = 5
    RESET_REQUEST_WINDOW_SECONDS: int = 3600

    # Ephemeral state store: "memory" or "redis"
    STATE_STORE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    STATE_STORE_PREFIX: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7
    LOG_TO_FILE: bool = True

    # Email: "smtp" or "console"
    EMAIL_BACKEND: str = "smtp"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: str = "Authgate"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 15
    SMTP_DEBUG: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def reset_ttl_seconds(self) -> int:
        return int(self.RESET_OTP_TTL_MINUTES) * 60

# Create settings instance
settings = Settings()

# Validate required settings
if not settings.SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

if settings.STATE_STORE_BACKEND == "redis" and not settings.REDIS_URL:
    raise ValueError("REDIS_URL is required when STATE_STORE_BACKEND=redis")
