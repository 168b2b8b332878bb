"""
Application configuration with environment variables.
"""
import warnings
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator, model_validator
from typing import Optional, List

WEAK_SECRET_KEYS = frozenset({
    "your-secret-key-change-in-production",
    "change-me-in-production",
    "secret",
    "changeme",
})
WEAK_DB_PASSWORDS = frozenset({"shub", "postgres", "password", "changeme", ""})


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "S-Hub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = "your-secret-key-change-in-production"

    # Logging
    LOG_LEVEL: Optional[str] = None  # defaults to DEBUG when DEBUG=true, INFO otherwise
    LOG_JSON: bool = True

    # Database
    POSTGRES_USER: str = "shub"
    POSTGRES_PASSWORD: str = "shub"
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "shub"
    DATABASE_URL: Optional[str] = None

    # Redis (rq worker and scheduler)
    REDIS_URL: str = "redis://redis:6379/0"

    # JWT Settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days
    BCRYPT_ROUNDS: int = 12

    # Uploads: RFQ drawings, quotes, purchase orders, invoices, attachments
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 50 * 1024 * 1024  # 50MB

    # CORS (JSON list in the environment)
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # =========================================
    # Email (SendGrid v3 HTTP API)
    # =========================================

    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"
    EMAIL_FROM: str = "noreply@stone-flake.com"
    EMAIL_FROM_NAME: str = "S-Hub by Stoneflake"
    EMAIL_TIMEOUT_SECONDS: float = 10.0
    # Hand sends to the rq worker instead of calling SendGrid in the request
    EMAIL_VIA_WORKER: bool = False

    # Base URL used to build links inside emails
    CLIENT_URL: str = "http://localhost:5173"

    # Receives signup / RFQ notifications; registering with this address yields an admin
    ADMIN_NOTIFICATION_EMAIL: str = "admin@stone-flake.com"

    # =========================================
    # Workflow settings
    # =========================================

    VERIFICATION_CODE_TTL_MINUTES: int = 10
    RESET_CODE_TTL_MINUTES: int = 10
    ORDER_DEFAULT_DUE_DAYS: int = 30
    QUOTE_VALIDITY_DAYS: int = 30
    NUMBER_GENERATION_RETRIES: int = 5

    # Unread message reminders
    MESSAGE_REMINDER_ENABLED: bool = True
    MESSAGE_REMINDER_INTERVAL_SECONDS: int = 300
    MESSAGE_REMINDER_AGE_MINUTES: int = 30

    # Admin bootstrap: creates the first admin on startup when none exists
    ADMIN_BOOTSTRAP_EMAIL: Optional[str] = None
    ADMIN_BOOTSTRAP_PASSWORD: Optional[str] = None

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def assemble_db_url(cls, v: Optional[str], info) -> str:
        if isinstance(v, str) and v:
            return v

        data = info.data
        user = data.get("POSTGRES_USER", "shub")
        password = data.get("POSTGRES_PASSWORD", "shub")
        host = data.get("POSTGRES_HOST", "postgres")
        port = data.get("POSTGRES_PORT", "5432")
        db = data.get("POSTGRES_DB", "shub")

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"

    @model_validator(mode='after')
    def check_production_secrets(self) -> "Settings":
        """
        Refuse weak credentials outside DEBUG.

        The Postgres password is only checked when the connection URL was
        assembled from the POSTGRES_* parts.
        """
        problems = []
        if self.SECRET_KEY in WEAK_SECRET_KEYS or len(self.SECRET_KEY) < 32:
            problems.append(
                "SECRET_KEY is weak or default. Generate a strong key with: openssl rand -hex 32"
            )
        assembled = f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}"
        if assembled in (self.DATABASE_URL or "") and self.POSTGRES_PASSWORD in WEAK_DB_PASSWORDS:
            problems.append("POSTGRES_PASSWORD is set to a default value.")

        if problems and not self.DEBUG:
            raise ValueError(" ".join(problems))
        for problem in problems:
            warnings.warn(f"{problem} Fix this before deploying.", UserWarning, stacklevel=2)
        return self

    @property
    def log_level(self) -> str:
        return (self.LOG_LEVEL or ("DEBUG" if self.DEBUG else "INFO")).upper()


settings = Settings()
