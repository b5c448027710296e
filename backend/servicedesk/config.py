"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "Branch_Service_Desk"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str = "sqlite:///./servicedesk.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery (domain event delivery)
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    # When False events are only logged (useful for local runs without a broker).
    EVENTS_ENABLED: bool = True

    # JWT (verification only; tokens are issued by the identity provider)
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Categorization
    OVERRIDE_REASON_MIN_LENGTH: int = 10
    OVERRIDE_REASON_MAX_LENGTH: int = 500
    BULK_CATEGORIZATION_MAX_TICKETS: int = 100

    # Auto-assignment
    # Skip technicians whose workload already reached their capacity.
    AUTO_ASSIGN_RESPECT_CAPACITY: bool = False

    # Approval
    REJECTION_COMMENTS_REQUIRED: bool = True

    # SLA hours by priority (regular tickets)
    SLA_HOURS_CRITICAL: int = 4
    SLA_HOURS_URGENT: int = 4
    SLA_HOURS_HIGH: int = 24
    SLA_HOURS_MEDIUM: int = 72
    SLA_HOURS_LOW: int = 168

    # SLA hours by priority (government / KASDA tickets)
    GOV_SLA_HOURS_CRITICAL: int = 8
    GOV_SLA_HOURS_URGENT: int = 8
    GOV_SLA_HOURS_HIGH: int = 24
    GOV_SLA_HOURS_MEDIUM: int = 48
    GOV_SLA_HOURS_LOW: int = 72

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def sla_hours(self, priority: str, *, government: bool) -> int:
        """SLA window in hours for a ticket priority."""
        prefix = "GOV_SLA_HOURS_" if government else "SLA_HOURS_"
        return int(getattr(self, f"{prefix}{priority.upper()}", getattr(self, f"{prefix}MEDIUM")))


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
