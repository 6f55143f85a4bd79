"""Runtime configuration read from environment variables."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the ticket service. Every field maps to one environment variable."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str = "sqlite:///./tickets.db"

    # Overdue sweeper
    sweep_interval_seconds: int = 60
    sweeper_enabled: bool = True

    # Per-ticket lock wait before a transition is refused as busy
    lock_timeout_seconds: float = Field(default=5.0, validation_alias="TICKET_LOCK_TIMEOUT_SECONDS")

    # Logging
    log_level: str = "INFO"

    # Deadlines, in business days
    default_due_business_days: int = 5
    plan_grace_business_days: int = 3

    @field_validator("database_url")
    @classmethod
    def _sqlalchemy_scheme(cls, value: str) -> str:
        # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql://", 1)
        return value


settings = Settings()
