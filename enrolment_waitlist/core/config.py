# enrolment_waitlist/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Values come straight from the environment (Docker Compose passes the
    # root .env through), so there is no env_file here.
    model_config = SettingsConfigDict(extra="ignore")

    # The environment mode: 'local' or 'prod'
    ENV: str = "local"

    # --- Production URLs (for inside Docker) ---
    DATABASE_URL_PROD: str = ""
    REDIS_URL_PROD: str = ""
    KAFKA_BOOTSTRAP_SERVERS_PROD: str = ""

    # --- Local Development URLs (for running locally) ---
    DATABASE_URL_LOCAL: str = "sqlite:///./enrolment_waitlist.db"
    REDIS_URL_LOCAL: str = "redis://localhost:6379/0"
    KAFKA_BOOTSTRAP_SERVERS_LOCAL: str = "localhost:9092"

    # Secrets
    JWT_SECRET: str
    INTERNAL_API_KEY: str
    # Signs the accept/decline links in offer emails. Falls back to JWT_SECRET.
    WAITLIST_JWT_SECRET: Optional[str] = None

    # Email (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_DOMAIN: str = "lessonloop.net"
    FRONTEND_URL: str = "http://localhost:3000"
    PUBLIC_API_URL: str = "http://localhost:8000"

    # Waitlist defaults, overridden per organisation
    DEFAULT_OFFER_EXPIRY_HOURS: int = 48
    DEFAULT_WAITLIST_EXPIRY_WEEKS: Optional[int] = None
    ENROLLED_WINDOW_DAYS: int = 90

    # Background work
    SCHEDULER_ENABLED: bool = True
    SWEEP_INTERVAL_MINUTES: int = 5
    KAFKA_ENABLED: bool = True

    # --- Dynamic Properties ---
    # Return the correct URL based on ENV
    @property
    def DATABASE_URL(self) -> str:
        return (
            self.DATABASE_URL_LOCAL if self.ENV == "local" else self.DATABASE_URL_PROD
        )

    @property
    def REDIS_URL(self) -> str:
        return self.REDIS_URL_LOCAL if self.ENV == "local" else self.REDIS_URL_PROD

    @property
    def KAFKA_BOOTSTRAP_SERVERS(self) -> str:
        return (
            self.KAFKA_BOOTSTRAP_SERVERS_LOCAL
            if self.ENV == "local"
            else self.KAFKA_BOOTSTRAP_SERVERS_PROD
        )

    @property
    def OFFER_LINK_SECRET(self) -> str:
        return self.WAITLIST_JWT_SECRET or self.JWT_SECRET


# Create a single instance of the settings
settings = Settings()
