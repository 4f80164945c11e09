# survey_incentives/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Values come from the process environment (Docker Compose passes the root .env).
    model_config = SettingsConfigDict(extra="ignore")

    # The environment mode: 'local' or 'prod'
    ENV: str = "local"

    # --- Production URLs (for inside Docker) ---
    DATABASE_URL_PROD: str = ""
    KAFKA_BOOTSTRAP_SERVERS_PROD: str = ""

    # --- Local Development URLs (for running locally) ---
    DATABASE_URL_LOCAL: str = "sqlite:///./survey_incentives.db"
    KAFKA_BOOTSTRAP_SERVERS_LOCAL: str = "localhost:9092"

    # Other secrets
    JWT_SECRET: str = "change-me"
    INTERNAL_API_KEY: str = "change-me-internal"

    LOG_LEVEL: str = "INFO"
    RATE_LIMIT_ENABLED: bool = True

    # --- Allocation engine ---
    UNSEND_CONFIRMATION_PHRASE: str = "UNSEND"
    DEFAULT_REDEMPTION_URL: str = "https://www.amazon.com/gc/redeem"
    DEFAULT_COUNTRY_CODE: str = "1"
    CLAIM_MAX_ATTEMPTS: int = 3
    DB_LOCK_TIMEOUT_SECONDS: int = 30
    RELEASE_LINKS_ON_PARTICIPANT_DELETE: bool = True

    # --- Notifications ---
    NOTIFICATIONS_ENABLED: bool = True
    NOTIFICATION_TOPIC: str = "incentives.notifications.v1"

    # --- Scheduler ---
    SCHEDULER_ENABLED: bool = False
    EXPIRY_SWEEP_MINUTES: int = 15
    ORPHAN_CLEANUP_HOUR: int = 2

    # --- Dynamic Properties ---
    # These return the correct URL based on the ENV
    @property
    def DATABASE_URL(self) -> str:
        return (
            self.DATABASE_URL_LOCAL if self.ENV == "local" else self.DATABASE_URL_PROD
        )

    @property
    def KAFKA_BOOTSTRAP_SERVERS(self) -> str:
        return (
            self.KAFKA_BOOTSTRAP_SERVERS_LOCAL
            if self.ENV == "local"
            else self.KAFKA_BOOTSTRAP_SERVERS_PROD
        )


# Create a single instance of the settings
settings = Settings()
