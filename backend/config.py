from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    APP_NAME: str = "Flavor Fleet"
    DEBUG: bool = True
    CORS_ORIGINS: list[str] = ["http://localhost:8484"]

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "flavorfleet"

    # JWT
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Comptes promus admin à l'inscription
    ADMIN_EMAILS: list[str] = []

    # OTP
    OTP_EXPIRE_MINUTES: int = 10
    OTP_LENGTH: int = 6
    OTP_MAX_ATTEMPTS: int = 5
    OTP_PURGE_INTERVAL_SECONDS: int = 60
    OTP_RATE_LIMIT: str = "5/minute"

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "no-reply@flavorfleet.local"

    # Push temps réel (SSE)
    SSE_TIMEOUT_MINUTES: int = 30
    SSE_MAX_PENDING_EVENTS: int = 100

    # Campagnes programmées
    SCHEDULER_INTERVAL_SECONDS: int = 60
    # Une réservation plus ancienne (process mort en plein envoi) est reprise
    CAMPAIGN_CLAIM_TIMEOUT_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
