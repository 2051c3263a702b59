# provenance/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ADMIN_ADDRESS: str

    DATABASE_URL: str = "sqlite:///./registry.db"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    REQUIRE_SIGNED_REQUESTS: bool = False
    SIGNATURE_MAX_AGE_SECONDS: int = 300

    PINATA_JWT: str | None = None
    PINATA_API_KEY: str | None = None
    PINATA_API_SECRET: str | None = None

    EXPIRY_CHECK_MINUTES: int = 10
    EXPIRY_WARNING_DAYS: int = 7


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings lazily so importing the package does not require a configured env."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
