from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "agriadmin"

    # Backend API
    API_BASE_URL: str = "http://localhost:8080/api"
    API_TOKEN: str = ""
    API_TIMEOUT_SECONDS: float = 30.0

    # Bulk import polling
    IMPORT_POLL_INTERVAL_SECONDS: float = 10.0
    IMPORT_POLL_MAX_ATTEMPTS: int = 30
    IMPORT_ERRORS_SURFACED: int = 10

    # Configuration cache
    CONFIG_CACHE_TTL_SECONDS: float = 300.0

    # Downloads
    DOWNLOAD_DIR: str = "."

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
