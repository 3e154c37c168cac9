"""Configuration settings for the Regis edge client."""

import os

from dotenv import load_dotenv

from regis_client.exceptions import ConfigurationError
from regis_client.utils.logger import logger

# Load environment variables from .env file
load_dotenv()
logger.debug("Environment variables loaded from .env file")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    # Edge backend
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:3000/api")
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "120"))
    HEALTH_CHECK_INTERVAL_SECONDS: float = float(os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "30"))

    # Retry policy (milliseconds, matching the backend's rate-limit hints)
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_MS: int = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
    RETRY_MAX_DELAY_MS: int = int(os.getenv("RETRY_MAX_DELAY_MS", "3000"))
    RETRY_JITTER_MS: int = int(os.getenv("RETRY_JITTER_MS", "200"))
    RETRYABLE_STATUSES: frozenset[int] = frozenset({429, 502, 503, 504})

    # Offline queue
    OFFLINE_QUEUE_PATH: str = os.getenv("OFFLINE_QUEUE_PATH", ".regis/offline_queue.json")
    OFFLINE_QUEUE_MAX_RETRIES: int = int(os.getenv("OFFLINE_QUEUE_MAX_RETRIES", "3"))

    # Conversation history
    MAX_UNDO_HISTORY: int = int(os.getenv("MAX_UNDO_HISTORY", "50"))
    BACKUP_DIR: str = os.getenv("BACKUP_DIR", ".regis/backups")
    MAX_BACKUPS: int = int(os.getenv("MAX_BACKUPS", "10"))

    # Error messages shown to the user ("en" or "pl")
    LANGUAGE: str = os.getenv("CHAT_LANGUAGE", "en")

    # Logging
    ENABLE_CORRELATION_IDS: bool = _env_bool("ENABLE_CORRELATION_IDS", "true")

    SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "pl")

    @classmethod
    def validate(cls) -> None:
        """Validate settings that would otherwise fail deep inside a request."""
        logger.debug("Validating configuration settings")

        if not cls.API_BASE_URL.startswith(("http://", "https://")):
            logger.error(f"API_BASE_URL is not an http(s) URL: {cls.API_BASE_URL!r}")
            raise ConfigurationError(
                "API_BASE_URL must be an absolute http(s) URL, "
                "e.g. http://localhost:3000/api"
            )
        if cls.REQUEST_TIMEOUT_SECONDS <= 0:
            raise ConfigurationError("REQUEST_TIMEOUT_SECONDS must be positive")
        if cls.RETRY_MAX_ATTEMPTS < 1:
            raise ConfigurationError("RETRY_MAX_ATTEMPTS must be at least 1")
        if cls.RETRY_BASE_DELAY_MS < 0 or cls.RETRY_MAX_DELAY_MS < 0 or cls.RETRY_JITTER_MS < 0:
            raise ConfigurationError("Retry delays must not be negative")
        if cls.OFFLINE_QUEUE_MAX_RETRIES < 1:
            raise ConfigurationError("OFFLINE_QUEUE_MAX_RETRIES must be at least 1")
        if cls.LANGUAGE not in cls.SUPPORTED_LANGUAGES:
            raise ConfigurationError(
                f"CHAT_LANGUAGE must be one of {', '.join(cls.SUPPORTED_LANGUAGES)}"
            )

        logger.info("Configuration validation successful")
        logger.debug(
            f"Configuration: api_base_url={cls.API_BASE_URL}, "
            f"timeout={cls.REQUEST_TIMEOUT_SECONDS}s, "
            f"retry_max_attempts={cls.RETRY_MAX_ATTEMPTS}, "
            f"language={cls.LANGUAGE}"
        )


# Global settings instance
settings = Settings()
