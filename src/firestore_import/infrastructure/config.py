"""
Configuration management for firestore-import
Handles environment variables, .env files and logging settings
"""

from typing import Dict, Any
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Firestore rejects write batches larger than this
MAX_BATCH_SIZE = 500


class Settings(BaseSettings):
    """Tool settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore")

    # Google Cloud / Firebase settings
    GOOGLE_APPLICATION_CREDENTIALS: str = Field(default="")
    FIRESTORE_DATABASE: str = Field(default="(default)")

    # Logging settings
    LOG_LEVEL: str = Field(default="WARNING")
    LOG_FORMAT: str = Field(default="text")  # json or text

    # Import settings
    IMPORT_BATCH_SIZE: int = Field(default=MAX_BATCH_SIZE)
    IMPORT_MAX_CONCURRENT_BATCHES: int = Field(default=10)
    IMPORT_COMMIT_RETRY_ATTEMPTS: int = Field(default=3)


def load_settings() -> Settings:
    """Re-read settings from the current environment"""
    return Settings()


def get_import_config(current: Settings = None) -> Dict[str, Any]:
    """Get tree import configuration"""
    current = current or load_settings()
    return {
        "batch_size": current.IMPORT_BATCH_SIZE,
        "max_concurrent_batches": current.IMPORT_MAX_CONCURRENT_BATCHES,
        "retry_attempts": current.IMPORT_COMMIT_RETRY_ATTEMPTS,
    }


def get_logging_config(current: Settings = None) -> Dict[str, Any]:
    """Get logging configuration for the standard library handlers"""
    current = current or load_settings()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
            "json": {
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "class": "pythonjsonlogger.json.JsonFormatter"
            }
        },
        "handlers": {
            "default": {
                "level": current.LOG_LEVEL.upper(),
                "formatter": "json" if current.LOG_FORMAT == "json" else "standard",
                "class": "logging.StreamHandler",
                # stdout carries the user-facing status lines
                "stream": "ext://sys.stderr"
            }
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": current.LOG_LEVEL.upper(),
                "propagate": False
            }
        }
    }


def validate_settings(current: Settings = None) -> None:
    """Validate critical settings"""
    current = current or load_settings()
    if not 1 <= current.IMPORT_BATCH_SIZE <= MAX_BATCH_SIZE:
        raise ValueError(
            f"IMPORT_BATCH_SIZE must be between 1 and {MAX_BATCH_SIZE}")

    if current.IMPORT_MAX_CONCURRENT_BATCHES < 1:
        raise ValueError("IMPORT_MAX_CONCURRENT_BATCHES must be at least 1")

    if current.IMPORT_COMMIT_RETRY_ATTEMPTS < 1:
        raise ValueError("IMPORT_COMMIT_RETRY_ATTEMPTS must be at least 1")

    if current.LOG_FORMAT not in ("json", "text"):
        raise ValueError("LOG_FORMAT must be 'json' or 'text'")


# Export commonly used settings
__all__ = [
    'MAX_BATCH_SIZE',
    'Settings',
    'load_settings',
    'get_import_config',
    'get_logging_config',
    'validate_settings'
]
