"""Configuration management for the sync layer."""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from project root
# This ensures dotenv works regardless of where the script is run from
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"

# Existing environment variables take precedence over .env values
load_dotenv(dotenv_path=env_file, override=False)


def _int_env(name: str, default: int) -> int:
    """Read an integer environment variable, falling back on missing or bad values."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    """Application configuration."""
    # Portal server (pull path base URL; push URL is derived from it)
    PORTAL_BASE_URL: str = os.getenv("PORTAL_BASE_URL", "http://localhost:5000")
    PORTAL_API_TOKEN: Optional[str] = os.getenv("PORTAL_API_TOKEN")
    HTTP_TIMEOUT: float = _float_env("HTTP_TIMEOUT", 10.0)

    # Push channel
    PUSH_PATH: str = os.getenv("PUSH_PATH", "/ws")
    PUSH_MAX_RETRIES: int = _int_env("PUSH_MAX_RETRIES", 5)
    PUSH_BASE_DELAY_MS: int = _int_env("PUSH_BASE_DELAY_MS", 1000)
    PUSH_MAX_DELAY_MS: int = _int_env("PUSH_MAX_DELAY_MS", 30000)

    # Notification polling (seconds)
    NOTIFICATION_POLL_INTERVAL: float = _float_env("NOTIFICATION_POLL_INTERVAL", 30.0)

    # Signed-in portal user the session belongs to
    CURRENT_USER_ID: Optional[int] = _int_env("CURRENT_USER_ID", 0) or None

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Status surface; comma-separated origins of the portal UI shell
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")


config = Config()
