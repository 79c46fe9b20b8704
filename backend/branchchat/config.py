"""
Configuration settings for BranchChat backend.
Uses pydantic-settings for environment variable support.
"""

from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "BranchChat"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    # resolved relative to this config file (backend/branchchat/config.py -> backend/branchchat.db)
    _BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(_BASE_DIR, 'branchchat.db')}"

    # Upstream completion API (OpenAI-compatible)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: Optional[str] = None

    # Generation defaults
    DEFAULT_MODEL: str = "gpt-4o-mini"
    DEFAULT_SYSTEM_PROMPT: str = "You are a helpful assistant."
    DEFAULT_TITLE: str = "New Chat"
    TITLE_MODEL: str = "gpt-3.5-turbo"
    TITLE_MAX_LENGTH: int = 80
    MIN_COMPLETION_TOKENS: int = 64
    CHECKPOINT_INTERVAL: int = 5  # persist partial content every N fragments

    # Visualization add-on
    ENABLE_VISUALIZATION: bool = False
    VISUALIZATION_MODEL: str = "gpt-4o-mini"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
