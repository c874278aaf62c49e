"""
Runtime settings for LeoBot, read from the environment (and a local .env file).
"""

import os
import sys
from dataclasses import dataclass

from dotenv import load_dotenv
from loguru import logger

SEVEN_DAYS = 60 * 60 * 24 * 7


@dataclass
class Settings:
    """Everything the app needs from the environment."""

    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "leobot"

    jwt_secret: str = "fallback-secret-change-in-production"
    session_cookie_name: str = "leobot-session"
    session_max_age: int = SEVEN_DAYS
    app_env: str = "development"

    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "anthropic/claude-3-haiku"
    site_url: str = "http://localhost:5001"
    llm_timeout: float = 60.0
    llm_max_retries: int = 2

    google_books_api_key: str = ""
    google_books_lang: str = "es"

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 5001

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        defaults = cls()
        return cls(
            mongodb_uri=os.environ.get("MONGODB_URI", defaults.mongodb_uri),
            mongodb_db=os.environ.get("MONGODB_DB", defaults.mongodb_db),
            jwt_secret=os.environ.get("JWT_SECRET", defaults.jwt_secret),
            session_cookie_name=os.environ.get(
                "SESSION_COOKIE_NAME", defaults.session_cookie_name
            ),
            session_max_age=int(
                os.environ.get("SESSION_MAX_AGE", defaults.session_max_age)
            ),
            app_env=os.environ.get("APP_ENV", defaults.app_env),
            openrouter_api_key=os.environ.get("OPENROUTER_API_KEY", ""),
            openrouter_base_url=os.environ.get(
                "OPENROUTER_BASE_URL", defaults.openrouter_base_url
            ),
            openrouter_model=os.environ.get(
                "OPENROUTER_MODEL", defaults.openrouter_model
            ),
            site_url=os.environ.get("SITE_URL", defaults.site_url),
            llm_timeout=float(os.environ.get("LLM_TIMEOUT", defaults.llm_timeout)),
            llm_max_retries=int(
                os.environ.get("LLM_MAX_RETRIES", defaults.llm_max_retries)
            ),
            google_books_api_key=os.environ.get("GOOGLE_BOOKS_API_KEY", ""),
            google_books_lang=os.environ.get(
                "GOOGLE_BOOKS_LANG", defaults.google_books_lang
            ),
            log_level=os.environ.get("LOG_LEVEL", defaults.log_level).upper(),
            host=os.environ.get("HOST", defaults.host),
            port=int(os.environ.get("PORT", defaults.port)),
        )


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with one at the configured level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
            "{name}:{function} - {message}"
        ),
    )
