"""
Configuration settings for the autoresponder engine.
"""

import logging
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration."""

    # Text generation providers
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
    DEFAULT_AI_PROVIDER = os.getenv("DEFAULT_AI_PROVIDER", "anthropic")
    TEMPERATURE = 0.7
    MAX_TOKENS = 150
    AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "15"))

    # Flask Configuration
    FLASK_HOST = os.getenv("FLASK_HOST", "127.0.0.1")
    FLASK_PORT = int(os.getenv("FLASK_PORT", "5000"))
    DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"

    # Supabase Configuration (rule store)
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
    RULES_TABLE = os.getenv("AUTORESPONDER_RULES_TABLE", "autoresponder_rules")

    # Rule evaluation
    TIMEZONE = os.getenv("AUTORESPONDER_TIMEZONE", "")  # empty = server local time
    MIN_PRIORITY = 1
    MAX_PRIORITY = 10
    FALLBACK_TEMPLATE = "Hi {firstName}, thanks for reaching out! I'll get back to you soon."

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        """Validate that required configuration is present."""
        if not cls.ANTHROPIC_API_KEY and not cls.OPENAI_API_KEY:
            raise ValueError(
                "No text generation provider configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY "
                "in .env file or environment. AI-generated rules will use the fallback template."
            )
        return True


def configure_logging(level=None):
    """Configure root logging for the service."""
    if level is None:
        level = "DEBUG" if Config.DEBUG else Config.LOG_LEVEL
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Validate configuration on import
try:
    Config.validate()
except ValueError as e:
    # Log warning but don't fail (for development)
    logger.warning("Warning: %s", e)
