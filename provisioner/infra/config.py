"""Configuration management loaded from the environment and .env file."""

import os
from typing import Dict, Optional
from pathlib import Path
from dotenv import load_dotenv

from provisioner.infra.timeout import BOT_VALIDATION_TIMEOUT, CONTAINER_COMMAND_TIMEOUT, PROXY_CALL_TIMEOUT

# Load .env file from project root
# This ensures dotenv works regardless of where the script is run from
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"

# override=False means existing environment variables take precedence
load_dotenv(dotenv_path=env_file, override=False)


def _get_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value:
        try:
            return int(value)
        except ValueError:
            pass
    return default


def _get_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value:
        try:
            return float(value)
        except ValueError:
            pass
    return default


# Env keys that may carry platform-provided LLM credentials
LLM_ENV_KEYS = ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GROQ_API_KEY", "OLLAMA_HOST")


class Config:
    """Application configuration."""

    def __init__(self):
        # Application
        self.APP_ENV: str = os.getenv("APP_ENV", "development")
        self.DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
        self.ADMIN_API_TOKEN: Optional[str] = os.getenv("ADMIN_API_TOKEN")

        # Storage
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL",
            "sqlite:///./tmp/platform/provisioner.sqlite",
        )
        self.CUSTOMERS_DIR: str = os.getenv("CUSTOMERS_DIR", "./tmp/customers")
        self.TEMPLATES_DIR: str = os.getenv(
            "TEMPLATES_DIR",
            str(Path(__file__).parent.parent / "templates"),
        )

        # Capacity
        self.MAX_CUSTOMERS: int = _get_int("MAX_CUSTOMERS", 20)
        self.PORT_RANGE_START: int = _get_int("PORT_RANGE_START", 30000)
        self.PORT_RANGE_END: int = _get_int("PORT_RANGE_END", 30999)

        # Reverse proxy
        self.BASE_DOMAIN: str = os.getenv("BASE_DOMAIN", "localhost")
        self.CADDY_ADMIN_URL: Optional[str] = os.getenv("CADDY_ADMIN_URL") or None

        # Platform LLM keys injected into tenant containers
        self.OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
        self.ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
        self.GROQ_API_KEY: Optional[str] = os.getenv("GROQ_API_KEY")
        self.OLLAMA_HOST: Optional[str] = os.getenv("OLLAMA_HOST")

        # Timeouts (seconds)
        self.CONTAINER_COMMAND_TIMEOUT: float = _get_float("CONTAINER_COMMAND_TIMEOUT", CONTAINER_COMMAND_TIMEOUT)
        self.BOT_VALIDATION_TIMEOUT: float = _get_float("BOT_VALIDATION_TIMEOUT", BOT_VALIDATION_TIMEOUT)
        self.PROXY_CALL_TIMEOUT: float = _get_float("PROXY_CALL_TIMEOUT", PROXY_CALL_TIMEOUT)

        # Telegram circuit breaker
        self.TELEGRAM_BREAKER_MAX_FAILURES: int = _get_int("TELEGRAM_BREAKER_MAX_FAILURES", 5)
        self.TELEGRAM_BREAKER_OPEN_TIMEOUT: float = _get_float("TELEGRAM_BREAKER_OPEN_TIMEOUT", 30.0)
        self.TELEGRAM_BREAKER_HALF_OPEN_MAX: int = _get_int("TELEGRAM_BREAKER_HALF_OPEN_MAX", 3)
        self.TELEGRAM_BREAKER_SUCCESS_THRESHOLD: int = _get_int("TELEGRAM_BREAKER_SUCCESS_THRESHOLD", 2)

    def validate(self) -> None:
        """Raise ValueError if the capacity settings are inconsistent."""
        if self.MAX_CUSTOMERS <= 0:
            raise ValueError("MAX_CUSTOMERS must be positive")
        if self.PORT_RANGE_END <= self.PORT_RANGE_START:
            raise ValueError("PORT_RANGE_END must be greater than PORT_RANGE_START")
        if self.PORT_RANGE_END - self.PORT_RANGE_START + 1 < self.MAX_CUSTOMERS:
            raise ValueError("port range must accommodate MAX_CUSTOMERS")

    def platform_llm_keys(self) -> Dict[str, str]:
        """Env key -> value for every configured platform LLM credential."""
        return {
            key: getattr(self, key)
            for key in LLM_ENV_KEYS
            if getattr(self, key)
        }


config = Config()
