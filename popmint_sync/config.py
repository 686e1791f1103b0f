from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_package_root = Path(__file__).resolve().parents[1]
load_dotenv(_package_root / ".env", override=False)


class Settings(BaseSettings):
    POPMINT_API_BASE_URL: str = "http://localhost:3000"
    POPMINT_REQUEST_TIMEOUT_SECONDS: float = 20.0

    POPMINT_RETRY_MAX_RETRIES: int = 3
    POPMINT_RETRY_DELAY_SECONDS: float = 1.0

    # Chat batches bursts of messages; canvas stays short so drags feel live.
    POPMINT_CHAT_DEBOUNCE_SECONDS: float = 0.5
    POPMINT_CANVAS_DEBOUNCE_SECONDS: float = 0.1
    POPMINT_CHAT_DEDUPE_INTERVAL_SECONDS: float = 2.0
    POPMINT_CHAT_REVALIDATE_ON_FOCUS: bool = True
    POPMINT_CHAT_REVALIDATE_ON_RECONNECT: bool = True

    POPMINT_DEFAULT_USER_ID: str = "default-user"
    POPMINT_PROJECTS_CACHE_SECONDS: float = 60.0

    @field_validator("POPMINT_API_BASE_URL")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("POPMINT_API_BASE_URL must be a non-empty URL")
        if not (cleaned.startswith("http://") or cleaned.startswith("https://")):
            raise ValueError("POPMINT_API_BASE_URL must be an absolute http(s) URL")
        return cleaned.rstrip("/")

    @field_validator(
        "POPMINT_REQUEST_TIMEOUT_SECONDS",
        "POPMINT_CHAT_DEBOUNCE_SECONDS",
        "POPMINT_CANVAS_DEBOUNCE_SECONDS",
        "POPMINT_CHAT_DEDUPE_INTERVAL_SECONDS",
    )
    @classmethod
    def validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("POPMINT_RETRY_MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("POPMINT_RETRY_MAX_RETRIES cannot be negative")
        return value

    @field_validator("POPMINT_RETRY_DELAY_SECONDS", "POPMINT_PROJECTS_CACHE_SECONDS")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("cannot be negative")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
