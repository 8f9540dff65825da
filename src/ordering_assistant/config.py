"""Application configuration via pydantic-settings.

Reads from environment variables and .env file at project root. Entry points
build Settings once and pass the values into the gateway and engine.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root is 3 levels up from this file:
# src/ordering_assistant/config.py -> project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """Application settings loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- LLM ---
    mistral_api_key: str
    mistral_model: str = "mistral-small-latest"
    mistral_temperature: float = 0.0

    # --- Menu / store ---
    menu_json_path: str = str(PROJECT_ROOT / "menus" / "demo-menu.json")
    currency: str = "EUR"
    initial_search: str = ""
    lead_time_minutes: int = 20

    # --- Logging ---
    log_level: str = "DEBUG"

    # --- Langfuse ---
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_base_url: str = "https://cloud.langfuse.com"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance (created once)."""
    return Settings()
