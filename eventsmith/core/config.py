"""
Configuration management for Eventsmith.

This module handles loading and validating configuration from YAML files
and environment variables using Pydantic for type safety.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"


class GeneralConfig(BaseModel):
    """General configuration."""
    name: str = "Eventsmith"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    data_dir: str = "data"
    log_to_file: bool = False


class LLMConfig(BaseModel):
    """Text-completion configuration used by the extraction cascade."""
    # Rotation order for the primary strategy
    models: List[str] = Field(
        default_factory=lambda: ["llama-3.3-70b-versatile", "llama-3.1-8b-instant", "llama3.2"]
    )
    simple_model: str = "llama-3.1-8b-instant"
    structured_model: str = "llama-3.3-70b-versatile"
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0.0)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, ge=1)
    timeout: int = Field(default=30, ge=1)
    ollama_base_url: Optional[str] = None

    @field_validator("models")
    @classmethod
    def validate_models(cls, v):
        """The rotation list may not be empty."""
        models = [m for m in v if m and m.strip()]
        if not models:
            raise ValueError("llm.models must name at least one model")
        return models


class CalendarConfig(BaseModel):
    """Calendar store configuration."""
    timezone: str = "Europe/Berlin"
    calendar_id: str = "primary"
    credentials_file: str = "config/google_credentials.json"
    token_file: str = "config/calendar_token.pickle"
    duplicate_padding_minutes: int = Field(default=60, ge=0)
    default_duration_minutes: int = Field(default=60, ge=1)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        """Reject names the zoneinfo database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class CreationConfig(BaseModel):
    """Creation retry and repair configuration."""
    max_attempts: int = Field(default=3, ge=1, le=10)
    max_title_length: int = Field(default=100, ge=10)
    fallback_start: str = Field(default="09:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    retry_window_start: str = Field(default="10:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    retry_window_end: str = Field(default="11:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


class EventsmithConfig(BaseModel):
    """Main Eventsmith configuration."""
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    creation: CreationConfig = Field(default_factory=CreationConfig)


class EnvSettings(BaseSettings):
    """Environment variables settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Completion providers
    groq_api_key: Optional[str] = Field(default=None, alias="GROQ_API_KEY")
    ollama_base_url: Optional[str] = Field(default=None, alias="OLLAMA_BASE_URL")

    # Calendar
    google_calendar_credentials_path: Optional[str] = Field(default=None, alias="GOOGLE_CALENDAR_CREDENTIALS_PATH")

    # Alternate settings file
    config_path: Optional[str] = Field(default=None, alias="EVENTSMITH_CONFIG")

    @field_validator("groq_api_key", mode="before")
    @classmethod
    def validate_api_key(cls, v):
        """Treat placeholder values from .env templates as unset."""
        if v is None:
            return None
        if isinstance(v, str) and (not v.strip() or v.startswith("your_")):
            return None
        return v


def load_yaml_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("EVENTSMITH_CONFIG") or CONFIG_DIR / "settings.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(config_path: Path | str | None = None) -> EventsmithConfig:
    """
    Load and return the Eventsmith configuration.

    Sections missing from the YAML file fall back to their defaults.
    """
    yaml_config = load_yaml_config(config_path)
    return EventsmithConfig(**yaml_config)


def get_env_settings() -> EnvSettings:
    """Get environment settings."""
    return EnvSettings()


# Global configuration instances (lazy loaded)
_config: Optional[EventsmithConfig] = None
_env_settings: Optional[EnvSettings] = None


def config() -> EventsmithConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = get_config()
    return _config


def env() -> EnvSettings:
    """Get the global environment settings instance."""
    global _env_settings
    if _env_settings is None:
        _env_settings = get_env_settings()
    return _env_settings


def reset_config() -> None:
    """Drop the cached instances so the next call reloads them."""
    global _config, _env_settings
    _config = None
    _env_settings = None
