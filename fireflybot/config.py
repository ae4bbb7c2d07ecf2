"""Fireflybot configuration management."""

import logging
import tomllib
from pathlib import Path
from typing import Optional, Union

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger("fireflybot.config")


class ConfigError(Exception):
    """The configuration file is missing, unreadable or invalid."""
    pass


class BotSettings(BaseSettings):
    """Settings loaded from a TOML file; FIREFLYBOT_* environment variables win."""

    # Matrix
    matrix_homeserver_url: str = Field(description="Homeserver base URL")
    matrix_username: str = Field(description="Bot account user name")
    matrix_password: str = Field(description="Bot account password")
    matrix_room_id: str = Field(description="Room to listen in, e.g. !abc:example.org")

    # Firefly III
    firefly_url: str = Field(description="Ledger base URL")
    firefly_api_key: str = Field(description="Personal access token")
    firefly_source_account_id: int = Field(description="Account all expenses are drawn from")
    firefly_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    # Bot
    max_concurrency: int = Field(default=16, ge=1, description="Messages handled at once")
    store_path: Optional[Path] = Field(default=None, description="Matrix store directory")
    log_level: str = Field(default="INFO", description="Root log level")

    model_config = {"env_prefix": "FIREFLYBOT_", "extra": "ignore"}

    @field_validator("firefly_url", "matrix_homeserver_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return level

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings,
    ):
        # File values arrive as init kwargs; environment overrides them
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_settings(path: Union[str, Path]) -> BotSettings:
    """Load settings from a TOML config file.

    Raises:
        ConfigError: File missing, not valid TOML, or values invalid
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        settings = BotSettings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config in {path}:\n{e}") from e

    if not settings.firefly_url.startswith("https://"):
        logger.warning(
            "⚠️ firefly_url is not HTTPS — the API key is sent in clear text."
        )

    return settings
