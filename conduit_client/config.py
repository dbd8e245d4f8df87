"""Configuration loading for the command-line tools."""

from __future__ import annotations

import json
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from conduit_client.errors import ConfigError

DEFAULT_HOMESERVER = "http://conduit.local"
DEFAULT_DEVICE_NAME = "Conduit Python Client"


class Config(BaseSettings):
    """Configuration from environment (``MATRIX_*`` variables)."""

    model_config = SettingsConfigDict(env_prefix="MATRIX_", extra="ignore")

    homeserver: str = DEFAULT_HOMESERVER
    username: str | None = None
    password: str | None = None
    ssl_verify: bool = True
    device_display_name: str = DEFAULT_DEVICE_NAME
    sync_timeout_ms: int = 30000
    list_timeout_ms: int = 5000


class UserSpec(BaseModel):
    """One account to register during user setup."""

    username: str
    password: str
    display_name: str
    admin: bool = False


DEFAULT_USERS: list[UserSpec] = [
    UserSpec(username="admin", password="admin123", display_name="Administrator", admin=True),
    UserSpec(username="bob", password="bob123", display_name="Bob Smith"),
    UserSpec(username="rachel", password="rachel123", display_name="Rachel Green"),
]

_user_list = TypeAdapter(list[UserSpec])


def _load_config() -> Config:
    """Load configuration from ``.env`` and environment variables."""
    load_dotenv()
    return Config()


def load_user_specs(path: Path) -> list[UserSpec]:
    """Read an ordered list of accounts from a JSON array file."""
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        raise ConfigError(f"Cannot read users file: {e}", target=str(path)) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Users file is not valid JSON: {e}", target=str(path)) from e

    try:
        return _user_list.validate_python(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid users file: {e}", target=str(path)) from e
