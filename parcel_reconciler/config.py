"""Settings loaded from the environment (and .env via the entry points)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import (
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .folders import DEFAULT_PARCELS_ROOT

DEFAULT_CATALOG_PATH = Path.home() / "Documents" / "TitleCRM" / "catalog.json"


class Settings(BaseSettings):
    """Application settings from environment.

    Each field reads the variable named in its ``validation_alias``.
    Fields can also be passed by name, which is what tests do.
    """

    model_config = SettingsConfigDict(
        populate_by_name=True,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Extraction
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    extraction_model: str = Field(default="gpt-5", validation_alias="PARCEL_EXTRACTION_MODEL")
    extraction_timeout: PositiveFloat = Field(
        default=120.0, validation_alias="PARCEL_EXTRACTION_TIMEOUT"
    )
    extraction_retries: NonNegativeInt = Field(
        default=0, validation_alias="PARCEL_EXTRACTION_RETRIES"
    )

    # Storage
    catalog_path: Path = Field(default=DEFAULT_CATALOG_PATH, validation_alias="PARCEL_CATALOG_PATH")
    folders_root: Path = Field(default=DEFAULT_PARCELS_ROOT, validation_alias="PARCEL_FOLDERS_ROOT")
    remote_url: Optional[str] = Field(default=None, validation_alias="PARCEL_REMOTE_URL")
    remote_user: Optional[str] = Field(default=None, validation_alias="PARCEL_REMOTE_USER")
    remote_token: Optional[str] = Field(default=None, validation_alias="PARCEL_REMOTE_TOKEN")

    # Import runs
    item_delay: NonNegativeFloat = Field(
        default=0.8, validation_alias="PARCEL_ITEM_DELAY"
    )  # Seconds between documents; crude rate-limit guard
    create_missing: bool = Field(default=True, validation_alias="PARCEL_CREATE_MISSING")

    @field_validator("catalog_path", "folders_root", mode="after")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def remote_enabled(self) -> bool:
        return bool(self.remote_url and self.remote_user)

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the process environment.

        Raises:
            ConfigurationError: when a value cannot be parsed.
        """
        try:
            return cls()
        except ValidationError as exc:
            error = exc.errors()[0]
            variable = _variable_for(str(error["loc"][0])) if error["loc"] else "environment"
            raise ConfigurationError(
                f"{variable}: {error['msg']} (got {error.get('input')!r})",
                details={"variable": variable, "errors": len(exc.errors())},
            ) from exc


def _variable_for(key: str) -> str:
    """Environment variable behind a validation error location."""
    for name, field in Settings.model_fields.items():
        alias = field.validation_alias
        if isinstance(alias, str) and key.lower() in (name, alias.lower()):
            return alias
    return key


def configure_logging(level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger with a terse format for CLI and server output."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
