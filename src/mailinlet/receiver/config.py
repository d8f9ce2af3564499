"""Configuration model for a polled mail endpoint.

The model is frozen: a receiver reads it on every poll and it must not change
underneath a running retrieval. Use :meth:`MailEndpointConfig.with_changes`
(or :meth:`MailReceiver.reconfigure` before initialization) to derive a new
validated configuration.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from mailinlet.errors import ConfigurationError

from .transport import MailUrl


DEFAULT_USER_FLAG = "mailinlet-mail-adapter"
DEFAULT_FOLDER = "INBOX"


class MailEndpointConfig(BaseModel):
    """Immutable configuration for one mail receiver endpoint."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    url: Optional[MailUrl] = Field(default=None, description="Store URL; its path names the folder")
    protocol: Optional[str] = Field(default=None, description="Store protocol when no URL is given")
    folder: str = Field(default=DEFAULT_FOLDER, description="Folder used when the URL has no path")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Session properties")
    session: Optional[Any] = Field(default=None, description="Pre-built session")
    authenticator: Optional[Callable[[], Any]] = Field(
        default=None, description="Supplies credentials when the session is built"
    )
    max_fetch_size: int = Field(default=-1, description="Messages per poll; <= 0 means unbounded")
    should_delete_messages: bool = Field(default=False, description="Delete and expunge after fetch")
    user_flag: str = Field(default=DEFAULT_USER_FLAG, description="Keyword used when \\Recent is unsupported")
    embedded_parts_as_bytes: bool = Field(
        default=True, description="Render multipart/nested content as raw bytes"
    )
    header_mapper: Optional[Any] = Field(default=None, description="Maps a message to output headers")
    selector: Optional[Callable[[Any], Any]] = Field(
        default=None, description="Predicate deciding which messages are received"
    )

    @field_validator("url", mode="before")
    @classmethod
    def _parse_url(cls, value: Any) -> Any:
        if value is None or isinstance(value, MailUrl):
            return value
        if isinstance(value, str):
            return MailUrl.parse(value) if value.strip() else None
        raise ValueError("url must be a string or MailUrl")

    @field_validator("protocol")
    @classmethod
    def _normalize_protocol(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else None

    @field_validator("user_flag")
    @classmethod
    def _validate_user_flag(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("user_flag must not be empty")
        if any(ch.isspace() for ch in value):
            raise ValueError("user_flag must be a single IMAP keyword without whitespace")
        return value

    @model_validator(mode="after")
    def _check_protocol_matches_url(self) -> MailEndpointConfig:
        if self.url is not None and self.protocol and self.protocol != self.url.protocol:
            raise ConfigurationError(
                "The 'protocol' does not match that provided by the Store URI.",
                details={"protocol": self.protocol, "url": str(self.url)},
            )
        return self

    @property
    def folder_name(self) -> str:
        if self.url is not None and self.url.file:
            return self.url.file
        return self.folder

    @property
    def store_protocol(self) -> Optional[str]:
        if self.url is not None:
            return self.url.protocol
        return self.protocol

    def with_changes(self, **changes: Any) -> MailEndpointConfig:
        """Return a validated copy with ``changes`` applied."""
        try:
            return type(self)(**{**dict(self), **changes})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


# ---------------------------------------------------------------------------
# File and environment loading
# ---------------------------------------------------------------------------


def load_endpoint_config(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
) -> MailEndpointConfig:
    """Load endpoint configuration from JSON, applying overrides then env vars."""

    data: Dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found at {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Configuration file {path} is not valid JSON") from exc

    data.update(overrides or {})
    _apply_env_overrides(data)

    try:
        config = MailEndpointConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    password = os.getenv("MAILINLET_PASSWORD")
    if password and config.url is not None:
        config = config.with_changes(url=config.url.with_password(password))
    return config


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    _set_env_override(data, "url", "MAILINLET_URL")
    _set_env_override(data, "protocol", "MAILINLET_PROTOCOL")
    _set_env_override(data, "folder", "MAILINLET_FOLDER")
    _set_env_override(data, "max_fetch_size", "MAILINLET_MAX_FETCH_SIZE", cast_int=True)
    _set_env_override(data, "should_delete_messages", "MAILINLET_DELETE_MESSAGES", cast_bool=True)
    _set_env_override(data, "user_flag", "MAILINLET_USER_FLAG")
    _set_env_override(
        data, "embedded_parts_as_bytes", "MAILINLET_EMBEDDED_PARTS_AS_BYTES", cast_bool=True
    )


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_bool: bool = False,
    cast_int: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if cast_bool:
        mapping[key] = raw.lower() in {"1", "true", "yes"}
    elif cast_int:
        try:
            mapping[key] = int(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{env_name} must be an integer") from exc
    else:
        mapping[key] = raw


__all__ = [
    "DEFAULT_FOLDER",
    "DEFAULT_USER_FLAG",
    "MailEndpointConfig",
    "load_endpoint_config",
]
