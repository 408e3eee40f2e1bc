"""Configuration models for connection preparation."""

from __future__ import annotations

import getpass
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_MS = 5000
DEFAULT_READ_TIMEOUT_MS = 15000
DEFAULT_USER_AGENT = "urlfetch/0.1.0"


def _default_headers() -> Mapping[str, str]:
    """Return immutable empty default headers mapping."""

    return MappingProxyType({})


def _default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


class EnvSettings(BaseSettings):
    """Environment overrides read by ConfigSource.from_env."""

    model_config = SettingsConfigDict(extra="ignore")

    connect_timeout_ms: int = Field(
        DEFAULT_CONNECT_TIMEOUT_MS, validation_alias="URLFETCH_CONNECT_TIMEOUT"
    )
    read_timeout_ms: int = Field(
        DEFAULT_READ_TIMEOUT_MS, validation_alias="URLFETCH_READ_TIMEOUT"
    )
    user_agent: str = Field("", validation_alias="URLFETCH_USER_AGENT")
    user: str = Field("", validation_alias="URLFETCH_USER")

    @field_validator("connect_timeout_ms", "read_timeout_ms", mode="before")
    @classmethod
    def int_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str):
            return value
        try:
            return int(value.strip())
        except ValueError:
            default = cls.model_fields[info.field_name].default
            logger.debug(
                "ignoring non-integer %s=%r, using %d",
                info.field_name,
                value,
                default,
            )
            return default


@dataclass(frozen=True)
class ConfigSource:
    """Defaults shared by every connection opened through one preparer.

    Holds the timeouts applied when a caller leaves them unset and the
    application identity sent with every prepared request.
    """

    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    read_timeout_ms: int = DEFAULT_READ_TIMEOUT_MS
    user_agent: str = DEFAULT_USER_AGENT
    user: str = field(default_factory=_default_user)

    def __post_init__(self) -> None:
        if self.connect_timeout_ms < 0:
            raise ValueError("connect_timeout_ms must be >= 0")
        if self.read_timeout_ms < 0:
            raise ValueError("read_timeout_ms must be >= 0")

    @classmethod
    def from_env(cls) -> ConfigSource:
        """Build a config from URLFETCH_* environment variables."""
        settings = EnvSettings()
        return cls(
            connect_timeout_ms=settings.connect_timeout_ms,
            read_timeout_ms=settings.read_timeout_ms,
            user_agent=settings.user_agent or DEFAULT_USER_AGENT,
            user=settings.user or _default_user(),
        )


@dataclass(frozen=True)
class ConnectionParameters:
    """Per-request settings applied by the connection preparer.

    Timeouts are in milliseconds; ``None`` takes the ConfigSource default and
    ``0`` disables the timeout. ``if_modified_since`` is milliseconds since
    the epoch, ``0`` meaning unset.
    """

    connect_timeout_ms: int | None = None
    read_timeout_ms: int | None = None
    allow_user_interaction: bool = False
    use_caches: bool = True
    if_modified_since: int = 0
    http_post: bool = False
    headers: Mapping[str, str] = field(default_factory=_default_headers)

    def __post_init__(self) -> None:
        if self.connect_timeout_ms is not None and self.connect_timeout_ms < 0:
            raise ValueError("connect_timeout_ms must be >= 0 when provided")
        if self.read_timeout_ms is not None and self.read_timeout_ms < 0:
            raise ValueError("read_timeout_ms must be >= 0 when provided")
        if self.if_modified_since < 0:
            raise ValueError("if_modified_since must be >= 0")

        # Freeze copied headers to avoid post-init mutation side effects.
        object.__setattr__(
            self,
            "headers",
            MappingProxyType(dict(self.headers)),
        )
