"""
Centralized settings for cronmutex.

One validated settings object holds everything the engine and the daemon
need: where the lock store lives, how mutex names are namespaced, and the
default lease lifetime.

Resolution order (highest wins)::

    CM_* environment variables  →  YAML config file  →  defaults

Environment variables nest with ``__``, e.g. ``CM_REDIS__URI`` or
``CM_MUTEX__DEFAULT_TTL``.

Config file::

    # /etc/cronmutex.yml
    redis:
      uri: redis://10.0.0.5:6379/0
      password: s3cret
    mutex:
      prefix: "cron:"
      default_ttl: 300

When no explicit path is given the first existing file of
``/etc/cronmutex.yml``, ``~/.config/cronmutex.yml`` and ``./cronmutex.yml``
(``.yaml`` accepted too) is used; with none present the defaults apply.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cronmutex.core.errors import ConfigError, InvalidConfigError

CONFIG_NAME = "cronmutex"

CONFIG_SEARCH_PATHS: tuple[Path, ...] = (
    Path("/etc"),
    Path("~/.config").expanduser(),
    Path("."),
)


class LeaseLostPolicy(str, Enum):
    """What a running execution does when its mutex can no longer be extended."""

    CONTINUE = "continue"  # keep running unprotected
    KILL = "kill"          # kill the command, report failure


class RedisSettings(BaseModel):
    uri: str = "redis://127.0.0.1:6379"
    password: str | None = None


class MutexSettings(BaseModel):
    prefix: str = ""
    default_ttl: int = Field(
        default=300,
        gt=0,
        validation_alias=AliasChoices("default_ttl", "defaultttl"),
        description="Mutex TTL in seconds when neither flag nor entry overrides it",
    )
    renew_margin: float = Field(
        default=0.25,
        ge=0,
        description="Seconds before expiry at which the mutex is extended",
    )
    on_lease_lost: LeaseLostPolicy = LeaseLostPolicy.CONTINUE

    @model_validator(mode="after")
    def _margin_below_ttl(self) -> MutexSettings:
        if self.renew_margin >= self.default_ttl:
            raise ValueError("renew_margin must be smaller than default_ttl")
        return self


class DaemonSettings(BaseModel):
    drain_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for in-flight runs on terminate (0 = don't wait)",
    )
    retry_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Delay between attempts to read an unreadable definitions file at startup",
    )


class CronmutexSettings(BaseSettings):
    """cronmutex configuration.

    Fields
    ──────
    redis   : lock store connection (uri, optional password)
    mutex   : name prefix, default TTL, renewal margin, lease-loss policy
    daemon  : shutdown drain and startup retry timing
    """

    model_config = SettingsConfigDict(
        env_prefix="CM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    redis: RedisSettings = Field(default_factory=RedisSettings)
    mutex: MutexSettings = Field(default_factory=MutexSettings)
    daemon: DaemonSettings = Field(default_factory=DaemonSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Values passed to __init__ come from the YAML file; the
        # environment must override them.
        return env_settings, init_settings, file_secret_settings


def find_config_file() -> Path | None:
    """Return the first config file found on the search path, if any."""
    for directory in CONFIG_SEARCH_PATHS:
        for suffix in (".yml", ".yaml"):
            candidate = directory / f"{CONFIG_NAME}{suffix}"
            if candidate.is_file():
                return candidate
    return None


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Could not open config file {path}", cause=e) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse config file {path}: {e}", cause=e) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def load_settings(config_file: str | Path | None = None) -> CronmutexSettings:
    """Load and validate settings.

    Args:
        config_file: Explicit config file. Must exist when given; when
            omitted the search path is used.

    Raises:
        ConfigError: The file is missing, unreadable or invalid.
    """
    if config_file is not None:
        path: Path | None = Path(config_file).expanduser()
        if not path.is_file():
            raise ConfigError(f"Could not open config file {path}")
    else:
        path = find_config_file()

    data = _read_config_file(path) if path is not None else {}

    try:
        return CronmutexSettings(**data)
    except ValidationError as e:
        source = str(path) if path is not None else "environment"
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"])
        raise InvalidConfigError(
            key,
            first.get("input"),
            f"Invalid configuration in {source}: {key}: {first['msg']}",
            cause=e,
        ) from e


__all__ = [
    "LeaseLostPolicy",
    "RedisSettings",
    "MutexSettings",
    "DaemonSettings",
    "CronmutexSettings",
    "find_config_file",
    "load_settings",
]
