"""Application configuration management for the ephfleet CLI."""

from __future__ import annotations

import configparser
import os
import sys
from contextlib import suppress
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

from .localization import _
from .timeutil import parse_lifetime

DEFAULT_MAX_CONCURRENCY = 32
DEFAULT_LIFETIME = "12h"


class _ConfigSchema(BaseModel):
    """Validation schema for values read from the ini file and environment."""

    username: Optional[str] = None
    state_dir: Optional[str] = None
    local_dir: Optional[str] = None
    aws_profile: Optional[str] = None
    aws_regions: Optional[str] = None
    aws_machine_type: Optional[str] = None
    gce_projects: Optional[str] = None
    gce_default_project: Optional[str] = None
    gce_zones: Optional[str] = None
    gce_machine_type: Optional[str] = None
    gce_dns_zone: Optional[str] = None
    gce_dns_domain: Optional[str] = None
    azure_subscription: Optional[str] = None
    azure_locations: Optional[str] = None
    azure_machine_type: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_key_path: Optional[str] = None
    max_concurrency: Optional[int] = None
    lifetime: Optional[str] = None
    slack_token: Optional[str] = None

    @field_validator("max_concurrency")
    @classmethod
    def _non_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("max_concurrency must be >= 0")
        return value

    @field_validator("lifetime")
    @classmethod
    def _valid_lifetime(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_lifetime(value)
        return value


@dataclass(slots=True)
class AppConfig:
    """Application configuration resolved at runtime."""

    username: Optional[str] = None
    state_dir: Optional[str] = None
    local_dir: Optional[str] = None
    aws_profile: Optional[str] = None
    aws_regions: Optional[str] = None
    aws_machine_type: Optional[str] = None
    gce_projects: Optional[str] = None
    gce_default_project: Optional[str] = None
    gce_zones: Optional[str] = None
    gce_machine_type: Optional[str] = None
    gce_dns_zone: Optional[str] = None
    gce_dns_domain: Optional[str] = None
    azure_subscription: Optional[str] = None
    azure_locations: Optional[str] = None
    azure_machine_type: Optional[str] = None
    ssh_user: Optional[str] = None
    ssh_key_path: Optional[str] = None
    max_concurrency: Optional[int] = None
    lifetime: Optional[str] = None
    slack_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from ``EPHFLEET_*`` environment variables."""
        raw = {name: _get_env(f"EPHFLEET_{name.upper()}") for name in _CONFIG_FIELDS}
        return cls(**_validate(raw))

    @classmethod
    def from_sources(cls, *, ini_path: Path | None = None) -> "AppConfig":
        """Load configuration from ini file and environment variables."""

        merged: dict[str, object] = {}
        if ini_path and ini_path.exists():
            merged.update(_load_ini_values(ini_path))

        env_config = cls.from_env()
        for field in _CONFIG_FIELDS:
            value = getattr(env_config, field)
            if value is not None:
                merged[field] = value

        return cls(**_validate({name: merged.get(name) for name in _CONFIG_FIELDS}))

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir or "~/.ephfleet").expanduser()

    @property
    def local_path(self) -> Path:
        return Path(self.local_dir or "~/local").expanduser()

    @property
    def concurrency(self) -> int:
        if self.max_concurrency is None:
            return DEFAULT_MAX_CONCURRENCY
        return self.max_concurrency

    @property
    def default_lifetime(self) -> timedelta:
        return parse_lifetime(self.lifetime or DEFAULT_LIFETIME)

    def list_value(self, name: str) -> list[str]:
        """Split a comma separated field into its non-empty items."""

        raw = getattr(self, name) or ""
        return [item.strip() for item in raw.split(",") if item.strip()]


def resolve_default_config_path() -> Path:
    """Return path to default configuration file location."""

    if _is_frozen_binary():
        executable = Path(sys.executable).resolve()
        return executable.parent / "ephfleet.ini"
    return Path("~/.config/ephfleet/config.ini").expanduser()


def resolve_config_path() -> Path:
    """Resolve configuration file path, honoring environment overrides."""

    override = os.getenv("EPHFLEET_CONFIG_PATH")
    if override:
        return Path(override).expanduser()
    return resolve_default_config_path()


def resolve_config(
    interactive: bool = False,
    *,
    config_path: Path | None = None,
    persist_prompt: bool = True,
) -> AppConfig:
    """Build application configuration, optionally prompting for missing values."""

    path = config_path or resolve_config_path()
    config = AppConfig.from_sources(ini_path=path)
    if not interactive:
        return config

    from ui.menus import prompt_app_config  # Imported lazily to avoid cycles

    updated = prompt_app_config(config)
    if persist_prompt:
        _maybe_persist_config(updated, path)
    return updated


def with_overrides(config: AppConfig, **overrides: object) -> AppConfig:
    """Return new configuration instance with the provided field overrides."""

    return replace(config, **overrides)


def save_config_to_ini(config: AppConfig, path: Path) -> None:
    """Persist configuration values to an ini file, separating secrets."""

    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # Preserve field case

    general: dict[str, str] = {}
    secrets: dict[str, str] = {}

    for field in _CONFIG_FIELDS:
        value = getattr(config, field)
        if value is None or value == "":
            continue
        target = secrets if field in _SENSITIVE_FIELDS else general
        target[field] = str(value)

    parser[CONFIG_SECTION] = general
    if secrets:
        parser[SECRETS_SECTION] = secrets

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        parser.write(handle)

    with suppress(PermissionError, NotImplementedError):
        os.chmod(path, 0o600)


def _get_env(key: str) -> Optional[str]:
    """Return environment variable value with blank strings normalized to None."""
    value = os.getenv(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate(raw: dict[str, object]) -> dict[str, object]:
    try:
        data = _ConfigSchema(**raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid ephfleet configuration: {exc}") from exc
    return data.model_dump()


CONFIG_SECTION = "ephfleet"
SECRETS_SECTION = "ephfleet.secrets"
_CONFIG_FIELDS = tuple(field.name for field in fields(AppConfig))
_SENSITIVE_FIELDS = {"slack_token"}


def _load_ini_values(path: Path) -> dict[str, Optional[str]]:
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str
    if not parser.read(path, encoding="utf-8"):
        return {}

    values: dict[str, Optional[str]] = {}
    for field in _CONFIG_FIELDS:
        section = SECRETS_SECTION if field in _SENSITIVE_FIELDS else CONFIG_SECTION
        if parser.has_option(section, field):
            raw = parser.get(section, field)
            values[field] = raw.strip() or None
    return values


def _maybe_persist_config(config: AppConfig, path: Path) -> None:
    import questionary

    message = _("Save configuration to {path}?").format(path=path)
    should_save = questionary.confirm(message, default=False).ask()
    if not should_save:
        return

    try:
        save_config_to_ini(config, path)
    except OSError as exc:
        print(_("[WARN] Failed to save configuration: {error}").format(error=exc))


def _is_frozen_binary() -> bool:
    """Return True when running from a PyInstaller-style frozen binary."""

    return bool(getattr(sys, "frozen", False))
