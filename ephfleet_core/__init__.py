"""Core helpers used by the ephfleet CLI."""

from .config import (
    AppConfig,
    resolve_config,
    resolve_config_path,
    resolve_default_config_path,
    save_config_to_ini,
    with_overrides,
)
from .errors import ErrorKind, FleetError, IndexedError, PartialFailure, ProviderError, combine_errors
from .timeutil import format_lifetime, parse_datetime, parse_lifetime

__all__ = [
    "AppConfig",
    "ErrorKind",
    "FleetError",
    "IndexedError",
    "PartialFailure",
    "ProviderError",
    "combine_errors",
    "format_lifetime",
    "parse_datetime",
    "parse_lifetime",
    "resolve_config",
    "resolve_config_path",
    "resolve_default_config_path",
    "save_config_to_ini",
    "with_overrides",
]
