"""Helpers shared by the command modules: wiring, option parsing and error reporting."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

import typer
from rich.console import Console

from ephfleet_core import AppConfig, resolve_config
from ephfleet_core.errors import ErrorKind, FleetError, PartialFailure, invalid_input
from ephfleet_core.localization import _
from ephfleet_core.timeutil import parse_lifetime
from services.cloud import DEFAULT_ENV, ClusterOptions
from services.lifecycle import ClusterManager
from services.providers import build_cluster_manager
from ui.formatters import failure_table

logger = logging.getLogger(__name__)

EXIT_UNSPECIFIED = 1

EXIT_CODES = {
    ErrorKind.INVALID_INPUT: 2,
    ErrorKind.NOT_FOUND: 3,
    ErrorKind.ALREADY_EXISTS: 4,
    ErrorKind.LOCK: 5,
}


def exit_code_for(error: BaseException) -> int:
    """Map an error to the process exit code; unknown kinds are unspecified."""

    if isinstance(error, FleetError):
        return EXIT_CODES.get(error.kind, EXIT_UNSPECIFIED)
    return EXIT_UNSPECIFIED


@contextmanager
def reported_errors(console: Optional[Console] = None) -> Iterator[None]:
    """Render failures raised by the body and exit with the matching code."""

    console = console or Console(stderr=True)
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except PartialFailure as exc:
        console.print(failure_table(exc))
        typer.secho(str(exc).splitlines()[0], fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_UNSPECIFIED)
    except FleetError as exc:
        typer.secho(_("Error: {error}").format(error=exc.message), fg=typer.colors.RED, err=True)
        if exc.hint:
            typer.secho(exc.hint, fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=exit_code_for(exc))
    except ValueError as exc:
        typer.secho(_("Error: {error}").format(error=exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_CODES[ErrorKind.INVALID_INPUT])
    except RuntimeError as exc:
        logger.debug("Command failed", exc_info=exc)
        typer.secho(_("Error: {error}").format(error=exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_UNSPECIFIED)


def load_config() -> AppConfig:
    return resolve_config(interactive=False)


def load_manager(config: Optional[AppConfig] = None) -> ClusterManager:
    return build_cluster_manager(config or load_config())


def parse_lifetime_option(value: str) -> timedelta:
    try:
        return parse_lifetime(value)
    except ValueError as exc:
        raise invalid_input(str(exc)) from exc


def split_csv(value: Optional[str]) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def cluster_options(
    config: AppConfig,
    *,
    secure: bool = False,
    tag: str = "",
    racks: int = 0,
    args: Optional[list[str]] = None,
    env: Optional[list[str]] = None,
    concurrency: Optional[int] = None,
    quiet: bool = False,
) -> ClusterOptions:
    return ClusterOptions(
        secure=secure,
        env=list(DEFAULT_ENV) + list(env or []),
        args=list(args or []),
        tag=tag,
        num_racks=racks,
        max_concurrency=config.concurrency if concurrency is None else concurrency,
        quiet=quiet,
    )

