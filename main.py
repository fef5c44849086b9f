"""Entry point for the ephfleet CLI."""

from __future__ import annotations

import logging
import sys

import typer

from commands import register as register_commands
from ephfleet_core.localization import _, initialize_locale


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )
    logging.getLogger("filelock").setLevel(logging.WARNING)


def _build_app() -> typer.Typer:
    """Create the Typer application after initialising localisation."""

    interactive = sys.stdin.isatty() and sys.stdout.isatty()
    initialize_locale(interactive=interactive)
    application = typer.Typer(help=_("Ephemeral multi-cloud cluster manager"))

    @application.callback()
    def _root(
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    ) -> None:
        _configure_logging(verbose)

    register_commands(application)
    return application


def main() -> None:
    """Execute the Typer application."""

    app = _build_app()
    app()


if __name__ == "__main__":
    main()
