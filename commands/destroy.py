"""Typer command destroying clusters."""

from __future__ import annotations

from typing import List, Optional

import questionary
import typer
from rich.console import Console

from ephfleet_core.localization import _

from .common import load_config, load_manager, reported_errors


def register(app_root: typer.Typer) -> None:
    """Register the destroy command with the Typer application."""

    app_root.command("destroy")(destroy)


def destroy(
    names: Optional[List[str]] = typer.Argument(None, help="Clusters to destroy"),
    all_mine: bool = typer.Option(False, "--all-mine", "-m", help="Destroy every cluster you own"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Owner override"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Destroy named clusters, or all of your clusters with --all-mine."""

    console = Console()
    if all_mine and not yes:
        if not questionary.confirm(_("Destroy all of your clusters?"), default=False).ask():
            typer.secho(_("Operation cancelled"), fg=typer.colors.YELLOW)
            raise typer.Exit(code=1)

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        destroyed = manager.destroy(
            names or [],
            all_mine=all_mine,
            username=username or config.username,
        )

    if not destroyed:
        typer.secho(_("No clusters destroyed"), fg=typer.colors.YELLOW)
        return
    for name in destroyed:
        console.print(_("[green]Cluster {name} destroyed[/green]").format(name=name))
