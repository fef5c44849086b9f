"""CLI helpers for managing ephfleet configuration files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from ephfleet_core import AppConfig, resolve_config_path, save_config_to_ini
from ephfleet_core.localization import _
from ui.formatters import config_summary_table

app = typer.Typer()

_TEMPLATE = """[ephfleet]
# username = alice
# state_dir = ~/.ephfleet
# local_dir = ~/local
# max_concurrency = 32
# lifetime = 12h
# aws_profile = default
# aws_regions = us-east-1,us-west-2,eu-west-2
# gce_projects = ephfleet-ephemeral
# gce_default_project = ephfleet-ephemeral
# gce_zones = us-east1-b,us-west1-b,europe-west2-b
# gce_dns_zone = ephfleet
# gce_dns_domain = ephfleet.internal
# azure_subscription =
# ssh_user = ubuntu
# ssh_key_path = ~/.ssh/id_rsa

[ephfleet.secrets]
# slack_token =
"""


def register(app_root: typer.Typer) -> None:
    """Attach configuration-related subcommands to the CLI."""

    app.help = _("Manage ephfleet configuration files")
    app_root.add_typer(app, name="config")


@app.command("init")
def init_config(
    path: Optional[Path] = typer.Option(None, "--path", help="Destination for the ini file"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite when the file already exists"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Answer prompts instead of writing a template"),
) -> None:
    """Create a configuration file, either a commented template or from prompts."""

    destination = (path or resolve_config_path()).expanduser()
    if destination.exists() and not overwrite:
        typer.secho(
            _("Configuration file already exists: {path}").format(path=destination),
            fg=typer.colors.YELLOW,
        )
        raise typer.Exit(code=1)

    if interactive:
        from ui.menus import prompt_app_config

        config = prompt_app_config(AppConfig.from_sources(ini_path=destination))
        save_config_to_ini(config, destination)
        Console().print(config_summary_table(config))
    else:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(_TEMPLATE, encoding="ascii")
        try:
            os.chmod(destination, 0o600)
        except (PermissionError, NotImplementedError):  # pragma: no cover - platform specific
            pass

    typer.secho(
        _("Configuration saved to {path}").format(path=destination),
        fg=typer.colors.GREEN,
    )
