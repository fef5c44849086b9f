"""Typer command provisioning a new cluster."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ephfleet_core.localization import _
from ephfleet_core.timeutil import format_lifetime
from services.base import EXT4, CreateOptions
from ui.formatters import cluster_detail_table

from .common import cluster_options, load_config, load_manager, parse_lifetime_option, reported_errors, split_csv


def register(app_root: typer.Typer) -> None:
    """Register this module's command with the Typer application."""

    app_root.command("create")(create)


def create(
    name: str = typer.Argument(..., help="Cluster name, <account>-<suffix> or 'local'"),
    nodes: int = typer.Option(4, "--nodes", "-n", help="Number of nodes"),
    clouds: str = typer.Option("gce", "--clouds", "-c", help="Comma separated providers to place nodes on"),
    lifetime: Optional[str] = typer.Option(None, "--lifetime", "-l", help="Lifetime such as 12h or 2h30m"),
    machine_type: Optional[str] = typer.Option(None, "--machine-type", help="Provider machine type"),
    zones: Optional[str] = typer.Option(None, "--zones", help="Comma separated zones"),
    filesystem: str = typer.Option(EXT4, "--filesystem", help="Data disk filesystem (ext4 or zfs)"),
    local_ssd: bool = typer.Option(True, "--local-ssd/--no-local-ssd", help="Attach local SSDs"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Owner override"),
    secure: bool = typer.Option(False, "--secure", help="Mark the cluster handle as secure"),
) -> None:
    """Create a cluster of ephemeral VMs."""

    console = Console()
    with reported_errors():
        config = load_config()
        options = CreateOptions(
            providers=split_csv(clouds),
            lifetime=parse_lifetime_option(lifetime) if lifetime else config.default_lifetime,
            machine_type=machine_type,
            zones=split_csv(zones),
            filesystem=filesystem,
            local_ssd=local_ssd,
            cluster_name=name,
        )
        manager = load_manager(config)
        console.print(Panel(_summary_table(name, nodes, options), title=_("Operation summary")))
        cluster = manager.create(
            nodes,
            username or config.username,
            options,
            cluster_options(config, secure=secure),
        )

    console.print(
        _("[green]Cluster {name} created with {count} node(s)[/green]").format(
            name=cluster.name,
            count=len(cluster.vms),
        )
    )
    console.print(cluster_detail_table(cluster))


def _summary_table(name: str, nodes: int, options: CreateOptions) -> Table:
    """Return summary table printed before provisioning starts."""

    table = Table(show_header=False)
    table.add_column(_("Field"), style="bold")
    table.add_column(_("Value"))
    table.add_row(_("Cluster"), name)
    table.add_row(_("Nodes"), str(nodes))
    table.add_row(_("Providers"), ", ".join(options.providers) or _("None"))
    table.add_row(_("Lifetime"), format_lifetime(options.lifetime))
    table.add_row(_("Machine type"), options.machine_type or _("provider default"))
    table.add_row(_("Filesystem"), options.filesystem)
    return table

