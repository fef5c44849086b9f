"""Typer commands operating on whole clusters: sync, list, extend, reset, gc."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from ephfleet_core.localization import _
from ephfleet_core.timeutil import format_lifetime, utcnow
from ui.formatters import cluster_detail_table, cluster_table

from .common import load_config, load_manager, parse_lifetime_option, reported_errors


def register(app_root: typer.Typer) -> None:
    """Register cluster-level commands."""

    app_root.command("sync")(sync)
    app_root.command("list")(list_clusters)
    app_root.command("extend")(extend)
    app_root.command("reset")(reset)
    app_root.command("gc")(gc)
    app_root.command("cached-hosts")(cached_hosts)


def sync(quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress progress output")) -> None:
    """Refresh the cached cluster list from every provider."""

    console = Console()
    with reported_errors():
        cloud = load_manager().sync(quiet=quiet)
    if not quiet:
        console.print(cluster_table(cloud))


def list_clusters(
    pattern: Optional[str] = typer.Argument(None, help="Regular expression matched against cluster names"),
    mine: bool = typer.Option(False, "--mine", "-m", help="Only show clusters you own"),
    details: bool = typer.Option(False, "--details", "-d", help="Show the VMs of every cluster"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Owner override"),
) -> None:
    """List clusters, optionally filtered."""

    console = Console()
    with reported_errors():
        config = load_config()
        cloud = load_manager(config).list_clusters(
            quiet=True,
            mine=mine,
            pattern=pattern,
            username=username or config.username,
        )

    console.print(cluster_table(cloud))
    if details:
        for name in cloud.names():
            console.print(cluster_detail_table(cloud.clusters[name]))
    if cloud.bad_instances:
        typer.secho(
            _("VMs with malformed names: {names}").format(
                names=", ".join(sorted(vm.name for vm in cloud.bad_instances)),
            ),
            fg=typer.colors.YELLOW,
        )


def extend(
    name: str = typer.Argument(..., help="Cluster to extend"),
    lifetime: str = typer.Option("12h", "--lifetime", "-l", help="Time to add, such as 12h or 30m"),
) -> None:
    """Push the expiry of a cluster further out."""

    console = Console()
    with reported_errors():
        extension = parse_lifetime_option(lifetime)
        cluster = load_manager().extend(name, extension)

    expires_at = cluster.expires_at
    remaining = format_lifetime(expires_at - utcnow()) if expires_at else "-"
    console.print(
        _("[green]Cluster {name} now expires in {remaining}[/green]").format(name=name, remaining=remaining)
    )


def reset(name: str = typer.Argument(..., help="Cluster to reboot")) -> None:
    """Reboot every VM of a cluster."""

    with reported_errors():
        load_manager().reset(name)
    typer.secho(_("Cluster {name} reset").format(name=name), fg=typer.colors.GREEN)


def gc(
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Only report what would be destroyed"),
    slack_token: Optional[str] = typer.Option(None, "--slack-token", help="Slack token used for notifications"),
) -> None:
    """Destroy expired clusters and orphaned key pairs."""

    console = Console()
    with reported_errors():
        config = load_config()
        report = load_manager(config).gc(dry_run=dry_run, notify_token=slack_token or config.slack_token)

    if not report.expired:
        console.print(_("No expired clusters"))
    for owner, names in sorted(report.expired.items()):
        verb = _("would destroy") if dry_run else _("destroyed")
        console.print(f"{owner}: {verb} {', '.join(sorted(names))}")
    for key_pair in report.key_pairs:
        console.print(_("Orphaned key pair: {name}").format(name=key_pair))
    if report.bad_instances:
        typer.secho(
            _("VMs with malformed names: {names}").format(names=", ".join(report.bad_instances)),
            fg=typer.colors.YELLOW,
        )


def cached_hosts(
    cluster: str = typer.Option("", "--cluster", help="Expand node entries for clusters with this prefix"),
) -> None:
    """Print cached cluster names, one per line."""

    with reported_errors():
        hosts = load_manager().cached_hosts(cluster)
    for host in hosts:
        typer.echo(host)
