"""Formatting helpers for rich-rendered CLI output."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Mapping

from rich import box
from rich.table import Table

from ephfleet_core.errors import PartialFailure
from ephfleet_core.localization import _
from ephfleet_core.timeutil import format_lifetime, utcnow

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ephfleet_core import AppConfig
    from services.cloud import Cloud, Cluster

_SECRET_PLACEHOLDER = "•••••"


def config_summary_table(config: "AppConfig") -> Table:
    """Return a Rich table summarising the current application configuration."""

    table = Table(title=_("Configuration"), box=box.ROUNDED, show_header=False)
    table.add_column(_("Key"), style="bold cyan")
    table.add_column(_("Value"), overflow="fold")

    for label, value, secret in _iter_config_fields(config):
        table.add_row(label, _format_value(value, secret))
    return table


def _iter_config_fields(config: "AppConfig"):
    """Yield tuples describing configuration fields for summary rendering."""

    mapping = (
        (_("Owner override"), config.username, False),
        (_("State directory"), config.state_dir, False),
        (_("AWS profile"), config.aws_profile, False),
        (_("AWS regions"), config.aws_regions, False),
        (_("GCE projects"), config.gce_projects, False),
        (_("GCE zones"), config.gce_zones, False),
        (_("GCE DNS domain"), config.gce_dns_domain, False),
        (_("Azure subscription"), config.azure_subscription, False),
        (_("SSH user"), config.ssh_user, False),
        (_("SSH private key"), config.ssh_key_path, False),
        (_("Default lifetime"), config.lifetime, False),
        (_("Slack token"), config.slack_token, True),
    )
    for item in mapping:
        yield item


def _format_value(value: object, secret: bool) -> str:
    """Return formatted configuration value for display."""

    if value is None or value == "":
        return "[dim]{placeholder}[/dim]".format(placeholder=_("n/a"))
    if secret:
        return _SECRET_PLACEHOLDER
    return str(value)


def _remaining(expires_at: datetime | None, now: datetime) -> str:
    if expires_at is None:
        return "-"
    left = expires_at - now
    if left.total_seconds() <= 0:
        return "[red]{label}[/red]".format(label=_("expired"))
    return format_lifetime(left)


def cluster_table(cloud: "Cloud", *, now: datetime | None = None) -> Table:
    """Return a table with one row per cluster."""

    now = now or utcnow()
    table = Table(title=_("Clusters"), box=box.ROUNDED)
    table.add_column(_("Name"), style="bold cyan")
    table.add_column(_("Nodes"), justify="right")
    table.add_column(_("Providers"))
    table.add_column(_("Created"))
    table.add_column(_("Expires in"))

    for name in cloud.names():
        cluster = cloud.clusters[name]
        created = cluster.created_at
        table.add_row(
            name,
            str(len(cluster.vms)),
            ",".join(cluster.providers),
            created.strftime("%Y-%m-%d %H:%M") if created else "-",
            _remaining(cluster.expires_at, now),
        )
    if cloud.bad_instances:
        table.caption = _("{count} VM(s) with malformed names").format(count=len(cloud.bad_instances))
    return table


def cluster_detail_table(cluster: "Cluster") -> Table:
    """Return a table listing the VMs of one cluster."""

    table = Table(title=cluster.name, box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column(_("VM"))
    table.add_column(_("Public IP"))
    table.add_column(_("Private IP"))
    table.add_column(_("Locality"), overflow="fold")
    for node in cluster.nodes:
        vm = cluster.vm(node)
        table.add_row(str(node), vm.name, vm.public_ip or "-", vm.private_ip or "-", cluster.localities[node - 1])
    return table


def node_table(title: str, values: Mapping[int, str]) -> Table:
    """Return a two-column table of per-node values."""

    table = Table(title=title, box=box.SIMPLE, show_header=False)
    table.add_column("#", justify="right", style="bold")
    table.add_column(_("Value"), overflow="fold")
    for node, value in sorted(values.items()):
        table.add_row(str(node), value)
    return table


def failure_table(error: PartialFailure) -> Table:
    """Return one row per failed unit of a combined error."""

    table = Table(title=_("Failures"), box=box.ROUNDED, title_style="bold red")
    table.add_column("#", justify="right")
    table.add_column(_("Error"), overflow="fold")
    table.add_column(_("Output"), overflow="fold", style="dim")
    for item in error.failures:
        table.add_row(str(item.index), str(item.error), item.output.strip())
    return table
