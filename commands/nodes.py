"""Typer commands acting on the nodes of a cluster (``name`` or ``name:nodes``)."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from ephfleet_core.localization import _
from services.providers import build_node_addresses, build_profile_collector
from ui.formatters import node_table

from .common import cluster_options, load_config, load_manager, reported_errors

_CLUSTER_HELP = "Cluster and optional node selector, e.g. alice-test:1-3"


def register(app_root: typer.Typer) -> None:
    """Register node-level commands."""

    app_root.command("status")(status)
    app_root.command("start")(start)
    app_root.command("stop")(stop)
    app_root.command("wipe")(wipe)
    app_root.command("run")(run)
    app_root.command("ip")(ip)
    app_root.command("pgurl")(pgurl)
    app_root.command("adminurl")(adminurl)
    app_root.command("pprof")(pprof)


def status(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    tag: str = typer.Option("", "--tag", help="Process tag to report"),
) -> None:
    """Show whether the database process runs on each node."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config, tag=tag))
        statuses = manager.remote.status(handle)
    Console().print(node_table(handle.name, statuses))


def start(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    secure: bool = typer.Option(False, "--secure", help="Start in secure mode"),
    racks: int = typer.Option(0, "--racks", help="Spread nodes over this many racks"),
    args: Optional[List[str]] = typer.Option(None, "--args", "-a", help="Extra start arguments"),
    env: Optional[List[str]] = typer.Option(None, "--env", "-e", help="Extra KEY=VALUE environment entries"),
    tag: str = typer.Option("", "--tag", help="Process tag"),
) -> None:
    """Start the database on the selected nodes."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        options = cluster_options(config, secure=secure, racks=racks, args=args, env=env, tag=tag)
        handle = manager.open_cluster(cluster, options)
        manager.remote.start(handle)
    typer.secho(_("Started {count} node(s)").format(count=len(handle.nodes)), fg=typer.colors.GREEN)


def stop(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    sig: int = typer.Option(9, "--sig", help="Signal sent to the process"),
    wait: bool = typer.Option(False, "--wait", help="Wait for the processes to exit"),
) -> None:
    """Stop the database on the selected nodes."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config))
        manager.remote.stop(handle, sig, wait)
    typer.secho(_("Stopped {count} node(s)").format(count=len(handle.nodes)), fg=typer.colors.GREEN)


def wipe(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    preserve_certs: bool = typer.Option(False, "--preserve-certs", help="Keep the certificates directory"),
) -> None:
    """Stop the database and delete its data on the selected nodes."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config))
        manager.remote.wipe(handle, preserve_certs)
    typer.secho(_("Wiped {count} node(s)").format(count=len(handle.nodes)), fg=typer.colors.GREEN)


def run(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    command: List[str] = typer.Argument(..., help="Command to run on every node"),
) -> None:
    """Run a shell command on the selected nodes."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config))
        outputs = manager.remote.run(handle, " ".join(command))
    for node, output in outputs.items():
        typer.secho(f"{handle.name}:{node}", bold=True)
        typer.echo(output.rstrip("\n"))


def ip(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    external: bool = typer.Option(False, "--external", help="Print public addresses"),
) -> None:
    """Print the IP address of each selected node."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config))
        addresses = build_node_addresses(config, manager.remote).ip(handle, external)
    for address in addresses.values():
        typer.echo(address)


def pgurl(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    external: bool = typer.Option(False, "--external", help="Use public addresses"),
    secure: bool = typer.Option(False, "--secure", help="Build URLs for a secure cluster"),
) -> None:
    """Print a postgres URL for each selected node."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config, secure=secure))
        urls = build_node_addresses(config, manager.remote).pgurl(handle, external)
    typer.echo(" ".join(f"'{url}'" for url in urls.values()))


def adminurl(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    ips: bool = typer.Option(False, "--ips", help="Use IP addresses instead of DNS names"),
    path: str = typer.Option("/", "--path", help="Path appended to every URL"),
    open_browser: bool = typer.Option(False, "--open", help="Open the URLs in a browser"),
    secure: bool = typer.Option(False, "--secure", help="Use https"),
) -> None:
    """Print the admin UI URL of each selected node."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config, secure=secure))
        urls = build_node_addresses(config, manager.remote).adminurl(handle, use_ips=ips, path=path)
    for url in urls.values():
        typer.echo(url)
        if open_browser:
            typer.launch(url)


def pprof(
    cluster: str = typer.Argument(..., help=_CLUSTER_HELP),
    duration: float = typer.Option(10.0, "--duration", help="Seconds of CPU profile to capture"),
    heap: bool = typer.Option(False, "--heap", help="Capture a heap profile instead"),
    output_dir: Path = typer.Option(Path("."), "--output-dir", help="Directory for the profile files"),
    secure: bool = typer.Option(False, "--secure", help="Use https"),
) -> None:
    """Capture CPU or heap profiles from the selected nodes."""

    with reported_errors():
        config = load_config()
        manager = load_manager(config)
        handle = manager.open_cluster(cluster, cluster_options(config, secure=secure))
        collector = build_profile_collector(config, manager.remote)
        outputs = collector.pprof(handle, duration=duration, heap=heap, output_dir=output_dir)
    for path in outputs:
        typer.echo(str(path))
