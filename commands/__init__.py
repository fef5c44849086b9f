"""Subpackage with CLI command implementations for ephfleet."""

from __future__ import annotations

import typer


def register(app: typer.Typer) -> None:
	"""Register all CLI commands on the provided Typer application."""

	from . import clusters, configure, create, destroy, nodes

	create.register(app)
	destroy.register(app)
	clusters.register(app)
	nodes.register(app)
	configure.register(app)
