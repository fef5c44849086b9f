"""End-to-end tests of the Typer commands against fake providers."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import typer
from typer.testing import CliRunner

from commands import register as register_commands
from commands.common import exit_code_for
from ephfleet_core import AppConfig
from ephfleet_core.errors import ErrorKind, FleetError, PartialFailure, IndexedError
from services.cloud import Cloud
from services.lifecycle import ClusterManager
from services.registry import ProviderRegistry
from services.state import CloudStateStore

from fakes import FakeProvider, FakeRemote, make_vm


def _app() -> typer.Typer:
    app = typer.Typer()
    register_commands(app)
    return app


class ExitCodeTests(unittest.TestCase):
    def test_kinds_map_to_distinct_codes(self) -> None:
        self.assertEqual(2, exit_code_for(FleetError(ErrorKind.INVALID_INPUT, "x")))
        self.assertEqual(3, exit_code_for(FleetError(ErrorKind.NOT_FOUND, "x")))
        self.assertEqual(4, exit_code_for(FleetError(ErrorKind.ALREADY_EXISTS, "x")))
        self.assertEqual(5, exit_code_for(FleetError(ErrorKind.LOCK, "x")))
        self.assertEqual(1, exit_code_for(PartialFailure([IndexedError(0, RuntimeError("x"))])))
        self.assertEqual(1, exit_code_for(RuntimeError("x")))


class CommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        root = Path(self._tmp.name)
        self.provider = FakeProvider(vms=[make_vm("alice-x", 1), make_vm("alice-x", 2)])
        registry = ProviderRegistry([self.provider])
        self.store = CloudStateStore(registry, root / "state")
        self.manager = ClusterManager(registry, self.store, FakeRemote(root / "local"))
        self.config = AppConfig()
        self.runner = CliRunner()
        self.app = _app()

    def invoke(self, module: str, args: list[str], manager: object | None = None):
        with patch(f"commands.{module}.load_config", return_value=self.config), patch(
            f"commands.{module}.load_manager", return_value=manager or self.manager
        ):
            return self.runner.invoke(self.app, args)

    def test_destroy_named_cluster(self) -> None:
        result = self.invoke("destroy", ["destroy", "alice-x"])

        self.assertEqual(0, result.exit_code, result.output)
        self.assertIn("Cluster alice-x destroyed", result.output)
        self.assertEqual([], self.provider.vms)

    def test_destroy_conflicting_arguments_is_invalid_input(self) -> None:
        result = self.invoke("destroy", ["destroy", "alice-x", "--all-mine", "--yes"])

        self.assertEqual(2, result.exit_code)
        self.assertNotIn("list", self.provider.call_names())

    def test_destroy_missing_cluster_is_partial_failure(self) -> None:
        result = self.invoke("destroy", ["destroy", "alice-gone"])

        self.assertEqual(1, result.exit_code)
        self.assertIn("destroying clusters (1 failed)", result.output)
        self.assertIn("alice-gone", result.output)

    def test_create_existing_cluster(self) -> None:
        result = self.invoke("create", ["create", "alice-x", "--clouds", "fake", "--nodes", "2"])

        self.assertEqual(4, result.exit_code)
        self.assertIn("already exists", result.output)
        self.assertNotIn("create", self.provider.call_names())

    def test_create_rejects_node_count(self) -> None:
        result = self.invoke("create", ["create", "alice-y", "--clouds", "fake", "--nodes", "0"])
        self.assertEqual(2, result.exit_code)

    def test_extend_rejects_bad_lifetime(self) -> None:
        result = self.invoke("clusters", ["extend", "alice-x", "--lifetime", "forever"])
        self.assertEqual(2, result.exit_code)
        self.assertEqual([], self.provider.calls)

    def test_unknown_cluster_not_found_with_hint(self) -> None:
        self.store.save(Cloud.from_vms([make_vm("alice-x", 1)]))

        result = self.invoke("nodes", ["status", "bob-y"])

        self.assertEqual(3, result.exit_code)
        self.assertIn("unknown cluster: bob-y", result.output)
        self.assertIn("ephfleet sync", result.output)

    def test_lock_failure_exit_code(self) -> None:
        manager = MagicMock()
        manager.sync.side_effect = FleetError(ErrorKind.LOCK, "acquiring lock on LOCK: busy")

        result = self.invoke("clusters", ["sync"], manager=manager)

        self.assertEqual(5, result.exit_code)

    def test_cached_hosts(self) -> None:
        self.store.save(Cloud.from_vms([make_vm("alice-x", 1), make_vm("alice-x", 2), make_vm("bob-y", 1)]))

        result = self.invoke("clusters", ["cached-hosts", "--cluster", "bob"])

        self.assertEqual(0, result.exit_code, result.output)
        self.assertEqual(["alice-x", "bob-y", "bob-y:1"], result.output.split())

    def test_gc_dry_run_reports_expired(self) -> None:
        report = MagicMock(expired={"alice": ["alice-old"]}, key_pairs=[], bad_instances=[])
        manager = MagicMock()
        manager.gc.return_value = report

        result = self.invoke("clusters", ["gc", "--dry-run"], manager=manager)

        self.assertEqual(0, result.exit_code, result.output)
        manager.gc.assert_called_once_with(dry_run=True, notify_token=None)
        self.assertIn("alice-old", result.output)

    def test_config_init_writes_template_once(self) -> None:
        destination = Path(self._tmp.name, "conf", "config.ini")

        first = self.runner.invoke(self.app, ["config", "init", "--path", str(destination)])
        second = self.runner.invoke(self.app, ["config", "init", "--path", str(destination)])

        self.assertEqual(0, first.exit_code, first.output)
        self.assertIn("[ephfleet.secrets]", destination.read_text(encoding="ascii"))
        self.assertEqual(1, second.exit_code)


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
