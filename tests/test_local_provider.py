"""Tests for the local pseudo-provider and the vendor CLI helpers."""

from __future__ import annotations

import subprocess
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

from ephfleet_core.errors import ProviderError
from services.base import CreateOptions
from services.local import LOCALHOST, LocalProvider
from services.shell import run_command, run_json


class LocalProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.state_dir = Path(self._tmp.name)
        self.provider = LocalProvider(self.state_dir)

    def test_create_list_extend_delete(self) -> None:
        self.provider.create_vms(["local-0001", "local-0002"], CreateOptions(cluster_name="local"))

        vms = LocalProvider(self.state_dir).list_vms()
        self.assertEqual(["local-0001", "local-0002"], [vm.name for vm in vms])
        self.assertEqual(LOCALHOST, vms[0].public_ip)

        self.provider.extend_vms(vms[:1], timedelta(hours=20))
        self.assertEqual(timedelta(hours=20), self.provider.list_vms()[0].lifetime)

        self.provider.delete_vms(vms[:1])
        self.assertEqual(["local-0002"], [vm.name for vm in self.provider.list_vms()])

    def test_duplicate_node_rejected(self) -> None:
        self.provider.create_vms(["local-0001"], CreateOptions(cluster_name="local"))
        with self.assertRaises(ProviderError):
            self.provider.create_vms(["local-0001"], CreateOptions(cluster_name="local"))

    def test_unreadable_file(self) -> None:
        (self.state_dir / "local.json").write_text("[{", encoding="utf-8")
        with self.assertRaises(ProviderError):
            self.provider.list_vms()

    def test_always_active_without_account(self) -> None:
        self.assertTrue(self.provider.active())
        self.assertIsNone(self.provider.find_active_account())


class ShellHelperTests(unittest.TestCase):
    def test_missing_binary(self) -> None:
        with patch("services.shell.subprocess.run", side_effect=FileNotFoundError("gcloud")):
            with self.assertRaises(ProviderError) as ctx:
                run_command("gce", ["gcloud", "version"])
        self.assertIn("not installed", str(ctx.exception))

    def test_failed_command_carries_stderr(self) -> None:
        error = subprocess.CalledProcessError(1, ["az"], output="", stderr="quota exceeded\n")
        with patch("services.shell.subprocess.run", side_effect=error):
            with self.assertRaises(ProviderError) as ctx:
                run_command("azure", ["az", "vm", "create"])
        self.assertEqual("azure", ctx.exception.provider)
        self.assertIn("quota exceeded", str(ctx.exception))

    def test_run_json(self) -> None:
        completed = subprocess.CompletedProcess(["gcloud"], 0, stdout='[{"name": "x"}]', stderr="")
        with patch("services.shell.subprocess.run", return_value=completed):
            self.assertEqual([{"name": "x"}], run_json("gce", ["gcloud", "list"]))

        empty = subprocess.CompletedProcess(["gcloud"], 0, stdout="  \n", stderr="")
        with patch("services.shell.subprocess.run", return_value=empty):
            self.assertEqual([], run_json("gce", ["gcloud", "list"]))

        garbage = subprocess.CompletedProcess(["gcloud"], 0, stdout="not json", stderr="")
        with patch("services.shell.subprocess.run", return_value=garbage):
            with self.assertRaises(ProviderError):
                run_json("gce", ["gcloud", "list"])


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
