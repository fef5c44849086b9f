"""Tests for the az-driven Azure provider."""

from __future__ import annotations

import unittest
from datetime import timedelta
from unittest.mock import patch

from services.azure import AzureProvider
from services.base import CreateOptions

from fakes import make_vm


class AzureProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = AzureProvider(subscription="sub-1", locations=["eastus"])

    def test_inactive_without_subscription(self) -> None:
        with patch("services.azure.tool_available", return_value=True):
            self.assertFalse(AzureProvider().active())
            self.assertTrue(self.provider.active())

    def test_list_vms_keeps_tagged_machines(self) -> None:
        items = [
            {
                "id": "/subscriptions/sub-1/vm/alice-x-0001",
                "name": "alice-x-0001",
                "location": "eastus",
                "publicIps": "52.1.1.1,52.1.1.2",
                "privateIps": "10.0.0.4",
                "timeCreated": "2024-05-01T10:00:00Z",
                "hardwareProfile": {"vmSize": "Standard_D4s_v3"},
                "tags": {"ephfleet": "true", "lifetime": "5h0m0s", "owner": "alice"},
            },
            {"id": "/subscriptions/sub-1/vm/other", "name": "other", "tags": {}},
        ]
        with patch("services.azure.run_json", return_value=items) as run_json:
            vms = self.provider.list_vms()

        self.assertIn("sub-1", run_json.call_args.args[1])
        self.assertEqual(["alice-x-0001"], [vm.name for vm in vms])
        self.assertEqual("52.1.1.1", vms[0].public_ip)
        self.assertEqual(timedelta(hours=5), vms[0].lifetime)
        self.assertEqual("Standard_D4s_v3", vms[0].machine_type)

    def test_create_vms_makes_one_group_per_location(self) -> None:
        options = CreateOptions(providers=["azure"], cluster_name="alice-x")
        with patch("services.azure.run_json", return_value={"user": {"name": "alice@example.com"}}) as run_json:
            self.provider.create_vms(["alice-x-0001", "alice-x-0002"], options)

        commands = [call.args[1][:3] for call in run_json.call_args_list]
        self.assertEqual(
            [["az", "account", "show"], ["az", "group", "create"], ["az", "vm", "create"], ["az", "vm", "create"]],
            commands,
        )
        self.assertIn("ephfleet-alice-x-eastus", run_json.call_args_list[1].args[1])

    def test_delete_and_extend_pass_resource_ids(self) -> None:
        vm = make_vm("alice-x", 1, provider="azure")
        with patch("services.azure.run_command") as run_command:
            self.provider.delete_vms([vm])
            self.provider.extend_vms([vm], timedelta(hours=8))

        delete_args, extend_args = (call.args[1] for call in run_command.call_args_list)
        self.assertIn(vm.provider_id, delete_args)
        self.assertIn("--yes", delete_args)
        self.assertIn("lifetime=8h0m0s", extend_args)


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
