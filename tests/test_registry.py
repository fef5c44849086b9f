"""Tests for the provider registry and its fan-out helpers."""

from __future__ import annotations

import unittest

from ephfleet_core.errors import ErrorKind, FleetError, PartialFailure
from services.registry import ProviderRegistry

from fakes import FakeProvider, make_vm


class ProviderRegistryTests(unittest.TestCase):
    def test_duplicate_names_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ProviderRegistry([FakeProvider("a"), FakeProvider("a")])

    def test_unknown_provider_is_not_found(self) -> None:
        registry = ProviderRegistry([FakeProvider("a")])
        with self.assertRaises(FleetError) as ctx:
            registry.get("b")
        self.assertEqual(ErrorKind.NOT_FOUND, ctx.exception.kind)

    def test_active_providers_filtered(self) -> None:
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b", active=False)])
        self.assertEqual(["a", "b"], registry.all_provider_names())
        self.assertEqual(["a"], [p.name for p in registry.active_providers()])

    def test_sequential_runs_in_order_and_stops_at_first_error(self) -> None:
        order: list[str] = []
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b"), FakeProvider("c")])

        def _step(provider) -> None:
            order.append(provider.name)
            if provider.name == "b":
                raise RuntimeError("b broke")

        with self.assertRaises(RuntimeError):
            registry.providers_sequential(["a", "b", "c"], _step)
        self.assertEqual(["a", "b"], order)

    def test_fan_out_groups_by_provider(self) -> None:
        a, b = FakeProvider("a"), FakeProvider("b")
        registry = ProviderRegistry([a, b])
        vms = [make_vm("alice-x", 1, provider="a"), make_vm("alice-x", 2, provider="b"), make_vm("alice-x", 3, provider="a")]

        registry.fan_out(vms, lambda provider, group: provider.reset_vms(group))

        self.assertEqual([("reset", ["alice-x-0001", "alice-x-0003"])], a.calls)
        self.assertEqual([("reset", ["alice-x-0002"])], b.calls)

    def test_fan_out_failure_does_not_stop_other_groups(self) -> None:
        a = FakeProvider("a", delete_error=RuntimeError("a down"))
        b = FakeProvider("b", delete_error=RuntimeError("b down"))
        c = FakeProvider("c")
        registry = ProviderRegistry([a, b, c])
        vms = [make_vm("alice-x", 1, provider=name) for name in ("a", "b", "c")]

        with self.assertRaises(PartialFailure) as ctx:
            registry.fan_out(vms, lambda provider, group: provider.delete_vms(group), description="destroying")

        self.assertEqual(2, len(ctx.exception.failures))
        self.assertEqual(["delete"], c.call_names())

    def test_fan_out_failures_keep_group_index(self) -> None:
        a = FakeProvider("a")
        b = FakeProvider("b", delete_error=RuntimeError("b down"))
        c = FakeProvider("c", delete_error=RuntimeError("c down"))
        registry = ProviderRegistry([a, b, c])
        vms = [make_vm("alice-x", 1, provider=name) for name in ("a", "b", "c")]

        with self.assertRaises(PartialFailure) as ctx:
            registry.fan_out(vms, lambda provider, group: provider.delete_vms(group), description="destroying")

        self.assertEqual([1, 2], [item.index for item in ctx.exception.failures])
        self.assertEqual(["b down", "c down"], [str(error) for error in ctx.exception.errors])
        self.assertIn("destroying (2 failed)", str(ctx.exception))

    def test_parallel_single_failure_is_raised_unchanged(self) -> None:
        error = FleetError(ErrorKind.ALREADY_EXISTS, "alice-x already exists")
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b")])

        def _step(provider) -> None:
            if provider.name == "b":
                raise error

        with self.assertRaises(FleetError) as ctx:
            registry.providers_parallel(["a", "b"], _step)
        self.assertIs(error, ctx.exception)

    def test_distinct_accounts_deduplicated(self) -> None:
        registry = ProviderRegistry(
            [FakeProvider("a", account="alice"), FakeProvider("b", account="alice"), FakeProvider("c", account=None)]
        )
        self.assertEqual(["alice"], registry.distinct_accounts())


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
