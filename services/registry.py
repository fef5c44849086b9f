"""Provider registry: the explicit table of backends built at start-up."""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ephfleet_core.errors import IndexedError, PartialFailure, not_found

from services.base import CloudProvider, VM
from services.parallel import run_parallel

logger = logging.getLogger(__name__)

_DNS_UNSAFE = re.compile(r"[^a-z]")


def dns_safe_account(account: str) -> str:
    """Lower-case ``account`` and strip everything but ASCII letters."""

    return _DNS_UNSAFE.sub("", account.lower())


class ProviderRegistry:
    """Ordered mapping of provider name to provider instance.

    The registry is read-only once built. Iteration order is the order of
    registration and is the order used by :meth:`providers_sequential`.
    """

    def __init__(self, providers: Iterable[CloudProvider]) -> None:
        self._providers: dict[str, CloudProvider] = {}
        for provider in providers:
            if provider.name in self._providers:
                raise ValueError(f"provider {provider.name} registered twice")
            self._providers[provider.name] = provider

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self):
        return iter(self._providers.values())

    def get(self, name: str) -> CloudProvider:
        try:
            return self._providers[name]
        except KeyError as exc:
            available = ", ".join(self._providers)
            raise not_found(f"unknown provider {name}", hint=f"Available providers: {available}") from exc

    def all_provider_names(self) -> list[str]:
        return list(self._providers)

    def active_providers(self) -> list[CloudProvider]:
        return [provider for provider in self._providers.values() if provider.active()]

    def providers_sequential(self, names: Sequence[str], fn: Callable[[CloudProvider], None]) -> None:
        """Run ``fn`` once per named provider, in order, stopping at the first error."""

        for name in names:
            fn(self.get(name))

    def providers_parallel(
        self,
        names: Sequence[str],
        fn: Callable[[CloudProvider], None],
        *,
        description: str = "",
    ) -> None:
        """Run ``fn`` once per named provider concurrently, combining all errors."""

        providers = [self.get(name) for name in names]
        failures, error = run_parallel(description, len(providers), 0, lambda i: fn(providers[i]))
        _raise_failures(failures, error)

    def fan_out(
        self,
        vms: Sequence[VM],
        fn: Callable[[CloudProvider, list[VM]], None],
        *,
        description: str = "",
    ) -> None:
        """Group ``vms`` by provider and call ``fn`` once per group in parallel.

        A failing group never stops the others; their errors are combined.
        """

        groups: dict[str, list[VM]] = {}
        for vm in vms:
            groups.setdefault(vm.provider, []).append(vm)
        names = list(groups)
        providers = [self.get(name) for name in names]

        def _call(index: int) -> None:
            fn(providers[index], groups[names[index]])

        failures, error = run_parallel(description, len(names), 0, _call)
        _raise_failures(failures, error)

    def find_active_accounts(self) -> Mapping[str, str]:
        """Return ``{provider: account}`` for every active provider with an account."""

        accounts: dict[str, str] = {}
        for provider in self.active_providers():
            account = provider.find_active_account()
            if account:
                accounts[provider.name] = account
        return accounts

    def distinct_accounts(self) -> list[str]:
        """Return the distinct DNS-safe active account names, in provider order."""

        seen: list[str] = []
        for account in self.find_active_accounts().values():
            clean = dns_safe_account(account)
            if clean != account:
                logger.warning(
                    "Using sanitised username",
                    extra={"username": clean, "account": account},
                )
            if clean and clean not in seen:
                seen.append(clean)
        return seen



def _raise_failures(failures: Sequence[IndexedError], error: Optional[PartialFailure]) -> None:
    # A lone failure keeps its own type so callers can branch on its kind.
    if len(failures) == 1:
        raise failures[0].error
    if error is not None:
        raise error
