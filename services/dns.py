"""DNS publication of VM names, refreshed only from a complete VM list."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from services.base import DNSProvider, VM
from services.registry import ProviderRegistry
from services.shell import run_command

logger = logging.getLogger(__name__)

RECORD_TTL = 60


class GCloudDNSProvider(DNSProvider):
    """Publish A records into a Google Cloud DNS managed zone via ``gcloud``."""

    def __init__(self, *, project: str, zone: str, domain: str) -> None:
        self._project = project
        self._zone = zone
        self._domain = domain.rstrip(".")

    @property
    def domain(self) -> str:
        return self._domain

    def render_zone(self, vms: Sequence[VM]) -> str:
        lines = []
        for vm in sorted(vms, key=lambda item: item.name):
            if not vm.public_ip:
                continue
            lines.append(f"{vm.name}.{self._domain}. {RECORD_TTL} IN A {vm.public_ip}")
        return "\n".join(lines) + "\n"

    def sync_records(self, vms: Sequence[VM]) -> None:
        logger.info("Updating DNS records", extra={"zone": self._zone, "records": len(vms)})
        handle, tmp_name = tempfile.mkstemp(prefix="ephfleet-dns-", suffix=".zone")
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(self.render_zone(vms))
            run_command(
                "gce",
                [
                    "gcloud",
                    "dns",
                    "record-sets",
                    "import",
                    tmp_name,
                    "--project",
                    self._project,
                    "--zone",
                    self._zone,
                    "--zone-file-format",
                    "--delete-all-existing",
                ],
            )
        finally:
            Path(tmp_name).unlink(missing_ok=True)


class DNSSynchronizer:
    """Refresh DNS only when the listed VMs are known to be complete."""

    def __init__(self, registry: ProviderRegistry, provider: DNSProvider) -> None:
        self._registry = registry
        self._provider = provider

    def complete_listing(self) -> bool:
        """Return True when every DNS-capable provider contributed to the listing.

        A DNS-capable provider must be active. The provider owning the default
        zone must additionally have listed the default project; other providers
        only need to be active.
        """

        for provider in self._registry:
            if not provider.dns_capable:
                continue
            if not provider.active():
                return False
            if provider.owns_default_dns_zone() and not provider.covers_default_project():
                return False
        return True

    def maybe_refresh(self, vms: Sequence[VM], *, quiet: bool = False) -> bool:
        """Publish records for ``vms``; return False when the refresh was skipped or failed."""

        if not self.complete_listing():
            if not quiet:
                logger.info("Not refreshing DNS entries, the VM list is incomplete")
            return False
        capable = {provider.name for provider in self._registry if provider.dns_capable}
        try:
            self._provider.sync_records([vm for vm in vms if vm.provider in capable])
        except Exception as exc:
            logger.warning("Failed to update DNS records", exc_info=exc)
            return False
        return True
