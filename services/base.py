"""Abstract base classes and value types defining high-level service contracts.

These ABCs make it easy to plug alternative cloud or DNS backends without
modifying the lifecycle logic. Concrete implementations live in dedicated
modules (for example ``services.aws`` or ``services.local``).
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

LOCAL_CLUSTER = "local"

EXT4 = "ext4"
ZFS = "zfs"

_VM_NAME = re.compile(r"^(?P<cluster>.+)-(?P<node>\d{4})$")


def vm_name(cluster: str, node: int) -> str:
    """Return the VM name of the 1-based ``node`` of ``cluster``."""

    return f"{cluster}-{node:04d}"


def split_vm_name(name: str) -> Optional[tuple[str, int]]:
    """Return ``(cluster, node)`` parsed from a VM name, or None if malformed."""

    match = _VM_NAME.match(name or "")
    if not match:
        return None
    node = int(match.group("node"))
    if node < 1:
        return None
    return match.group("cluster"), node


@dataclass(slots=True)
class VM:
    """One provisioned machine as reported by its provider."""

    name: str
    provider: str
    provider_id: str
    public_ip: Optional[str]
    private_ip: Optional[str]
    created_at: datetime
    lifetime: timedelta
    locality: str = ""
    zone: str = ""
    machine_type: str = ""
    remote_user: str = "ubuntu"
    account: str = ""

    @property
    def expires_at(self) -> datetime:
        return self.created_at + self.lifetime

    @property
    def cluster_name(self) -> Optional[str]:
        parsed = split_vm_name(self.name)
        return parsed[0] if parsed else None


@dataclass(slots=True)
class CreateOptions:
    """Parameters shared by every provider when provisioning a cluster."""

    providers: list[str] = field(default_factory=lambda: ["gce"])
    lifetime: timedelta = timedelta(hours=12)
    machine_type: Optional[str] = None
    zones: list[str] = field(default_factory=list)
    filesystem: str = EXT4
    local_ssd: bool = True
    cluster_name: str = ""
    owner: str = ""


class CloudProvider(ABC):
    """Operations required from any VM backend."""

    name: str = ""
    #: Whether VMs of this provider get records in the shared DNS zone.
    dns_capable: bool = False

    @abstractmethod
    def active(self) -> bool:
        """Return True when credentials/configuration for the backend exist."""

    @abstractmethod
    def find_active_account(self) -> Optional[str]:
        """Return the account name the backend operates as, if any."""

    @abstractmethod
    def list_vms(self) -> Sequence[VM]:
        """Return every VM managed by this tool that the account can see."""

    @abstractmethod
    def create_vms(self, names: Sequence[str], options: CreateOptions) -> None:
        """Provision one VM per name."""

    @abstractmethod
    def delete_vms(self, vms: Sequence[VM]) -> None:
        """Destroy the given VMs."""

    @abstractmethod
    def reset_vms(self, vms: Sequence[VM]) -> None:
        """Reboot the given VMs in place."""

    @abstractmethod
    def extend_vms(self, vms: Sequence[VM], lifetime: timedelta) -> None:
        """Set the lifetime of the given VMs."""

    def clean_ssh(self) -> None:
        """Remove SSH client configuration previously written for the backend."""

    def config_ssh(self) -> None:
        """Write SSH client configuration / keys needed to reach the backend."""

    def owns_default_dns_zone(self) -> bool:
        return False

    def covers_default_project(self) -> bool:
        """Return True when listing includes the project hosting shared resources."""
        return True

    def supports_filesystem(self, filesystem: str) -> bool:
        return filesystem == EXT4

    def authorized_keys(self) -> list[str]:
        """Return public keys that should be authorised on every node."""
        return []

    def gc_key_pairs(self, *, dry_run: bool) -> list[str]:
        """Delete orphaned key pairs, returning their names."""
        return []


class DNSProvider(ABC):
    """Interface describing DNS record publication."""

    @abstractmethod
    def sync_records(self, vms: Sequence[VM]) -> None:
        """Replace published records with one A record per VM."""


class SSHService(ABC):
    """Abstraction for executing commands on remote servers via SSH."""

    @abstractmethod
    def run(self, host: str, command: str, *, user: str | None = None, timeout: int = 60) -> str:
        """Execute a command on the remote host and return stdout."""

    @abstractmethod
    def upload(self, host: str, local_path: str, remote_path: str, *, user: str | None = None) -> None:
        """Upload a local file to the remote host."""

    @abstractmethod
    def reachable(self, host: str, *, user: str | None = None, timeout: int = 10) -> bool:
        """Return True once the host accepts SSH connections."""
