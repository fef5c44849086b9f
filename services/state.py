"""Cloud state store: lock-protected synchronisation and the on-disk cache."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from filelock import FileLock, Timeout
from pydantic import BaseModel, ValidationError

from ephfleet_core.errors import ErrorKind, FleetError
from ephfleet_core.timeutil import format_lifetime, parse_lifetime

from services.base import VM
from services.cloud import Cloud, Cluster, list_cloud
from services.dns import DNSSynchronizer
from services.registry import ProviderRegistry

logger = logging.getLogger(__name__)

CACHE_FILE = "clusters.json"
LOCK_FILE = "LOCK"
CACHE_VERSION = 1


class VMRecord(BaseModel):
    """Serialised form of a :class:`VM`."""

    name: str
    provider: str
    provider_id: str
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    created_at: datetime
    lifetime: str
    locality: str = ""
    zone: str = ""
    machine_type: str = ""
    remote_user: str = "ubuntu"
    account: str = ""

    @classmethod
    def from_vm(cls, vm: VM) -> "VMRecord":
        return cls(
            name=vm.name,
            provider=vm.provider,
            provider_id=vm.provider_id,
            public_ip=vm.public_ip,
            private_ip=vm.private_ip,
            created_at=vm.created_at,
            lifetime=format_lifetime(vm.lifetime),
            locality=vm.locality,
            zone=vm.zone,
            machine_type=vm.machine_type,
            remote_user=vm.remote_user,
            account=vm.account,
        )

    def to_vm(self) -> VM:
        return VM(
            name=self.name,
            provider=self.provider,
            provider_id=self.provider_id,
            public_ip=self.public_ip,
            private_ip=self.private_ip,
            created_at=self.created_at,
            lifetime=parse_lifetime(self.lifetime),
            locality=self.locality,
            zone=self.zone,
            machine_type=self.machine_type,
            remote_user=self.remote_user,
            account=self.account,
        )


class _CachedCloud(BaseModel):
    version: int = CACHE_VERSION
    synced_at: Optional[datetime] = None
    clusters: dict[str, list[VMRecord]] = {}
    bad_instances: list[VMRecord] = []


class CloudStateStore:
    """Owns the cache file and the advisory lock serialising sync passes."""

    def __init__(
        self,
        registry: ProviderRegistry,
        state_dir: Path,
        *,
        dns: Optional[DNSSynchronizer] = None,
    ) -> None:
        self._registry = registry
        self._state_dir = state_dir
        self._dns = dns

    @property
    def cache_path(self) -> Path:
        return self._state_dir / CACHE_FILE

    @property
    def lock_path(self) -> Path:
        return self._state_dir / LOCK_FILE

    def list_cloud(self) -> Cloud:
        """Return a fresh provider listing without touching the cache."""

        return list_cloud(self._registry)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            lock = FileLock(str(self.lock_path))
            lock.acquire()
        except (OSError, Timeout) as exc:
            raise FleetError(ErrorKind.LOCK, f"acquiring lock on {self.lock_path}: {exc}") from exc
        try:
            yield
        finally:
            lock.release()

    def sync(self, quiet: bool = False) -> Cloud:
        """Replace the cached snapshot with the providers' current state.

        The list and persist steps run under an exclusive file lock so
        concurrent invocations never interleave. If listing fails the cache is
        left untouched.

        Releasing the lock unlocks the LOCK file but leaves it on disk. Removing
        it while another process is blocked on it would let a third process
        lock a fresh inode alongside the waiter.
        """

        if not quiet:
            logger.info("Syncing cloud state", extra={"state_dir": str(self._state_dir)})
        with self._locked():
            cloud = list_cloud(self._registry)
            self.save(cloud)
            if self._dns is not None:
                self._dns.maybe_refresh(cloud.all_vms(), quiet=quiet)
            names = [provider.name for provider in self._registry.active_providers()]
            self._registry.providers_sequential(names, lambda provider: provider.clean_ssh())
            self._registry.providers_sequential(names, lambda provider: provider.config_ssh())
        return cloud

    def record_cluster(self, cluster: Cluster) -> None:
        """Store ``cluster`` in the cached snapshot without asking any provider."""

        with self._locked():
            cloud = self.load()
            cloud.clusters[cluster.name] = Cluster(name=cluster.name, vms=list(cluster.vms))
            self.save(cloud)

    def save(self, cloud: Cloud) -> None:
        """Atomically write ``cloud`` to the cache file."""

        payload = _CachedCloud(
            synced_at=cloud.synced_at,
            clusters={
                name: [VMRecord.from_vm(vm) for vm in cluster.vms]
                for name, cluster in cloud.clusters.items()
            },
            bad_instances=[VMRecord.from_vm(vm) for vm in cloud.bad_instances],
        )
        self._state_dir.mkdir(parents=True, exist_ok=True)
        handle, tmp_name = tempfile.mkstemp(prefix=".clusters-", dir=self._state_dir)
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as stream:
                stream.write(payload.model_dump_json(indent=2))
            os.replace(tmp_name, self.cache_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> Cloud:
        """Read the cached snapshot, returning an empty cloud when absent."""

        if not self.cache_path.exists():
            return Cloud()
        try:
            raw = json.loads(self.cache_path.read_text(encoding="utf-8"))
            cached = _CachedCloud.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable cluster cache", extra={"path": str(self.cache_path)}, exc_info=exc)
            return Cloud()

        clusters = {
            name: Cluster(name=name, vms=[vm.to_vm() for vm in vms])
            for name, vms in cached.clusters.items()
        }
        return Cloud(
            clusters=clusters,
            bad_instances=[vm.to_vm() for vm in cached.bad_instances],
            synced_at=cached.synced_at,
        )
