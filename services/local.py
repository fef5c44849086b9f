"""Local pseudo-provider: "VMs" are processes on this machine."""

from __future__ import annotations

import getpass
import json
import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

from ephfleet_core.errors import ProviderError
from ephfleet_core.timeutil import utcnow

from services.base import VM, CloudProvider, CreateOptions
from services.state import VMRecord

logger = logging.getLogger(__name__)

PROVIDER_NAME = "local"
LOCAL_FILE = "local.json"
LOCALHOST = "127.0.0.1"


class LocalProvider(CloudProvider):
    """Keeps the local cluster's VM records in a JSON file under the state dir."""

    name = PROVIDER_NAME

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / LOCAL_FILE
        self._lock = threading.Lock()

    def active(self) -> bool:
        return True

    def find_active_account(self) -> Optional[str]:
        return None

    def list_vms(self) -> Sequence[VM]:
        with self._lock:
            return self._read()

    def create_vms(self, names: Sequence[str], options: CreateOptions) -> None:
        logger.info("Creating local nodes", extra={"names": list(names)})
        user = getpass.getuser()
        now = utcnow().replace(microsecond=0)
        with self._lock:
            vms = self._read()
            existing = {vm.name for vm in vms}
            for name in names:
                if name in existing:
                    raise ProviderError(self.name, f"node {name} already exists")
                vms.append(
                    VM(
                        name=name,
                        provider=self.name,
                        provider_id=name,
                        public_ip=LOCALHOST,
                        private_ip=LOCALHOST,
                        created_at=now,
                        lifetime=options.lifetime,
                        locality="region=local,zone=local",
                        zone="local",
                        machine_type="local",
                        remote_user=user,
                    )
                )
            self._write(vms)

    def delete_vms(self, vms: Sequence[VM]) -> None:
        doomed = {vm.name for vm in vms}
        with self._lock:
            self._write([vm for vm in self._read() if vm.name not in doomed])

    def reset_vms(self, vms: Sequence[VM]) -> None:
        logger.debug("Reset is a no-op for local nodes")

    def extend_vms(self, vms: Sequence[VM], lifetime: timedelta) -> None:
        targets = {vm.name for vm in vms}
        with self._lock:
            current = self._read()
            for vm in current:
                if vm.name in targets:
                    vm.lifetime = lifetime
            self._write(current)

    def _read(self) -> list[VM]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return [VMRecord.model_validate(item).to_vm() for item in raw]
        except (OSError, ValueError) as exc:
            raise ProviderError(self.name, f"unable to read {self._path}: {exc}") from exc

    def _write(self, vms: list[VM]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        records = [VMRecord.from_vm(vm).model_dump(mode="json") for vm in vms]
        self._path.write_text(json.dumps(records, indent=2), encoding="utf-8")
