"""Azure provider driven through the ``az`` CLI."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional, Sequence

from ephfleet_core.timeutil import format_lifetime, parse_datetime, parse_lifetime, utcnow

from services.base import VM, CloudProvider, CreateOptions
from services.shell import run_command, run_json, tool_available

logger = logging.getLogger(__name__)

PROVIDER_NAME = "azure"
DEFAULT_LOCATIONS = ("eastus", "westus2")
DEFAULT_MACHINE_TYPE = "Standard_D4s_v3"
TOOL_TAG = "ephfleet"


class AzureProvider(CloudProvider):
    """Manage tagged Azure VMs in one subscription."""

    name = PROVIDER_NAME

    def __init__(
        self,
        *,
        subscription: Optional[str] = None,
        locations: Sequence[str] = DEFAULT_LOCATIONS,
        machine_type: Optional[str] = None,
    ) -> None:
        self._subscription = subscription
        self._locations = list(locations) or list(DEFAULT_LOCATIONS)
        self._machine_type = machine_type or DEFAULT_MACHINE_TYPE
        self._account: Optional[str] = None

    def active(self) -> bool:
        return bool(self._subscription) and tool_available("az")

    def _az(self, *args: str) -> list[str]:
        return ["az", *args, "--subscription", self._subscription or "", "--output", "json"]

    def find_active_account(self) -> Optional[str]:
        if self._account is None:
            info = run_json(self.name, self._az("account", "show"))
            user = (info.get("user") or {}).get("name", "")
            self._account = user.split("@", 1)[0] or None
        return self._account

    def list_vms(self) -> Sequence[VM]:
        items = run_json(self.name, self._az("vm", "list", "--show-details"))
        return [
            self._convert_vm(item)
            for item in items
            if (item.get("tags") or {}).get(TOOL_TAG) == "true"
        ]

    def _convert_vm(self, item: dict[str, Any]) -> VM:
        tags = item.get("tags") or {}
        location = item.get("location", "")
        created = item.get("timeCreated") or tags.get("created")
        try:
            lifetime = parse_lifetime(tags.get("lifetime", "12h"))
        except ValueError:
            lifetime = timedelta(hours=12)
        return VM(
            name=item["name"],
            provider=self.name,
            provider_id=item["id"],
            public_ip=_first_ip(item.get("publicIps")),
            private_ip=_first_ip(item.get("privateIps")),
            created_at=parse_datetime(created) if created else utcnow(),
            lifetime=lifetime,
            locality=f"cloud=azure,region={location}",
            zone=location,
            machine_type=(item.get("hardwareProfile") or {}).get("vmSize", ""),
            remote_user="ubuntu",
            account=tags.get("owner", ""),
        )

    def create_vms(self, names: Sequence[str], options: CreateOptions) -> None:
        locations = options.zones or self._locations
        owner = self.find_active_account() or options.owner
        tags = [
            f"{TOOL_TAG}=true",
            f"lifetime={format_lifetime(options.lifetime)}",
            f"cluster={options.cluster_name}",
            f"owner={owner}",
            f"created={utcnow().isoformat()}",
        ]
        groups_created: set[str] = set()
        for index, name in enumerate(names):
            location = locations[index % len(locations)]
            group = f"{TOOL_TAG}-{options.cluster_name}-{location}"
            if group not in groups_created:
                run_json(self.name, self._az("group", "create", "--name", group, "--location", location, "--tags", *tags))
                groups_created.add(group)
            logger.info("Creating Azure VM", extra={"vm_name": name, "location": location})
            run_json(
                self.name,
                self._az(
                    "vm",
                    "create",
                    "--resource-group",
                    group,
                    "--name",
                    name,
                    "--location",
                    location,
                    "--image",
                    "Ubuntu2204",
                    "--size",
                    options.machine_type or self._machine_type,
                    "--admin-username",
                    "ubuntu",
                    "--generate-ssh-keys",
                    "--tags",
                    *tags,
                ),
            )

    def delete_vms(self, vms: Sequence[VM]) -> None:
        logger.info("Deleting Azure VMs", extra={"names": [vm.name for vm in vms]})
        run_command(self.name, self._az("vm", "delete", "--yes", "--ids", *[vm.provider_id for vm in vms]))

    def reset_vms(self, vms: Sequence[VM]) -> None:
        run_command(self.name, self._az("vm", "restart", "--ids", *[vm.provider_id for vm in vms]))

    def extend_vms(self, vms: Sequence[VM], lifetime: timedelta) -> None:
        run_command(
            self.name,
            self._az(
                "resource",
                "tag",
                "--is-incremental",
                "--tags",
                f"lifetime={format_lifetime(lifetime)}",
                "--ids",
                *[vm.provider_id for vm in vms],
            ),
        )


def _first_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.split(",", 1)[0].strip() or None
