"""Google Compute Engine provider.

Instances are managed through the ``google-cloud-compute`` client library.
Identity discovery and the SSH config helpers stay on the ``gcloud`` CLI,
which is the only place that knows the signed-in user and manages
``~/.ssh/config`` entries for a project.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, Optional, Sequence

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import compute_v1

from ephfleet_core.errors import ProviderError
from ephfleet_core.timeutil import format_lifetime, parse_datetime, parse_lifetime, utcnow

from services.base import EXT4, VM, ZFS, CloudProvider, CreateOptions
from services.shell import run_command, run_json, tool_available

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gce"
DEFAULT_PROJECT = "ephfleet-ephemeral"
DEFAULT_ZONES = ("us-east1-b", "us-west1-b", "europe-west2-b")
DEFAULT_MACHINE_TYPE = "n2-standard-4"
SOURCE_IMAGE = "projects/ubuntu-os-cloud/global/images/family/ubuntu-2204-lts"
TOOL_LABEL = "ephfleet"
OPERATION_TIMEOUT = 600


class GCEProvider(CloudProvider):
    """Manage labelled GCE instances across one or more projects."""

    name = PROVIDER_NAME
    dns_capable = True

    def __init__(
        self,
        *,
        projects: Sequence[str] = (),
        default_project: Optional[str] = None,
        zones: Sequence[str] = DEFAULT_ZONES,
        machine_type: Optional[str] = None,
        instances_client: Any = None,
        projects_client: Any = None,
    ) -> None:
        self._default_project = default_project or DEFAULT_PROJECT
        self._projects = list(projects) or [self._default_project]
        self._zones = list(zones) or list(DEFAULT_ZONES)
        self._machine_type = machine_type or DEFAULT_MACHINE_TYPE
        self._instances_client = instances_client
        self._projects_client = projects_client
        self._account: Optional[str] = None

    @property
    def projects(self) -> list[str]:
        return list(self._projects)

    @property
    def default_project(self) -> str:
        return self._default_project

    # Clients resolve application default credentials on construction, so
    # they are only built once an API call is actually made.
    def _instances(self) -> Any:
        if self._instances_client is None:
            self._instances_client = compute_v1.InstancesClient()
        return self._instances_client

    def _project_api(self) -> Any:
        if self._projects_client is None:
            self._projects_client = compute_v1.ProjectsClient()
        return self._projects_client

    def active(self) -> bool:
        return bool(self._projects) and tool_available("gcloud")

    def owns_default_dns_zone(self) -> bool:
        return True

    def covers_default_project(self) -> bool:
        return self._default_project in self._projects

    def supports_filesystem(self, filesystem: str) -> bool:
        return filesystem in (EXT4, ZFS)

    def find_active_account(self) -> Optional[str]:
        if self._account is None:
            accounts = run_json(
                self.name,
                ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=json"],
            )
            if not accounts:
                return None
            self._account = accounts[0]["account"].split("@", 1)[0]
        return self._account

    def list_vms(self) -> Sequence[VM]:
        vms: list[VM] = []
        for project in self._projects:
            request = compute_v1.AggregatedListInstancesRequest(
                project=project,
                filter=f'labels.{TOOL_LABEL} = "true"',
            )
            try:
                for _, scoped in self._instances().aggregated_list(request=request):
                    vms.extend(self._convert_instance(project, item) for item in scoped.instances)
            except (GoogleAPIError, GoogleAuthError) as exc:
                raise ProviderError(self.name, f"listing instances in {project} failed: {exc}") from exc
        return vms

    def _convert_instance(self, project: str, item: Any) -> VM:
        labels = dict(item.labels)
        interface = item.network_interfaces[0] if item.network_interfaces else None
        access = interface.access_configs[0] if interface is not None and interface.access_configs else None
        zone = _last_segment(item.zone)
        try:
            lifetime = parse_lifetime(labels.get("lifetime", "12h"))
        except ValueError:
            lifetime = timedelta(hours=12)
        return VM(
            name=item.name,
            provider=self.name,
            provider_id=f"{project}/{item.id or item.name}",
            public_ip=(access.nat_i_p if access is not None else "") or None,
            private_ip=(interface.network_i_p if interface is not None else "") or None,
            created_at=parse_datetime(item.creation_timestamp) if item.creation_timestamp else utcnow(),
            lifetime=lifetime,
            locality=f"cloud=gce,region={zone.rsplit('-', 1)[0]},zone={zone}",
            zone=zone,
            machine_type=_last_segment(item.machine_type),
            remote_user="ubuntu",
            account=labels.get("owner", ""),
        )

    def create_vms(self, names: Sequence[str], options: CreateOptions) -> None:
        zones = options.zones or self._zones
        owner = self.find_active_account() or options.owner
        labels = {
            TOOL_LABEL: "true",
            "lifetime": format_lifetime(options.lifetime),
            "cluster": options.cluster_name,
            "owner": owner,
        }
        operations = []
        for index, name in enumerate(names):
            zone = zones[index % len(zones)]
            instance = self._instance_resource(name, zone, labels, options)
            logger.info("Creating GCE instance", extra={"zone": zone, "instance": name})
            operations.append(
                self._call(
                    f"creating {name}",
                    self._instances().insert,
                    request=compute_v1.InsertInstanceRequest(
                        project=self._default_project,
                        zone=zone,
                        instance_resource=instance,
                    ),
                )
            )
        self._wait("creating instances", operations)

    def _instance_resource(
        self,
        name: str,
        zone: str,
        labels: dict[str, str],
        options: CreateOptions,
    ) -> compute_v1.Instance:
        disks = [
            compute_v1.AttachedDisk(
                auto_delete=True,
                boot=True,
                initialize_params=compute_v1.AttachedDiskInitializeParams(source_image=SOURCE_IMAGE),
            )
        ]
        if options.local_ssd:
            disks.append(
                compute_v1.AttachedDisk(
                    auto_delete=True,
                    type_="SCRATCH",
                    interface="NVME",
                    initialize_params=compute_v1.AttachedDiskInitializeParams(
                        disk_type=f"zones/{zone}/diskTypes/local-ssd",
                    ),
                )
            )
        return compute_v1.Instance(
            name=name,
            machine_type=f"zones/{zone}/machineTypes/{options.machine_type or self._machine_type}",
            disks=disks,
            network_interfaces=[
                compute_v1.NetworkInterface(
                    network="global/networks/default",
                    access_configs=[compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT")],
                )
            ],
            labels=labels,
            metadata=compute_v1.Metadata(
                items=[compute_v1.Items(key="filesystem", value=options.filesystem)],
            ),
        )

    def _located(self, vms: Sequence[VM]) -> Iterable[tuple[str, str, str]]:
        for vm in vms:
            project = vm.provider_id.split("/", 1)[0] or self._default_project
            yield project, vm.zone, vm.name

    def delete_vms(self, vms: Sequence[VM]) -> None:
        logger.info("Deleting GCE instances", extra={"names": [vm.name for vm in vms]})
        operations = [
            self._call(
                f"deleting {name}",
                self._instances().delete,
                request=compute_v1.DeleteInstanceRequest(project=project, zone=zone, instance=name),
            )
            for project, zone, name in self._located(vms)
        ]
        self._wait("deleting instances", operations)

    def reset_vms(self, vms: Sequence[VM]) -> None:
        operations = [
            self._call(
                f"resetting {name}",
                self._instances().reset,
                request=compute_v1.ResetInstanceRequest(project=project, zone=zone, instance=name),
            )
            for project, zone, name in self._located(vms)
        ]
        self._wait("resetting instances", operations)

    def extend_vms(self, vms: Sequence[VM], lifetime: timedelta) -> None:
        value = format_lifetime(lifetime)
        operations = []
        for project, zone, name in self._located(vms):
            current = self._call(
                f"reading {name}",
                self._instances().get,
                request=compute_v1.GetInstanceRequest(project=project, zone=zone, instance=name),
            )
            labels = dict(current.labels)
            labels["lifetime"] = value
            operations.append(
                self._call(
                    f"labelling {name}",
                    self._instances().set_labels,
                    request=compute_v1.SetLabelsInstanceRequest(
                        project=project,
                        zone=zone,
                        instance=name,
                        instances_set_labels_request_resource=compute_v1.InstancesSetLabelsRequest(
                            labels=labels,
                            label_fingerprint=current.label_fingerprint,
                        ),
                    ),
                )
            )
        self._wait("labelling instances", operations)

    def clean_ssh(self) -> None:
        for project in self._projects:
            run_command(self.name, ["gcloud", "compute", "config-ssh", "--project", project, "--quiet", "--remove"])

    def config_ssh(self) -> None:
        for project in self._projects:
            run_command(self.name, ["gcloud", "compute", "config-ssh", "--project", project, "--quiet"])

    def authorized_keys(self) -> list[str]:
        """Return the project-wide SSH keys of the default project."""

        project = self._call(
            f"reading project {self._default_project}",
            self._project_api().get,
            request=compute_v1.GetProjectRequest(project=self._default_project),
        )
        keys: list[str] = []
        for item in project.common_instance_metadata.items:
            if item.key != "ssh-keys":
                continue
            for line in (item.value or "").splitlines():
                _, sep, key = line.partition(":")
                if sep and key.strip():
                    keys.append(key.strip())
        return keys

    def _call(self, action: str, fn: Any, **kwargs: Any) -> Any:
        try:
            return fn(**kwargs)
        except (GoogleAPIError, GoogleAuthError) as exc:
            raise ProviderError(self.name, f"{action} failed: {exc}") from exc

    def _wait(self, action: str, operations: Sequence[Any]) -> None:
        for operation in operations:
            self._call(action, operation.result, timeout=OPERATION_TIMEOUT)


def _last_segment(url: str) -> str:
    return (url or "").rstrip("/").rsplit("/", 1)[-1]
