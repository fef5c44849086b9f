"""AWS EC2 implementation of the ``CloudProvider`` contract."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ephfleet_core.errors import ProviderError
from ephfleet_core.timeutil import format_lifetime, parse_lifetime

from services.base import VM, CloudProvider, CreateOptions

logger = logging.getLogger(__name__)

PROVIDER_NAME = "aws"
DEFAULT_REGIONS = ("us-east-1", "us-west-2", "eu-west-2")
DEFAULT_MACHINE_TYPE = "m5.xlarge"
KEY_PAIR_PREFIX = "ephfleet-"
TOOL_TAG = "ephfleet"
UBUNTU_AMI_PARAMETER = "/aws/service/canonical/ubuntu/server/22.04/stable/current/amd64/hvm/ebs-gp2/ami-id"
_LISTED_STATES = ["pending", "running", "stopping", "stopped"]


class AWSProvider(CloudProvider):
    """Manage tagged EC2 instances across a fixed set of regions."""

    name = PROVIDER_NAME
    dns_capable = True

    def __init__(
        self,
        *,
        session: Optional[boto3.session.Session] = None,
        profile: Optional[str] = None,
        regions: Sequence[str] = DEFAULT_REGIONS,
        machine_type: Optional[str] = None,
        public_key_path: Optional[Path] = None,
    ) -> None:
        self._session = session or boto3.session.Session(profile_name=profile)
        self._regions = list(regions) or list(DEFAULT_REGIONS)
        self._machine_type = machine_type or DEFAULT_MACHINE_TYPE
        self._public_key_path = public_key_path or Path("~/.ssh/id_rsa.pub").expanduser()
        self._account: Optional[str] = None

    def _client(self, service: str, region: Optional[str] = None) -> Any:
        return self._session.client(service, region_name=region or self._regions[0])

    def active(self) -> bool:
        try:
            return self._session.get_credentials() is not None
        except BotoCoreError as exc:
            logger.debug("AWS credentials unavailable", exc_info=exc)
            return False

    def find_active_account(self) -> Optional[str]:
        if self._account is not None:
            return self._account
        try:
            user = self._client("iam").get_user()["User"]
            self._account = user["UserName"]
        except (ClientError, BotoCoreError, KeyError):
            # Role-based credentials have no IAM user; fall back to the caller ARN.
            try:
                arn = self._client("sts").get_caller_identity()["Arn"]
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"unable to determine account: {exc}") from exc
            self._account = arn.rsplit("/", 1)[-1]
        return self._account

    def list_vms(self) -> Sequence[VM]:
        vms: list[VM] = []
        for region in self._regions:
            logger.debug("Listing EC2 instances", extra={"region": region})
            client = self._client("ec2", region)
            try:
                paginator = client.get_paginator("describe_instances")
                pages = paginator.paginate(
                    Filters=[
                        {"Name": f"tag:{TOOL_TAG}", "Values": ["true"]},
                        {"Name": "instance-state-name", "Values": _LISTED_STATES},
                    ]
                )
                for page in pages:
                    for reservation in page.get("Reservations", []):
                        for instance in reservation.get("Instances", []):
                            vms.append(self._convert_instance(instance, region))
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"listing instances in {region} failed: {exc}") from exc
        return vms

    def _convert_instance(self, instance: dict[str, Any], region: str) -> VM:
        tags = {tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])}
        zone = instance.get("Placement", {}).get("AvailabilityZone", "")
        launched = instance.get("LaunchTime")
        if isinstance(launched, str):
            launched = datetime.fromisoformat(launched.replace("Z", "+00:00"))
        if launched is None:
            launched = datetime.now(timezone.utc)
        try:
            lifetime = parse_lifetime(tags.get("Lifetime", "12h"))
        except ValueError:
            lifetime = timedelta(hours=12)
        return VM(
            name=tags.get("Name", instance["InstanceId"]),
            provider=self.name,
            provider_id=instance["InstanceId"],
            public_ip=instance.get("PublicIpAddress"),
            private_ip=instance.get("PrivateIpAddress"),
            created_at=launched,
            lifetime=lifetime,
            locality=f"cloud=aws,region={region},zone={zone}",
            zone=zone,
            machine_type=instance.get("InstanceType", ""),
            remote_user="ubuntu",
            account=tags.get("Owner", ""),
        )

    def create_vms(self, names: Sequence[str], options: CreateOptions) -> None:
        zones = options.zones or [f"{self._regions[0]}a"]
        account = self.find_active_account() or options.owner
        by_region: dict[str, list[str]] = {}
        for index, name in enumerate(names):
            zone = zones[index % len(zones)]
            region = zone[:-1]
            logger.info("Creating EC2 instance", extra={"vm_name": name, "zone": zone})
            client = self._client("ec2", region)
            tags = [
                {"Key": "Name", "Value": name},
                {"Key": TOOL_TAG, "Value": "true"},
                {"Key": "Cluster", "Value": options.cluster_name},
                {"Key": "Lifetime", "Value": format_lifetime(options.lifetime)},
                {"Key": "Owner", "Value": account or ""},
            ]
            try:
                response = client.run_instances(
                    ImageId=self._image_for(region),
                    InstanceType=options.machine_type or self._machine_type,
                    KeyName=_key_pair_name(account or "unknown"),
                    MinCount=1,
                    MaxCount=1,
                    Placement={"AvailabilityZone": zone},
                    TagSpecifications=[{"ResourceType": "instance", "Tags": tags}],
                )
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"creating {name} failed: {exc}") from exc
            instance_id = response["Instances"][0]["InstanceId"]
            by_region.setdefault(region, []).append(instance_id)

        for region, instance_ids in by_region.items():
            try:
                self._client("ec2", region).get_waiter("instance_running").wait(InstanceIds=instance_ids)
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"waiting for instances in {region} failed: {exc}") from exc

    def _image_for(self, region: str) -> str:
        try:
            parameter = self._client("ssm", region).get_parameter(Name=UBUNTU_AMI_PARAMETER)
        except (ClientError, BotoCoreError) as exc:
            raise ProviderError(self.name, f"resolving AMI in {region} failed: {exc}") from exc
        return parameter["Parameter"]["Value"]

    def _by_region(self, vms: Sequence[VM]) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for vm in vms:
            region = vm.zone[:-1] if vm.zone else self._regions[0]
            grouped.setdefault(region, []).append(vm.provider_id)
        return grouped

    def delete_vms(self, vms: Sequence[VM]) -> None:
        for region, instance_ids in self._by_region(vms).items():
            logger.info("Terminating EC2 instances", extra={"region": region, "instances": instance_ids})
            try:
                self._client("ec2", region).terminate_instances(InstanceIds=instance_ids)
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"terminating instances in {region} failed: {exc}") from exc

    def reset_vms(self, vms: Sequence[VM]) -> None:
        for region, instance_ids in self._by_region(vms).items():
            try:
                self._client("ec2", region).reboot_instances(InstanceIds=instance_ids)
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"rebooting instances in {region} failed: {exc}") from exc

    def extend_vms(self, vms: Sequence[VM], lifetime: timedelta) -> None:
        value = format_lifetime(lifetime)
        for region, instance_ids in self._by_region(vms).items():
            try:
                self._client("ec2", region).create_tags(
                    Resources=instance_ids,
                    Tags=[{"Key": "Lifetime", "Value": value}],
                )
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"tagging instances in {region} failed: {exc}") from exc

    def config_ssh(self) -> None:
        """Import the local public key as a key pair in every region."""

        if not self.active():
            return
        account = self.find_active_account()
        if not account or not self._public_key_path.exists():
            logger.warning("Skipping AWS key pair import", extra={"key": str(self._public_key_path)})
            return
        key_name = _key_pair_name(account)
        material = self._public_key_path.read_bytes()
        for region in self._regions:
            client = self._client("ec2", region)
            try:
                client.describe_key_pairs(KeyNames=[key_name])
                continue
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "InvalidKeyPair.NotFound":
                    raise ProviderError(self.name, f"describing key pairs in {region} failed: {exc}") from exc
            try:
                client.import_key_pair(KeyName=key_name, PublicKeyMaterial=material)
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"importing key pair in {region} failed: {exc}") from exc

    def gc_key_pairs(self, *, dry_run: bool) -> list[str]:
        """Delete tool key pairs whose IAM user no longer exists."""

        try:
            users: set[str] = set()
            for page in self._client("iam").get_paginator("list_users").paginate():
                users.update(user["UserName"] for user in page.get("Users", []))
        except (ClientError, BotoCoreError) as exc:
            raise ProviderError(self.name, f"listing IAM users failed: {exc}") from exc

        removed: list[str] = []
        for region in self._regions:
            client = self._client("ec2", region)
            try:
                response = client.describe_key_pairs(
                    Filters=[{"Name": "key-name", "Values": [f"{KEY_PAIR_PREFIX}*"]}]
                )
            except (ClientError, BotoCoreError) as exc:
                raise ProviderError(self.name, f"listing key pairs in {region} failed: {exc}") from exc
            for pair in response.get("KeyPairs", []):
                key_name = pair["KeyName"]
                if key_name[len(KEY_PAIR_PREFIX):] in users:
                    continue
                removed.append(f"{region}/{key_name}")
                if dry_run:
                    continue
                logger.info("Deleting orphaned key pair", extra={"region": region, "key_pair": key_name})
                try:
                    client.delete_key_pair(KeyName=key_name)
                except (ClientError, BotoCoreError) as exc:
                    raise ProviderError(self.name, f"deleting key pair {key_name} failed: {exc}") from exc
        return removed


def _key_pair_name(account: str) -> str:
    return f"{KEY_PAIR_PREFIX}{account}"
