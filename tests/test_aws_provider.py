"""Tests for the boto3-backed AWS provider using a fake session."""

from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

from ephfleet_core.errors import ProviderError
from services.aws import AWSProvider
from services.base import CreateOptions

from fakes import make_vm

LAUNCHED = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Paginator:
    def __init__(self, pages: list[dict[str, Any]], error: Exception | None = None) -> None:
        self.pages = pages
        self.error = error
        self.kwargs: dict[str, Any] | None = None

    def paginate(self, **kwargs: Any):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return iter(self.pages)


class _Waiter:
    def __init__(self, client: "_FakeClient") -> None:
        self._client = client

    def wait(self, **kwargs: Any) -> None:
        self._client.calls.append(("wait", kwargs["InstanceIds"]))


class _FakeClient:
    def __init__(self, service: str, region: str) -> None:
        self.service = service
        self.region = region
        self.calls: list[tuple] = []
        self.paginators: dict[str, _Paginator] = {}
        self.key_pairs: list[str] = []
        self.user: dict[str, Any] | Exception = {"User": {"UserName": "alice"}}
        self.caller_arn = "arn:aws:sts::123:assumed-role/dev/carol"
        self._next_id = 0

    # iam / sts
    def get_user(self) -> dict[str, Any]:
        if isinstance(self.user, Exception):
            raise self.user
        return self.user

    def get_caller_identity(self) -> dict[str, Any]:
        return {"Arn": self.caller_arn}

    # ssm
    def get_parameter(self, Name: str) -> dict[str, Any]:
        return {"Parameter": {"Value": f"ami-{self.region}"}}

    # ec2
    def get_paginator(self, operation: str) -> _Paginator:
        return self.paginators.setdefault(operation, _Paginator([]))

    def get_waiter(self, name: str) -> _Waiter:
        return _Waiter(self)

    def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._next_id += 1
        instance_id = f"i-{self.region}-{self._next_id}"
        self.calls.append(("run_instances", kwargs))
        return {"Instances": [{"InstanceId": instance_id}]}

    def terminate_instances(self, InstanceIds: list[str]) -> None:
        self.calls.append(("terminate", InstanceIds))

    def reboot_instances(self, InstanceIds: list[str]) -> None:
        self.calls.append(("reboot", InstanceIds))

    def create_tags(self, Resources: list[str], Tags: list[dict[str, str]]) -> None:
        self.calls.append(("tag", Resources, Tags))

    def describe_key_pairs(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("describe_key_pairs", kwargs))
        names = kwargs.get("KeyNames")
        if names is not None:
            if names[0] not in self.key_pairs:
                raise _client_error("InvalidKeyPair.NotFound")
            return {"KeyPairs": [{"KeyName": names[0]}]}
        return {"KeyPairs": [{"KeyName": name} for name in self.key_pairs]}

    def import_key_pair(self, KeyName: str, PublicKeyMaterial: bytes) -> None:
        self.calls.append(("import_key_pair", KeyName))
        self.key_pairs.append(KeyName)

    def delete_key_pair(self, KeyName: str) -> None:
        self.calls.append(("delete_key_pair", KeyName))
        self.key_pairs.remove(KeyName)


class _FakeSession:
    def __init__(self, *, credentials: object = object()) -> None:
        self.credentials = credentials
        self.clients: dict[tuple[str, str], _FakeClient] = {}

    def get_credentials(self) -> object:
        return self.credentials

    def client(self, service: str, region_name: str | None = None) -> _FakeClient:
        key = (service, region_name or "")
        if key not in self.clients:
            self.clients[key] = _FakeClient(service, region_name or "")
        return self.clients[key]


class AWSProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = _FakeSession()
        self.provider = AWSProvider(session=self.session, regions=["us-east-1", "us-west-2"])

    def ec2(self, region: str) -> _FakeClient:
        return self.session.client("ec2", region_name=region)

    def test_active_requires_credentials(self) -> None:
        self.assertTrue(self.provider.active())
        inactive = AWSProvider(session=_FakeSession(credentials=None), regions=["us-east-1"])
        self.assertFalse(inactive.active())

    def test_account_falls_back_to_caller_identity(self) -> None:
        self.session.client("iam", region_name="us-east-1").user = _client_error("AccessDenied")
        self.assertEqual("carol", self.provider.find_active_account())

    def test_list_vms_converts_tagged_instances(self) -> None:
        self.ec2("us-west-2").paginators["describe_instances"] = _Paginator(
            [
                {
                    "Reservations": [
                        {
                            "Instances": [
                                {
                                    "InstanceId": "i-123",
                                    "InstanceType": "m5.large",
                                    "LaunchTime": LAUNCHED,
                                    "PublicIpAddress": "198.51.100.7",
                                    "PrivateIpAddress": "10.1.0.7",
                                    "Placement": {"AvailabilityZone": "us-west-2b"},
                                    "Tags": [
                                        {"Key": "Name", "Value": "alice-x-0001"},
                                        {"Key": "Lifetime", "Value": "6h0m0s"},
                                        {"Key": "Owner", "Value": "alice"},
                                    ],
                                }
                            ]
                        }
                    ]
                }
            ]
        )

        vms = self.provider.list_vms()

        self.assertEqual(1, len(vms))
        vm = vms[0]
        self.assertEqual("alice-x-0001", vm.name)
        self.assertEqual("i-123", vm.provider_id)
        self.assertEqual("198.51.100.7", vm.public_ip)
        self.assertEqual(timedelta(hours=6), vm.lifetime)
        self.assertEqual(LAUNCHED, vm.created_at)
        self.assertEqual("cloud=aws,region=us-west-2,zone=us-west-2b", vm.locality)
        self.assertEqual("alice", vm.account)
        filters = self.ec2("us-west-2").paginators["describe_instances"].kwargs["Filters"]
        self.assertEqual({"Name": "tag:ephfleet", "Values": ["true"]}, filters[0])

    def test_list_failure_is_provider_error(self) -> None:
        self.ec2("us-east-1").paginators["describe_instances"] = _Paginator([], error=_client_error("Throttling"))
        with self.assertRaises(ProviderError) as ctx:
            self.provider.list_vms()
        self.assertEqual("aws", ctx.exception.provider)

    def test_create_vms_spreads_over_zones_and_waits(self) -> None:
        options = CreateOptions(
            providers=["aws"],
            cluster_name="alice-x",
            zones=["us-east-1a", "us-west-2b"],
            lifetime=timedelta(hours=3),
        )

        self.provider.create_vms(["alice-x-0001", "alice-x-0002", "alice-x-0003"], options)

        east = [call for call in self.ec2("us-east-1").calls if call[0] == "run_instances"]
        west = [call for call in self.ec2("us-west-2").calls if call[0] == "run_instances"]
        self.assertEqual(2, len(east))
        self.assertEqual(1, len(west))
        request = east[0][1]
        self.assertEqual("ami-us-east-1", request["ImageId"])
        self.assertEqual("ephfleet-alice", request["KeyName"])
        self.assertEqual({"AvailabilityZone": "us-east-1a"}, request["Placement"])
        tags = {tag["Key"]: tag["Value"] for tag in request["TagSpecifications"][0]["Tags"]}
        self.assertEqual("alice-x-0001", tags["Name"])
        self.assertEqual("3h0m0s", tags["Lifetime"])
        self.assertIn(("wait", ["i-us-east-1-1", "i-us-east-1-2"]), self.ec2("us-east-1").calls)
        self.assertIn(("wait", ["i-us-west-2-1"]), self.ec2("us-west-2").calls)

    def test_delete_and_extend_group_by_region(self) -> None:
        east = make_vm("alice-x", 1, provider="aws")
        east.zone = "us-east-1c"
        west = make_vm("alice-x", 2, provider="aws")
        west.zone = "us-west-2a"

        self.provider.delete_vms([east, west])
        self.provider.extend_vms([east], timedelta(hours=18))

        self.assertIn(("terminate", [east.provider_id]), self.ec2("us-east-1").calls)
        self.assertIn(("terminate", [west.provider_id]), self.ec2("us-west-2").calls)
        self.assertIn(
            ("tag", [east.provider_id], [{"Key": "Lifetime", "Value": "18h0m0s"}]),
            self.ec2("us-east-1").calls,
        )

    def test_config_ssh_imports_missing_key_pairs(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            key_path = Path(tmpdir, "id_rsa.pub")
            key_path.write_text("ssh-rsa AAAA alice\n", encoding="utf-8")
            provider = AWSProvider(session=self.session, regions=["us-east-1", "us-west-2"], public_key_path=key_path)
            self.ec2("us-west-2").key_pairs.append("ephfleet-alice")

            provider.config_ssh()

        self.assertIn(("import_key_pair", "ephfleet-alice"), self.ec2("us-east-1").calls)
        self.assertNotIn(("import_key_pair", "ephfleet-alice"), self.ec2("us-west-2").calls)

    def test_gc_key_pairs_removes_orphans(self) -> None:
        iam = self.session.client("iam", region_name="us-east-1")
        iam.paginators["list_users"] = _Paginator([{"Users": [{"UserName": "alice"}]}])
        self.ec2("us-east-1").key_pairs.extend(["ephfleet-alice", "ephfleet-bob"])

        self.assertEqual(["us-east-1/ephfleet-bob"], self.provider.gc_key_pairs(dry_run=True))
        self.assertEqual(["ephfleet-alice", "ephfleet-bob"], self.ec2("us-east-1").key_pairs)

        self.assertEqual(["us-east-1/ephfleet-bob"], self.provider.gc_key_pairs(dry_run=False))
        self.assertEqual(["ephfleet-alice"], self.ec2("us-east-1").key_pairs)


if __name__ == "__main__":  # pragma: no cover - convenience
    unittest.main()
