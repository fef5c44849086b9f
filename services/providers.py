"""Factory helpers for constructing service implementations from configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from ephfleet_core import AppConfig
from services.aws import AWSProvider
from services.azure import AzureProvider
from services.base import CloudProvider, SSHService
from services.dns import DNSSynchronizer, GCloudDNSProvider
from services.gce import DEFAULT_PROJECT, GCEProvider
from services.lifecycle import ClusterManager
from services.local import LocalProvider
from services.nodes import NodeAddresses, ProfileCollector
from services.registry import ProviderRegistry
from services.remote import RemoteCluster
from services.ssh import ParamikoSSHService
from services.state import CloudStateStore

DEFAULT_DNS_ZONE = "ephfleet"
DEFAULT_DNS_DOMAIN = "ephfleet.internal"


def _build_aws(config: AppConfig) -> CloudProvider:
    key_path = Path(config.ssh_key_path).expanduser() if config.ssh_key_path else None
    return AWSProvider(
        profile=config.aws_profile,
        regions=config.list_value("aws_regions"),
        machine_type=config.aws_machine_type,
        public_key_path=key_path.with_suffix(".pub") if key_path else None,
    )


def _build_gce(config: AppConfig) -> CloudProvider:
    return GCEProvider(
        projects=config.list_value("gce_projects"),
        default_project=config.gce_default_project,
        zones=config.list_value("gce_zones"),
        machine_type=config.gce_machine_type,
    )


def _build_azure(config: AppConfig) -> CloudProvider:
    return AzureProvider(
        subscription=config.azure_subscription,
        locations=config.list_value("azure_locations"),
        machine_type=config.azure_machine_type,
    )


def _build_local(config: AppConfig) -> CloudProvider:
    return LocalProvider(config.state_path)


# Registration order is the order used for sequential provider steps.
PROVIDER_FACTORIES: tuple[Callable[[AppConfig], CloudProvider], ...] = (
    _build_aws,
    _build_gce,
    _build_azure,
    _build_local,
)


def build_registry(config: AppConfig) -> ProviderRegistry:
    """Instantiate every provider once and return the registry holding them."""

    return ProviderRegistry(factory(config) for factory in PROVIDER_FACTORIES)


def build_dns_synchronizer(config: AppConfig, registry: ProviderRegistry) -> DNSSynchronizer:
    """Return the DNS refresher publishing into the default GCE project zone."""

    provider = GCloudDNSProvider(
        project=config.gce_default_project or DEFAULT_PROJECT,
        zone=config.gce_dns_zone or DEFAULT_DNS_ZONE,
        domain=config.gce_dns_domain or DEFAULT_DNS_DOMAIN,
    )
    return DNSSynchronizer(registry, provider)


def build_state_store(config: AppConfig, registry: ProviderRegistry) -> CloudStateStore:
    return CloudStateStore(registry, config.state_path, dns=build_dns_synchronizer(config, registry))


def build_ssh_service(config: AppConfig, *, password: str | None = None) -> SSHService:
    """Create default SSH service for remote operations."""

    key_path = str(Path(config.ssh_key_path).expanduser()) if config.ssh_key_path else None
    return ParamikoSSHService(
        username=config.ssh_user or "ubuntu",
        key_path=key_path,
        password=password,
    )


def build_remote(config: AppConfig, ssh: Optional[SSHService] = None) -> RemoteCluster:
    return RemoteCluster(ssh or build_ssh_service(config), local_dir=config.local_path)


def build_cluster_manager(config: AppConfig) -> ClusterManager:
    """Wire the registry, state store and node collaborator for one invocation."""

    registry = build_registry(config)
    return ClusterManager(
        registry,
        build_state_store(config, registry),
        build_remote(config),
        max_concurrency=config.concurrency,
    )


def build_node_addresses(config: AppConfig, remote: RemoteCluster) -> NodeAddresses:
    return NodeAddresses(remote, dns_domain=config.gce_dns_domain or DEFAULT_DNS_DOMAIN)


def build_profile_collector(config: AppConfig, remote: RemoteCluster) -> ProfileCollector:
    return ProfileCollector(build_node_addresses(config, remote))

