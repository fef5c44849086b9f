"""Cluster and cloud aggregates plus the provider-level cluster operations."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from ephfleet_core.errors import invalid_input, not_found
from ephfleet_core.timeutil import utcnow

from services.base import LOCAL_CLUSTER, VM, CreateOptions, vm_name
from services.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_ENV = [
    "COCKROACH_ENABLE_RPC_COMPRESSION=false",
    "COCKROACH_UI_RELEASE_NOTES_SIGNUP_DISMISSED=true",
]


@dataclass(slots=True)
class ClusterOptions:
    """Per-invocation settings applied on top of a cached cluster."""

    secure: bool = False
    certs_dir: str = "./certs"
    env: list[str] = field(default_factory=lambda: list(DEFAULT_ENV))
    args: list[str] = field(default_factory=list)
    tag: str = ""
    num_racks: int = 0
    max_concurrency: int = 32
    quiet: bool = False


@dataclass(slots=True)
class Cluster:
    """Named, ordered collection of VMs. Node ``i`` is ``vms[i - 1]``."""

    name: str
    vms: list[VM] = field(default_factory=list)
    secure: bool = False
    certs_dir: str = "./certs"
    env: list[str] = field(default_factory=lambda: list(DEFAULT_ENV))
    args: list[str] = field(default_factory=list)
    tag: str = ""
    localities: list[str] = field(default_factory=list)
    max_concurrency: int = 32
    quiet: bool = False
    nodes: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.localities:
            self.localities = [vm.locality for vm in self.vms]
        if not self.nodes:
            self.nodes = list(range(1, len(self.vms) + 1))

    @property
    def is_local(self) -> bool:
        return self.name == LOCAL_CLUSTER

    @property
    def created_at(self) -> Optional[datetime]:
        return min((vm.created_at for vm in self.vms), default=None)

    @property
    def lifetime(self) -> timedelta:
        return min((vm.lifetime for vm in self.vms), default=timedelta(0))

    @property
    def expires_at(self) -> Optional[datetime]:
        return min((vm.expires_at for vm in self.vms), default=None)

    @property
    def providers(self) -> list[str]:
        return sorted({vm.provider for vm in self.vms})

    def vm(self, node: int) -> VM:
        if not 1 <= node <= len(self.vms):
            raise invalid_input(f"node {node} out of range, cluster {self.name} has {len(self.vms)} nodes")
        return self.vms[node - 1]

    def host(self, node: int) -> str:
        return self.vm(node).public_ip or ""

    def copy(self) -> "Cluster":
        return copy.deepcopy(self)

    def with_options(self, options: ClusterOptions, nodes: Sequence[int] | None = None) -> "Cluster":
        """Return a copy carrying ``options`` and the selected ``nodes``."""

        handle = self.copy()
        handle.secure = options.secure
        handle.certs_dir = options.certs_dir
        handle.env = list(options.env)
        handle.args = list(options.args)
        handle.tag = f"/{options.tag}" if options.tag else ""
        handle.max_concurrency = options.max_concurrency
        handle.quiet = options.quiet
        if options.num_racks > 0:
            for i, locality in enumerate(handle.localities):
                rack = f"rack={i % options.num_racks}"
                handle.localities[i] = f"{locality},{rack}" if locality else rack
        if nodes is not None:
            for node in nodes:
                handle.vm(node)
            handle.nodes = list(nodes)
        return handle


@dataclass(slots=True)
class Cloud:
    """Snapshot of every cluster visible to the current credentials."""

    clusters: dict[str, Cluster] = field(default_factory=dict)
    bad_instances: list[VM] = field(default_factory=list)
    synced_at: Optional[datetime] = None

    @classmethod
    def from_vms(cls, vms: Iterable[VM], *, synced_at: Optional[datetime] = None) -> "Cloud":
        """Group VMs into clusters ordered by node number."""

        grouped: dict[str, list[VM]] = {}
        bad: list[VM] = []
        for vm in vms:
            name = vm.cluster_name
            if name is None:
                bad.append(vm)
                continue
            grouped.setdefault(name, []).append(vm)

        clusters = {}
        for name in sorted(grouped):
            members = sorted(grouped[name], key=lambda item: item.name)
            clusters[name] = Cluster(name=name, vms=members)
        return cls(clusters=clusters, bad_instances=bad, synced_at=synced_at)

    def clone(self) -> "Cloud":
        return copy.deepcopy(self)

    def all_vms(self) -> list[VM]:
        vms: list[VM] = []
        for cluster in self.clusters.values():
            vms.extend(cluster.vms)
        return vms

    def names(self) -> list[str]:
        return sorted(self.clusters)


def list_nodes(spec: str, count: int) -> list[int]:
    """Parse a node selector (``all``, ``3``, ``1-3``, ``1,3-5``)."""

    if count <= 0:
        raise invalid_input("cluster has no nodes")
    if spec in ("", "all"):
        return list(range(1, count + 1))

    selected: set[int] = set()
    for part in spec.split(","):
        start, sep, end = part.partition("-")
        try:
            first = int(start)
            last = int(end) if sep else first
        except ValueError as exc:
            raise invalid_input(f"unable to parse node selector {spec!r}") from exc
        if first < 1 or last < first:
            raise invalid_input(f"invalid node range {part!r}")
        selected.update(range(first, last + 1))

    nodes = sorted(selected)
    if nodes[-1] > count:
        raise invalid_input(f"invalid node spec {spec}, cluster contains {count} nodes")
    return nodes


def list_cloud(registry: ProviderRegistry) -> Cloud:
    """List every active provider and build a fresh snapshot.

    Any listing failure propagates; no partial snapshot is ever returned.
    """

    vms: list[VM] = []
    for provider in registry.active_providers():
        logger.debug("Listing VMs", extra={"provider": provider.name})
        vms.extend(provider.list_vms())
    return Cloud.from_vms(vms, synced_at=utcnow())


def create_cluster(registry: ProviderRegistry, node_count: int, options: CreateOptions) -> None:
    """Spread ``node_count`` VMs round-robin across the requested providers."""

    if not options.providers:
        raise invalid_input("no VM provider selected")
    placement: dict[str, list[str]] = {name: [] for name in options.providers}
    for node in range(1, node_count + 1):
        provider = options.providers[(node - 1) % len(options.providers)]
        placement[provider].append(vm_name(options.cluster_name, node))

    names = [name for name, vms in placement.items() if vms]
    registry.providers_parallel(
        names,
        lambda provider: provider.create_vms(placement[provider.name], options),
        description=f"creating {options.cluster_name}",
    )


def destroy_cluster(registry: ProviderRegistry, cluster: Cluster) -> None:
    logger.info("Destroying cluster", extra={"cluster": cluster.name, "nodes": len(cluster.vms)})
    registry.fan_out(
        cluster.vms,
        lambda provider, vms: provider.delete_vms(vms),
        description=f"destroying {cluster.name}",
    )


def extend_cluster(registry: ProviderRegistry, cluster: Cluster, extension: timedelta) -> None:
    """Push the cluster's expiry out by ``extension``."""

    lifetime = cluster.lifetime + extension
    registry.fan_out(
        cluster.vms,
        lambda provider, vms: provider.extend_vms(vms, lifetime),
        description=f"extending {cluster.name}",
    )


def find_cluster(cloud: Cloud, name: str) -> Cluster:
    try:
        return cloud.clusters[name]
    except KeyError as exc:
        raise not_found(f"cluster {name} does not exist") from exc
