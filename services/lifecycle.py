"""Cluster lifecycle: create, destroy, extend, GC and the cached-registry helpers."""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from ephfleet_core.errors import (
    ErrorKind,
    FleetError,
    already_exists,
    combine_errors,
    invalid_input,
    not_found,
)
from ephfleet_core.timeutil import utcnow

from services.base import LOCAL_CLUSTER, ZFS, CreateOptions
from services.cloud import (
    Cloud,
    Cluster,
    ClusterOptions,
    create_cluster,
    destroy_cluster,
    extend_cluster,
    find_cluster,
    list_nodes,
)
from services.names import cluster_owner, ownership_pattern, verify_cluster_name
from services.notify import SlackNotifier
from services.parallel import run_parallel
from services.registry import ProviderRegistry
from services.remote import RemoteCluster
from services.ssh import clear_known_host
from services.state import CloudStateStore

logger = logging.getLogger(__name__)

MIN_NODES = 1
MAX_NODES = 999


@dataclass(slots=True)
class GCReport:
    """Outcome of one garbage-collection pass."""

    dry_run: bool
    expired: dict[str, list[str]] = field(default_factory=dict)
    destroyed: list[str] = field(default_factory=list)
    bad_instances: list[str] = field(default_factory=list)
    key_pairs: list[str] = field(default_factory=list)

    @property
    def expired_clusters(self) -> list[str]:
        return sorted(name for names in self.expired.values() for name in names)


class ClusterManager:
    """Entry point for every cluster-level operation.

    The manager owns no global state: the provider registry, the state store
    and the node-level collaborator are passed in at construction time.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: CloudStateStore,
        remote: RemoteCluster,
        *,
        max_concurrency: int = 32,
        notifier_factory: Callable[[str], SlackNotifier] = SlackNotifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._registry = registry
        self._store = store
        self._remote = remote
        self._max_concurrency = max_concurrency
        self._notifier_factory = notifier_factory
        self._clock = clock

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def store(self) -> CloudStateStore:
        return self._store

    @property
    def remote(self) -> RemoteCluster:
        return self._remote

    # -- create --------------------------------------------------------------

    def create(
        self,
        node_count: int,
        username: Optional[str],
        create_opts: CreateOptions,
        cluster_opts: Optional[ClusterOptions] = None,
    ) -> Cluster:
        """Provision a cluster of ``node_count`` VMs and prepare it for use."""

        if not MIN_NODES <= node_count <= MAX_NODES:
            raise invalid_input(f"number of nodes must be in [{MIN_NODES}..{MAX_NODES}], got {node_count}")

        name = verify_cluster_name(create_opts.cluster_name, self._registry, username)
        options = replace(
            create_opts,
            cluster_name=name,
            providers=list(create_opts.providers),
            owner=create_opts.owner or username or cluster_owner(name),
        )

        if name == LOCAL_CLUSTER:
            if name in self._store.load().clusters:
                raise already_exists(name)
            options.providers = [LOCAL_CLUSTER]
        elif name in self._store.list_cloud().clusters:
            raise already_exists(name)

        if options.filesystem == ZFS:
            unsupported = [p for p in options.providers if not self._registry.get(p).supports_filesystem(ZFS)]
            if unsupported:
                raise invalid_input(
                    f"filesystem {ZFS} is not supported by provider(s) {', '.join(unsupported)}",
                )

        logger.info(
            "Creating cluster",
            extra={"cluster": name, "nodes": node_count, "providers": options.providers},
        )
        try:
            create_cluster(self._registry, node_count, options)
            if name != LOCAL_CLUSTER:
                return self.setup_ssh(name, cluster_opts)
            return self._prepare_local(cluster_opts)
        except Exception as exc:
            if not (isinstance(exc, FleetError) and exc.kind is ErrorKind.ALREADY_EXISTS):
                self._cleanup_failed_create(name)
            raise

    def _prepare_local(self, cluster_opts: Optional[ClusterOptions]) -> Cluster:
        vms = sorted(
            (vm for vm in self._registry.get(LOCAL_CLUSTER).list_vms() if vm.cluster_name == LOCAL_CLUSTER),
            key=lambda vm: vm.name,
        )
        cluster = Cluster(name=LOCAL_CLUSTER, vms=vms)
        self._store.record_cluster(cluster)
        handle = cluster.with_options(cluster_opts or ClusterOptions(max_concurrency=self._max_concurrency))
        for node in handle.nodes:
            self._remote.node_dir(node).mkdir(parents=True, exist_ok=True)
        return handle

    def _cleanup_failed_create(self, name: str) -> None:
        logger.warning("Cluster creation failed, cleaning up", extra={"cluster": name})
        try:
            cloud = self._store.list_cloud()
            cluster = cloud.clusters.get(name)
            if cluster is not None:
                destroy_cluster(self._registry, cluster)
        except Exception as exc:
            logger.warning("Cleanup after failed create did not complete", extra={"cluster": name}, exc_info=exc)

    # -- destroy -------------------------------------------------------------

    def destroy(
        self,
        names: Sequence[str] = (),
        *,
        all_mine: bool = False,
        username: Optional[str] = None,
    ) -> list[str]:
        """Destroy the named clusters, or every cluster owned by the caller.

        Returns the names of the clusters that were destroyed.
        """

        if all_mine and names:
            raise invalid_input("--all-mine cannot be combined with cluster names")
        if not all_mine and not names:
            raise invalid_input("no cluster name provided")

        destroyed: list[str] = []
        if all_mine:
            pattern = self._ownership(username)
            cloud = self._store.list_cloud()
            targets = [name for name in cloud.names() if pattern.search(name)]
        else:
            targets = []
            for name in names:
                if name == LOCAL_CLUSTER:
                    self._destroy_local()
                    destroyed.append(name)
                    continue
                targets.append(verify_cluster_name(name, self._registry, username))
            if not targets:
                return destroyed
            cloud = self._store.list_cloud()

        def _destroy(index: int) -> None:
            cluster = find_cluster(cloud, targets[index])
            destroy_cluster(self._registry, cluster)

        failures, error = run_parallel("destroying clusters", len(targets), self._max_concurrency, _destroy)
        failed = {item.index for item in failures}
        destroyed.extend(name for index, name in enumerate(targets) if index not in failed)
        if error is not None:
            raise error
        return destroyed

    def _destroy_local(self) -> None:
        local = self._registry.get(LOCAL_CLUSTER)
        vms = [vm for vm in local.list_vms() if vm.cluster_name == LOCAL_CLUSTER]
        if not vms:
            raise not_found(f"cluster {LOCAL_CLUSTER} does not exist")
        handle = Cluster(name=LOCAL_CLUSTER, vms=vms, max_concurrency=self._max_concurrency)
        self._remote.wipe(handle, preserve_certs=False)
        for node in handle.nodes:
            shutil.rmtree(self._remote.node_dir(node), ignore_errors=True)
        local.delete_vms(vms)

    def _ownership(self, username: Optional[str]) -> re.Pattern[str]:
        if username:
            return re.compile(f"^{re.escape(username)}-")
        return ownership_pattern(self._registry)

    # -- extend / reset ------------------------------------------------------

    def extend(self, name: str, extension: timedelta) -> Cluster:
        """Push the expiry of ``name`` out by ``extension`` and return the refreshed cluster."""

        cluster = find_cluster(self._store.list_cloud(), name)
        extend_cluster(self._registry, cluster, extension)
        return find_cluster(self._store.list_cloud(), name)

    def reset(self, name: str) -> None:
        """Reboot every VM of a remote cluster."""

        if name == LOCAL_CLUSTER:
            return
        cluster = find_cluster(self._store.list_cloud(), name)
        self._registry.fan_out(
            cluster.vms,
            lambda provider, vms: provider.reset_vms(vms),
            description=f"resetting {name}",
        )

    # -- gc ------------------------------------------------------------------

    def gc(self, *, dry_run: bool = False, notify_token: Optional[str] = None) -> GCReport:
        """Destroy expired clusters and orphaned key pairs.

        The cluster scan and the key-pair scan are independent; a failure of
        one never prevents the other and both errors are combined.
        """

        report = GCReport(dry_run=dry_run)
        cluster_error: Optional[BaseException] = None
        try:
            cloud = self._store.list_cloud()
            self._gc_clusters(cloud, report, notify_token)
        except Exception as exc:
            cluster_error = exc

        key_error: Optional[BaseException] = None
        try:
            for provider in self._registry.active_providers():
                report.key_pairs.extend(provider.gc_key_pairs(dry_run=dry_run))
        except Exception as exc:
            key_error = exc

        error = combine_errors([cluster_error, key_error], description="garbage collection")
        if error is not None:
            raise error
        return report

    def _gc_clusters(self, cloud: Cloud, report: GCReport, notify_token: Optional[str]) -> None:
        now = self._clock()
        expired: list[Cluster] = []
        for cluster in cloud.clusters.values():
            if cluster.is_local:
                continue
            expires_at = cluster.expires_at
            if expires_at is not None and expires_at <= now:
                expired.append(cluster)
                report.expired.setdefault(cluster_owner(cluster.name), []).append(cluster.name)
        report.bad_instances = sorted(vm.name for vm in cloud.bad_instances)

        if expired:
            logger.info(
                "Expired clusters found",
                extra={"clusters": [cluster.name for cluster in expired], "dry_run": report.dry_run},
            )
        if notify_token and report.expired:
            self._notifier_factory(notify_token).notify_all(report.expired, dry_run=report.dry_run)
        if report.dry_run or not expired:
            return

        def _destroy(index: int) -> None:
            destroy_cluster(self._registry, expired[index])

        failures, error = run_parallel("destroying expired clusters", len(expired), self._max_concurrency, _destroy)
        failed = {item.index for item in failures}
        report.destroyed = [cluster.name for i, cluster in enumerate(expired) if i not in failed]
        if error is not None:
            raise error

    # -- listing and the cached registry -------------------------------------

    def sync(self, quiet: bool = False) -> Cloud:
        return self._store.sync(quiet=quiet)

    def list_clusters(
        self,
        *,
        quiet: bool = False,
        mine: bool = False,
        pattern: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Cloud:
        """Synchronise and return the clusters matching the filter."""

        if mine and pattern:
            raise invalid_input("--mine cannot be combined with a pattern")
        regex: Optional[re.Pattern[str]] = None
        if mine:
            regex = self._ownership(username)
        elif pattern:
            try:
                regex = re.compile(pattern)
            except re.error as exc:
                raise invalid_input(f"invalid cluster pattern {pattern!r}: {exc}") from exc

        cloud = self._store.sync(quiet=quiet)
        filtered = cloud.clone()
        if regex is not None:
            filtered.clusters = {name: c for name, c in cloud.clusters.items() if regex.search(name)}
        return filtered

    def setup_ssh(self, name: str, options: Optional[ClusterOptions] = None) -> Cluster:
        """Refresh host keys of a cluster and authorise the shared keys on it."""

        cluster = find_cluster(self._store.sync(quiet=True), name)
        for vm in cluster.vms:
            if vm.public_ip:
                clear_known_host(vm.public_ip)

        # Host keys changed; read the registry back before touching the nodes.
        handle = find_cluster(self._store.load(), name).with_options(
            options or ClusterOptions(max_concurrency=self._max_concurrency),
        )
        self._remote.wait(handle)

        keys: list[str] = []
        for provider in self._registry.active_providers():
            for key in provider.authorized_keys():
                if key not in keys:
                    keys.append(key)
        self._remote.setup_ssh(handle, keys)
        return handle

    def cached_hosts(self, prefix: str = "") -> list[str]:
        """Return cached cluster names plus ``name:i`` for clusters matching ``prefix``."""

        cloud = self._store.load()
        hosts: list[str] = []
        for name in cloud.names():
            hosts.append(name)
            if prefix and name.startswith(prefix):
                hosts.extend(f"{name}:{node}" for node in range(1, len(cloud.clusters[name].vms) + 1))
        return hosts

    def open_cluster(self, spec: str, options: Optional[ClusterOptions] = None) -> Cluster:
        """Return a handle for ``name[:nodes]`` read from the cached registry."""

        name, _, selector = spec.partition(":")
        if not name:
            raise invalid_input("no cluster name provided")
        cloud = self._store.load()
        cluster = cloud.clusters.get(name)
        if cluster is None:
            available = ", ".join(cloud.names()) or "none"
            raise not_found(
                f"unknown cluster: {name} (available: {available})",
                hint="Run `ephfleet sync` to refresh the cached cluster list.",
            )
        nodes = list_nodes(selector or "all", len(cluster.vms))
        opts = options or ClusterOptions(max_concurrency=self._max_concurrency)
        return cluster.with_options(opts, nodes)
