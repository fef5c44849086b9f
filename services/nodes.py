"""Per-node address helpers and profile capture."""

from __future__ import annotations

import logging
import os
import socket
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import requests
from requests import Session
from requests import exceptions as requests_exceptions

from ephfleet_core.errors import invalid_input
from ephfleet_core.timeutil import utcnow

from services.cloud import Cluster
from services.remote import RemoteCluster, admin_port, node_port

logger = logging.getLogger(__name__)

MIN_PPROF_TIMEOUT = 30.0


class NodeAddresses:
    """Resolve node addresses and build client URLs for a cluster handle."""

    def __init__(
        self,
        remote: RemoteCluster,
        *,
        dns_domain: Optional[str] = None,
        resolver: Callable[[str], str] = socket.gethostbyname,
    ) -> None:
        self._remote = remote
        self._dns_domain = dns_domain
        self._resolver = resolver

    @property
    def remote(self) -> RemoteCluster:
        return self._remote

    def ip(self, cluster: Cluster, external: bool = False) -> dict[int, str]:
        """Return the internal (or public) IP of every selected node."""

        if cluster.is_local:
            return {node: "127.0.0.1" for node in cluster.nodes}
        if external:
            return {node: cluster.vm(node).public_ip or "" for node in cluster.nodes}

        addresses: dict[int, str] = {}
        lock = threading.Lock()

        def _lookup(node: int) -> None:
            address = self._remote.get_internal_ip(cluster, node)
            with lock:
                addresses[node] = address

        _, error = self._remote.parallel(cluster, "resolving internal IPs", _lookup)
        if error is not None:
            raise error
        return dict(sorted(addresses.items()))

    def pgurl(self, cluster: Cluster, external: bool = False) -> dict[int, str]:
        """Return a postgres connection URL per selected node."""

        urls = {}
        for node, address in self.ip(cluster, external).items():
            host = "localhost" if cluster.is_local else address
            url = f"postgres://root@{host}:{node_port(cluster, node)}"
            if cluster.secure:
                certs = cluster.certs_dir.rstrip("/")
                url += (
                    f"?sslcert={certs}/client.root.crt&sslkey={certs}/client.root.key"
                    f"&sslrootcert={certs}/ca.crt&sslmode=verify-full"
                )
            else:
                url += "?sslmode=disable"
            urls[node] = url
        return urls

    def admin_host(self, cluster: Cluster, node: int, use_ips: bool) -> str:
        if cluster.is_local:
            return "localhost"
        vm = cluster.vm(node)
        if not use_ips and self._dns_domain:
            return f"{vm.name}.{self._dns_domain}"
        return vm.public_ip or ""

    def adminurl(self, cluster: Cluster, *, use_ips: bool = False, path: str = "/") -> dict[int, str]:
        """Return the admin UI URL per selected node.

        DNS names are preferred; when the first node's name does not resolve
        every URL falls back to the public IP.
        """

        if not use_ips and not cluster.is_local and self._dns_domain and cluster.nodes:
            probe = self.admin_host(cluster, cluster.nodes[0], use_ips=False)
            try:
                self._resolver(probe)
            except OSError:
                logger.info("DNS name not resolvable, using IPs", extra={"host": probe})
                use_ips = True

        scheme = "https" if cluster.secure else "http"
        if not path.startswith("/"):
            path = "/" + path
        return {
            node: f"{scheme}://{self.admin_host(cluster, node, use_ips)}:{admin_port(cluster, node)}{path}"
            for node in cluster.nodes
        }


class ProfileCollector:
    """Fetch CPU or heap profiles from every node over HTTP."""

    def __init__(
        self,
        addresses: NodeAddresses,
        *,
        session: Session | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._addresses = addresses
        self._session = session or requests.Session()
        self._clock = clock

    def pprof(
        self,
        cluster: Cluster,
        *,
        duration: float = 10.0,
        heap: bool = False,
        output_dir: Path = Path("."),
    ) -> list[Path]:
        """Capture one profile per selected node and return the written files.

        Files are written to a temporary name first and renamed once complete.
        Nodes that fail are reported together in a single combined error.
        """

        if duration <= 0 and not heap:
            raise invalid_input("profile duration must be positive")
        profile_type = "heap" if heap else "profile"
        timeout = max(2 * duration, MIN_PPROF_TIMEOUT)
        stamp = self._clock().strftime("%Y%m%d%H%M%S")
        urls = self._addresses.adminurl(cluster, use_ips=True, path=f"/debug/pprof/{profile_type}")
        verify: bool | str = True
        if cluster.secure:
            verify = str(Path(cluster.certs_dir) / "ca.crt")

        outputs: list[Path] = []
        lock = threading.Lock()
        output_dir.mkdir(parents=True, exist_ok=True)

        def _capture(node: int) -> None:
            params = {} if heap else {"seconds": int(duration)}
            try:
                response = self._session.get(urls[node], params=params, timeout=timeout, verify=verify)
                response.raise_for_status()
            except requests_exceptions.RequestException as exc:
                raise RuntimeError(f"fetching {profile_type} from node {node}: {exc}") from exc

            target = output_dir / f"pprof-{profile_type}-{stamp}-{cluster.name}-{node:04d}.out"
            handle, tmp_name = tempfile.mkstemp(prefix=".pprof-", dir=output_dir)
            try:
                with os.fdopen(handle, "wb") as stream:
                    stream.write(response.content)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            with lock:
                outputs.append(target)

        logger.info(
            "Capturing profiles",
            extra={"cluster": cluster.name, "type": profile_type, "nodes": len(cluster.nodes)},
        )
        _, error = self._addresses.remote.parallel(cluster, f"capturing {profile_type}", _capture)
        if error is not None:
            for path in sorted(outputs):
                logger.info("Profile written", extra={"path": str(path)})
            raise error
        return sorted(outputs)

