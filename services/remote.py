"""Node-level command execution for clusters: SSH for cloud VMs, subprocess for local."""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from ephfleet_core.errors import IndexedError, PartialFailure, invalid_input

from services.base import SSHService
from services.cloud import Cluster
from services.parallel import run_parallel
from services.ssh import RemoteCommandError

logger = logging.getLogger(__name__)

BASE_PORT = 26257
REMOTE_STORE_ROOT = "/mnt/data1/cockroach"
DEFAULT_BINARY = "./cockroach"


def node_port(cluster: Cluster, node: int) -> int:
    """SQL port of ``node``; local nodes share a host and get distinct ports."""

    if cluster.is_local:
        return BASE_PORT + 2 * (node - 1)
    return BASE_PORT


def admin_port(cluster: Cluster, node: int) -> int:
    return node_port(cluster, node) + 1


class RemoteCluster:
    """Runs shell commands on the nodes of a cluster handle."""

    def __init__(
        self,
        ssh: SSHService,
        *,
        local_dir: Path,
        binary: str = DEFAULT_BINARY,
        wait_timeout: float = 300.0,
        poll_interval: float = 5.0,
    ) -> None:
        self._ssh = ssh
        self._local_dir = local_dir
        self._binary = binary
        self._wait_timeout = wait_timeout
        self._poll_interval = poll_interval

    def node_dir(self, node: int) -> Path:
        return self._local_dir / str(node)

    def store_dir(self, cluster: Cluster, node: int) -> str:
        if cluster.is_local:
            return str(self.node_dir(node) / "data")
        return REMOTE_STORE_ROOT

    def run_on_node(self, cluster: Cluster, node: int, command: str, *, timeout: int = 600) -> str:
        if cluster.is_local:
            directory = self.node_dir(node)
            directory.mkdir(parents=True, exist_ok=True)
            completed = subprocess.run(
                ["bash", "-c", command],
                cwd=directory,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
            if completed.returncode != 0:
                raise RemoteCommandError("localhost", completed.returncode, completed.stdout + completed.stderr)
            return completed.stdout
        vm = cluster.vm(node)
        return self._ssh.run(cluster.host(node), command, user=vm.remote_user, timeout=timeout)

    def parallel(
        self,
        cluster: Cluster,
        description: str,
        fn: Callable[[int], Optional[str]],
        *,
        nodes: Sequence[int] | None = None,
        concurrency: int | None = None,
    ) -> tuple[list[IndexedError], Optional[PartialFailure]]:
        """Apply ``fn(node)`` to every selected node; failures are indexed by node."""

        targets = list(nodes if nodes is not None else cluster.nodes)
        limit = cluster.max_concurrency if concurrency is None else concurrency
        failures, _ = run_parallel(description, len(targets), limit, lambda i: fn(targets[i]))
        by_node = [IndexedError(targets[item.index], item.error, item.output) for item in failures]
        if not by_node:
            return [], None
        return by_node, PartialFailure(by_node, description=description)

    def run(self, cluster: Cluster, command: str, *, description: str = "") -> dict[int, str]:
        """Run ``command`` on every selected node and return outputs per node."""

        outputs: dict[int, str] = {}
        lock = threading.Lock()

        def _run(node: int) -> None:
            output = self.run_on_node(cluster, node, command)
            with lock:
                outputs[node] = output

        _, error = self.parallel(cluster, description or _title(command), _run)
        if error is not None:
            raise error
        return dict(sorted(outputs.items()))

    def wait(self, cluster: Cluster) -> None:
        """Block until every selected node accepts SSH connections."""

        if cluster.is_local:
            return

        def _wait(node: int) -> None:
            vm = cluster.vm(node)
            deadline = time.monotonic() + self._wait_timeout
            while not self._ssh.reachable(cluster.host(node), user=vm.remote_user):
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"timed out waiting for {vm.name}")
                time.sleep(self._poll_interval)

        _, error = self.parallel(cluster, "waiting for nodes to start", _wait)
        if error is not None:
            raise error

    def setup_ssh(self, cluster: Cluster, authorized_keys: Sequence[str]) -> None:
        """Append ``authorized_keys`` to every node's ``authorized_keys`` file."""

        if cluster.is_local or not authorized_keys:
            return
        keys = "\n".join(authorized_keys)
        command = (
            "mkdir -p ~/.ssh && chmod 700 ~/.ssh && "
            f"printf '%s\\n' {shlex.quote(keys)} >> ~/.ssh/authorized_keys && "
            "sort -u -o ~/.ssh/authorized_keys ~/.ssh/authorized_keys && "
            "chmod 600 ~/.ssh/authorized_keys"
        )
        self.run(cluster, command, description="distributing authorized keys")

    def get_internal_ip(self, cluster: Cluster, node: int) -> str:
        vm = cluster.vm(node)
        if vm.private_ip:
            return vm.private_ip
        output = self.run_on_node(cluster, node, "hostname --all-ip-addresses", timeout=60)
        addresses = output.split()
        if not addresses:
            raise RuntimeError(f"no internal address reported by {vm.name}")
        return addresses[0]

    def start(self, cluster: Cluster) -> None:
        join_host = "localhost" if cluster.is_local else self.get_internal_ip(cluster, 1)
        join = f"{join_host}:{node_port(cluster, 1)}"
        security = f"--certs-dir={cluster.certs_dir}" if cluster.secure else "--insecure"
        exports = "".join(f"export {shlex.quote(item)}; " for item in cluster.env)

        def _start(node: int) -> None:
            args = [
                self._binary,
                "start",
                security,
                f"--store={self.store_dir(cluster, node)}",
                f"--listen-addr=:{node_port(cluster, node)}",
                f"--http-addr=:{admin_port(cluster, node)}",
                f"--join={join}",
                "--background",
            ]
            if cluster.localities[node - 1]:
                args.append(f"--locality={cluster.localities[node - 1]}")
            args.extend(cluster.args)
            self.run_on_node(cluster, node, exports + " ".join(shlex.quote(arg) for arg in args))

        _, error = self.parallel(cluster, "starting nodes", _start)
        if error is not None:
            raise error

    def _pattern(self, cluster: Cluster, node: int) -> str:
        return shlex.quote(f"--store={self.store_dir(cluster, node)}")

    def stop(self, cluster: Cluster, signal: int = 9, wait: bool = False) -> None:
        if signal < 1:
            raise invalid_input(f"invalid signal {signal}")

        def _stop(node: int) -> None:
            pattern = self._pattern(cluster, node)
            command = f"pkill -{signal} -f -- {pattern} || true"
            if wait:
                command += f"; while pgrep -f -- {pattern} >/dev/null; do sleep 1; done"
            self.run_on_node(cluster, node, command)

        _, error = self.parallel(cluster, "stopping nodes", _stop)
        if error is not None:
            raise error

    def status(self, cluster: Cluster) -> dict[int, str]:
        statuses: dict[int, str] = {}
        lock = threading.Lock()

        def _status(node: int) -> None:
            output = self.run_on_node(cluster, node, f"pgrep -f -- {self._pattern(cluster, node)} || true")
            pids = output.split()
            label = f"running pid={pids[0]}" if pids else "not running"
            with lock:
                statuses[node] = f"{label}{' ' + cluster.tag if cluster.tag else ''}"

        _, error = self.parallel(cluster, "checking node status", _status)
        if error is not None:
            raise error
        return dict(sorted(statuses.items()))

    def wipe(self, cluster: Cluster, preserve_certs: bool = False) -> None:
        self.stop(cluster, 9, wait=False)

        def _wipe(node: int) -> None:
            targets = [self.store_dir(cluster, node), "logs"]
            if not preserve_certs:
                targets.append(cluster.certs_dir)
            self.run_on_node(cluster, node, "rm -rf " + " ".join(shlex.quote(item) for item in targets))

        _, error = self.parallel(cluster, "wiping nodes", _wipe)
        if error is not None:
            raise error


def _title(command: str) -> str:
    title = command.strip()
    if len(title) > 30:
        title = title[:27] + "..."
    return title
