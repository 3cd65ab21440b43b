"""Node provider that runs cluster nodes as docker containers."""

from __future__ import annotations

import csv
import io
import json
import logging
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

from kindnodes.common import (
    API_SERVER_INTERNAL_PORT,
    file_on_host,
    run_concurrently,
)
from kindnodes.common import collect_logs as collect_node_logs
from kindnodes.docker_images import CLUSTER_LABEL_KEY, ensure_node_images
from kindnodes.docker_network import FIXED_NETWORK_NAME, ensure_network
from kindnodes.docker_node import DockerNode
from kindnodes.docker_provision import plan_creation
from kindnodes.nodes import Cmd, Node, RunError, command, output, output_lines
from kindnodes.nodeutils import api_server_endpoint_node
from kindnodes.types import ClusterConfig, Provider, ProviderInfo

_log = logging.getLogger(__name__)

NETWORK_ENV = "KIND_EXPERIMENTAL_DOCKER_NETWORK"


def _join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _until_error_concurrent(fns: list[Callable[[], None]]) -> None:
    """Run fns concurrently and raise the first error that occurs."""
    if not fns:
        return
    with ThreadPoolExecutor(max_workers=len(fns)) as pool:
        futures = [pool.submit(fn) for fn in fns]
        for future in as_completed(futures):
            exc = future.exception()
            if exc is not None:
                raise exc


def parse_docker_info(data: str | bytes) -> ProviderInfo:
    """Build provider info from ``docker info --format '{{json .}}'`` output."""
    raw: Any = json.loads(data)
    if not isinstance(raw, dict):
        raise ValueError("unexpected docker info output")
    info = ProviderInfo(cgroup2=raw.get("CgroupVersion") == "2")
    # with no cgroup driver the limit flags are meaningless
    if raw.get("CgroupDriver") != "none":
        info.supports_memory_limit = bool(raw.get("MemoryLimit", False))
        info.supports_pids_limit = bool(raw.get("PidsLimit", False))
        info.supports_cpu_shares = bool(raw.get("CPUShares", False))
    for option in raw.get("SecurityOptions") or []:
        # options look like "name=seccomp,profile=default" or "name=rootless"
        for record in csv.reader(io.StringIO(option)):
            if "name=rootless" in record:
                info.rootless = True
    return info


class DockerProvider(Provider):
    """Cluster infrastructure provided by executing ``docker``."""

    def __init__(self) -> None:
        self._info: ProviderInfo | None = None

    def __str__(self) -> str:
        return "docker"

    def provision(self, cfg: ClusterConfig, status: Any, loadbalancer_image: str) -> None:
        ensure_node_images(cfg, status)

        network_name = FIXED_NETWORK_NAME
        override = os.environ.get(NETWORK_ENV, "")
        if override:
            _log.warning("WARNING: Overriding docker network due to %s", NETWORK_ENV)
            _log.warning("WARNING: Here be dragons! This is not supported currently.")
            network_name = override
        try:
            ensure_network(network_name)
        except Exception as exc:
            raise RuntimeError(f"failed to ensure docker network: {exc}") from exc

        icons = "📦 " * len(cfg.nodes)
        status.start(f"Preparing nodes {icons}")
        try:
            funcs = plan_creation(cfg, network_name, loadbalancer_image)
            _until_error_concurrent(funcs)
        except Exception:
            status.end(False)
            raise
        status.end(True)

    def list_clusters(self) -> list[str]:
        cmd = command(
            "docker",
            "ps",
            "-a",
            "--filter",
            f"label={CLUSTER_LABEL_KEY}",
            "--format",
            '{{.Label "' + CLUSTER_LABEL_KEY + '"}}',
        )
        try:
            lines = output_lines(cmd)
        except RunError as exc:
            raise RuntimeError(f"failed to list clusters: {exc}") from exc
        return sorted(set(lines))

    def list_nodes(self, cluster: str) -> list[Node]:
        cmd = command(
            "docker",
            "ps",
            "-a",
            "--filter",
            f"label={CLUSTER_LABEL_KEY}={cluster}",
            "--format",
            "{{.Names}}",
        )
        try:
            lines = output_lines(cmd)
        except RunError as exc:
            raise RuntimeError(f"failed to list clusters: {exc}") from exc
        return [DockerNode(name) for name in lines]

    def delete_nodes(self, nodes: list[Node]) -> None:
        if not nodes:
            return
        try:
            command("docker", "rm", "-f", "-v", *(str(node) for node in nodes)).run()
        except RunError as exc:
            raise RuntimeError(f"failed to delete nodes: {exc}") from exc

    def _endpoint_node(self, cluster: str) -> Node:
        try:
            all_nodes = self.list_nodes(cluster)
        except Exception as exc:
            raise RuntimeError(f"failed to list nodes: {exc}") from exc
        try:
            return api_server_endpoint_node(all_nodes)
        except Exception as exc:
            raise RuntimeError(f"failed to get api server endpoint: {exc}") from exc

    def get_api_server_endpoint(self, cluster: str) -> str:
        node = self._endpoint_node(cluster)

        # a docker desktop port label takes precedence when present
        label_format = (
            '{{ index .Config.Labels "desktop.docker.io/ports/'
            f'{API_SERVER_INTERNAL_PORT}/tcp" }}}}'
        )
        try:
            lines = output_lines(
                command("docker", "inspect", "--format", label_format, str(node))
            )
        except RunError as exc:
            raise RuntimeError(f"failed to get api server port: {exc}") from exc
        if len(lines) == 1 and lines[0]:
            return lines[0]

        ports_format = (
            "{{ with (index (index .NetworkSettings.Ports "
            f'"{API_SERVER_INTERNAL_PORT}/tcp") 0) }}}}'
            '{{ printf "%s\t%s" .HostIp .HostPort }}{{ end }}'
        )
        try:
            lines = output_lines(
                command("docker", "inspect", "--format", ports_format, str(node))
            )
        except RunError as exc:
            raise RuntimeError(f"failed to get api server port: {exc}") from exc
        if len(lines) != 1:
            raise ValueError(
                f"network details should only be one line, got {len(lines)} lines"
            )
        parts = lines[0].split("\t")
        if len(parts) != 2:
            raise ValueError(
                f"network details should only be two parts, got {len(parts)}"
            )
        return _join_host_port(parts[0], parts[1])

    def get_api_server_internal_endpoint(self, cluster: str) -> str:
        node = self._endpoint_node(cluster)
        # node hostnames are their names
        return _join_host_port(str(node), API_SERVER_INTERNAL_PORT)

    def collect_logs(self, directory: str, nodes: list[Node]) -> None:
        def exec_to_path(cmd: Cmd, path: str) -> Callable[[], None]:
            def run() -> None:
                with file_on_host(path) as f:
                    cmd.set_stdout(f).set_stderr(f).run()

            return run

        def serial_logs(node: Node, path: str) -> Callable[[], None]:
            def run() -> None:
                with file_on_host(os.path.join(path, "serial.log")) as f:
                    node.serial_logs(f)

            return run

        def node_logs(node: Node, path: str) -> Callable[[], None]:
            return lambda: collect_node_logs(node, path)

        fns: list[Callable[[], None]] = [
            exec_to_path(
                command("docker", "info"), os.path.join(directory, "docker-info.txt")
            )
        ]
        for node in nodes:
            name = str(node)
            path = os.path.join(directory, name)
            fns += [
                node_logs(node, path),
                exec_to_path(
                    command("docker", "inspect", name), os.path.join(path, "inspect.json")
                ),
                serial_logs(node, path),
            ]
        run_concurrently(fns)

    def info(self) -> ProviderInfo:
        """Return the provider info, cached after the first successful call."""
        if self._info is None:
            try:
                out = output(command("docker", "info", "--format", "{{json .}}"))
            except RunError as exc:
                raise RuntimeError(f"failed to get docker info: {exc}") from exc
            self._info = parse_docker_info(out)
        return self._info