"""Helpers shared by node provider implementations."""

from __future__ import annotations

import os
import socket
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO

from kindnodes.nodes import Cmd, Node
from kindnodes.types import ClusterConfig

API_SERVER_INTERNAL_PORT = 6443

HTTP_PROXY = "HTTP_PROXY"
HTTPS_PROXY = "HTTPS_PROXY"
NO_PROXY = "NO_PROXY"


class AggregateError(Exception):
    """Several independent operations failed."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


def run_concurrently(fns: list[Callable[[], None]]) -> None:
    """Run all fns concurrently and raise their errors together."""
    if not fns:
        return
    errors: list[BaseException] = []
    with ThreadPoolExecutor(max_workers=len(fns)) as pool:
        futures = [pool.submit(fn) for fn in fns]
        for future in futures:
            exc = future.exception()
            if exc is not None:
                errors.append(exc)
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise AggregateError(errors)


def port_or_get_free_port(port: int, listen_addr: str) -> int:
    """Return port, or a free one when port is 0; -1 means let the backend pick."""
    if port == -1:
        return 0
    if port == 0:
        return get_free_port(listen_addr)
    return port


def get_free_port(listen_addr: str) -> int:
    """Return a currently free TCP port on listen_addr."""
    infos = socket.getaddrinfo(
        listen_addr, 0, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )
    last_error: OSError | None = None
    for family, socktype, proto, _, sockaddr in infos:
        try:
            with socket.socket(family, socktype, proto) as sock:
                sock.bind(sockaddr)
                sock.listen(1)
                return sock.getsockname()[1]
        except OSError as exc:
            last_error = exc
    raise last_error or OSError(f"cannot listen on {listen_addr!r}")


def required_node_images(cfg: ClusterConfig) -> set[str]:
    """Return the set of node images the config needs."""
    return {node.image for node in cfg.nodes}


def file_on_host(path: str | os.PathLike) -> BinaryIO:
    """Create a file for writing, making parent directories as needed."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return open(target, "wb")


def collect_logs(node: Node, directory: str | os.PathLike) -> None:
    """Write the node's version, journal, kubelet and containerd logs to directory."""

    def exec_to_path(cmd: Cmd, name: str) -> Callable[[], None]:
        def run() -> None:
            with file_on_host(Path(directory) / name) as f:
                cmd.set_stdout(f).set_stderr(f).run()

        return run

    run_concurrently(
        [
            exec_to_path(node.command("cat", "/kind/version"), "kubernetes-version.txt"),
            exec_to_path(node.command("journalctl", "--no-pager"), "journal.log"),
            exec_to_path(
                node.command("journalctl", "--no-pager", "-u", "kubelet.service"),
                "kubelet.log",
            ),
            exec_to_path(
                node.command("journalctl", "--no-pager", "-u", "containerd.service"),
                "containerd.log",
            ),
        ]
    )


def make_node_namer(cluster_name: str) -> Callable[[str], str]:
    """Return a function naming nodes by role, numbering repeated roles."""
    counter: dict[str, int] = {}

    def namer(role: str) -> str:
        count = 1
        suffix = ""
        if role in counter:
            count += counter[role]
            suffix = str(count)
        counter[role] = count
        return f"{cluster_name}-{role}{suffix}"

    return namer


def get_proxy_envs(
    cfg: ClusterConfig, getenv: Callable[[str], str | None] | None = None
) -> dict[str, str]:
    """Return proxy variables, adding cluster subnets to NO_PROXY when any is set."""
    if getenv is None:
        getenv = os.environ.get
    envs: dict[str, str] = {}
    for name in (HTTP_PROXY, HTTPS_PROXY, NO_PROXY):
        value = getenv(name) or getenv(name.lower()) or ""
        if value:
            envs[name] = value
            envs[name.lower()] = value
    if envs:
        no_proxy = envs.get(NO_PROXY, "")
        if no_proxy:
            no_proxy += ","
        no_proxy += f"{cfg.networking.service_subnet},{cfg.networking.pod_subnet}"
        envs[NO_PROXY] = no_proxy
        envs[NO_PROXY.lower()] = no_proxy
    return envs