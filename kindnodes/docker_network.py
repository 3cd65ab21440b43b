"""Management of the docker network that cluster nodes attach to."""

from __future__ import annotations

import hashlib
import io
import ipaddress
import json
import struct
from dataclasses import dataclass, field
from typing import Any

from kindnodes.nodes import RunError, command, output, output_lines

FIXED_NETWORK_NAME = "kind"

_MAX_ATTEMPTS = 5
_REGEXP_SPECIAL = set("\\.+*?()|[]{}^$")


@dataclass
class NetworkInspectEntry:
    """The parts of ``docker network inspect`` output used for sorting."""

    id: str
    containers: dict[str, dict[str, str]] = field(default_factory=dict)


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _REGEXP_SPECIAL else ch for ch in text)


def _run_error(err: BaseException | None) -> RunError | None:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, RunError):
            return err
        seen.add(id(err))
        err = err.__cause__ or err.__context__
    return None


def _output_starts_with(err: BaseException, prefix: str) -> bool:
    rerr = _run_error(err)
    return rerr is not None and rerr.output.decode(errors="replace").startswith(prefix)


def _is_ipv6_unavailable_error(err: BaseException) -> bool:
    return _output_starts_with(
        err, "Error response from daemon: Cannot read IPv6 setup for bridge"
    )


def _is_pool_overlap_error(err: BaseException) -> bool:
    return _output_starts_with(
        err,
        "Error response from daemon: Pool overlaps with other one on this address space",
    )


def _is_network_already_exists_error(err: BaseException) -> bool:
    rerr = _run_error(err)
    if rerr is None:
        return False
    text = rerr.output.decode(errors="replace")
    return text.startswith("Error response from daemon: network with name") and (
        "already exists" in text
    )


def is_only_error_no_such_network(err: BaseException | None) -> bool:
    """Return whether err is a command failure whose errors are all 'No such network'."""
    rerr = _run_error(err)
    if rerr is None:
        return False
    # only newline-terminated lines are considered
    for line in rerr.output.decode(errors="replace").split("\n")[:-1]:
        if line.startswith("Error: No such network:"):
            continue
        if line.startswith("Error: "):
            return False
    return True


def ensure_network(name: str) -> None:
    """Create the named docker network unless it exists, removing duplicates."""
    if _remove_duplicate_networks(name):
        return

    subnet = generate_ula_subnet_from_name(name, 0)
    mtu = get_default_network_mtu()
    try:
        _create_network_no_duplicates(name, subnet, mtu)
        return
    except Exception as exc:
        error = exc

    if _is_ipv6_unavailable_error(error):
        # IPAM is automatic when only ipv4 is available
        _create_network_no_duplicates(name, "", mtu)
        return
    if not _is_pool_overlap_error(error):
        raise error
    # another process may have created the network meanwhile
    if check_if_network_exists(name):
        return

    for attempt in range(1, _MAX_ATTEMPTS):
        subnet = generate_ula_subnet_from_name(name, attempt)
        try:
            _create_network_no_duplicates(name, subnet, mtu)
            return
        except Exception as exc:
            if not _is_pool_overlap_error(exc):
                raise
        if check_if_network_exists(name):
            return
    raise RuntimeError("exhausted attempts trying to find a non-overlapping subnet")


def _create_network_no_duplicates(name: str, ipv6_subnet: str, mtu: int) -> None:
    try:
        create_network(name, ipv6_subnet, mtu)
    except Exception as exc:
        if not _is_network_already_exists_error(exc):
            raise
    _remove_duplicate_networks(name)


def _remove_duplicate_networks(name: str) -> bool:
    networks = _sorted_networks_with_name(name)
    if len(networks) > 1:
        try:
            delete_networks(*networks[1:])
        except RunError as exc:
            if not is_only_error_no_such_network(exc):
                raise
    return bool(networks)


def create_network(name: str, ipv6_subnet: str, mtu: int) -> None:
    """Create a bridge network, with an IPv6 subnet when one is given."""
    args = [
        "network",
        "create",
        "-d=bridge",
        "-o",
        "com.docker.network.bridge.enable_ip_masquerade=true",
    ]
    if mtu > 0:
        args += ["-o", f"com.docker.network.driver.mtu={mtu}"]
    if ipv6_subnet:
        args += ["--ipv6", "--subnet", ipv6_subnet]
    args.append(name)
    command("docker", *args).run()


def get_default_network_mtu() -> int:
    """Return the MTU of docker's default bridge network, or 0 if unknown."""
    try:
        lines = output_lines(
            command(
                "docker",
                "network",
                "inspect",
                "bridge",
                "-f",
                '{{ index .Options "com.docker.network.driver.mtu" }}',
            )
        )
    except RunError:
        return 0
    if len(lines) != 1:
        return 0
    try:
        return int(lines[0])
    except ValueError:
        return 0


def _sorted_networks_with_name(name: str) -> list[str]:
    ids = networks_with_name(name)
    if len(ids) < 2:
        return ids
    networks = _inspect_networks(ids)
    sort_network_inspect_entries(networks)
    return [network.id for network in networks]


def sort_network_inspect_entries(networks: list[NetworkInspectEntry]) -> None:
    """Sort in place: networks with more containers first, then by ID."""
    networks.sort(key=lambda entry: (-len(entry.containers), entry.id))


def _inspect_networks(network_ids: list[str]) -> list[NetworkInspectEntry]:
    buffer = io.BytesIO()
    try:
        command("docker", "network", "inspect", *network_ids).set_stdout(buffer).run()
    except RunError as exc:
        # missing networks are simply absent from the output
        if not is_only_error_no_such_network(exc):
            raise
    try:
        raw: Any = json.loads(buffer.getvalue())
        return [
            NetworkInspectEntry(
                id=item.get("Id", ""), containers=item.get("Containers") or {}
            )
            for item in raw
        ]
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"failed to decode networks list: {exc}") from exc


def networks_with_name(name: str) -> list[str]:
    """Return the IDs of the networks named exactly name."""
    out = output(
        command(
            "docker",
            "network",
            "ls",
            f"--filter=name=^{_quote_meta(name)}$",
            "--format={{.ID}}",
        )
    ).decode(errors="replace")
    cleaned = out.removesuffix("\n")
    if not cleaned:
        return []
    return cleaned.split("\n")


def check_if_network_exists(name: str) -> bool:
    """Return whether a network named exactly name exists."""
    out = output(
        command(
            "docker",
            "network",
            "ls",
            f"--filter=name=^{_quote_meta(name)}$",
            "--format={{.Name}}",
        )
    ).decode(errors="replace")
    return out.startswith(name)


def delete_networks(*args: str) -> None:
    """Remove the given networks."""
    command("docker", "network", "rm", *args).run()


def generate_ula_subnet_from_name(name: str, attempt: int) -> str:
    """Return a /64 subnet in fc00::/8 derived from name and the probing attempt."""
    digest = hashlib.sha1(name.encode() + struct.pack("<i", attempt)).digest()
    address = b"\xfc\x00" + digest[2:8] + bytes(8)
    return str(ipaddress.IPv6Network((address, 64)))