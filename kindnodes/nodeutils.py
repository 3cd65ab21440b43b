"""Node selection by role and common operations run against nodes."""

from __future__ import annotations

import io
import json
import posixpath
from typing import Any

from kindnodes.nodes import Node, output_lines
from kindnodes.types import (
    CONTROL_PLANE_ROLE,
    EXTERNAL_LOAD_BALANCER_ROLE,
    WORKER_ROLE,
)


class NodeSelectionError(Exception):
    """The list of nodes does not have the expected shape."""


def select_nodes_by_role(all_nodes: list[Node], role: str) -> list[Node]:
    """Return the nodes whose role matches role, in their original order."""
    return [node for node in all_nodes if node.role() == role]


def internal_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return the Kubernetes nodes, leaving out e.g. the external load balancer."""
    return [
        node
        for node in all_nodes
        if node.role() in (WORKER_ROLE, CONTROL_PLANE_ROLE)
    ]


def external_load_balancer_node(all_nodes: list[Node]) -> Node | None:
    """Return the external load balancer node, or None if there is none."""
    balancers = select_nodes_by_role(all_nodes, EXTERNAL_LOAD_BALANCER_ROLE)
    if not balancers:
        return None
    if len(balancers) > 1:
        raise NodeSelectionError(
            f"unexpected number of {EXTERNAL_LOAD_BALANCER_ROLE} nodes {len(balancers)}"
        )
    return balancers[0]


def api_server_endpoint_node(all_nodes: list[Node]) -> Node:
    """Return the node hosting the API server endpoint.

    That is the load balancer if there is one, otherwise the single
    control plane node.
    """
    try:
        balancer = external_load_balancer_node(all_nodes)
    except Exception as exc:
        raise NodeSelectionError(f"failed to find api-server endpoint node: {exc}") from exc
    if balancer is not None:
        return balancer
    try:
        control_planes = control_plane_nodes(all_nodes)
    except Exception as exc:
        raise NodeSelectionError(f"failed to find api-server endpoint node: {exc}") from exc
    if len(control_planes) != 1:
        raise NodeSelectionError(
            "expected one control plane node or a load balancer, "
            f"not {len(control_planes)} and none"
        )
    return control_planes[0]


def control_plane_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return the control plane nodes sorted by name; the first is the bootstrap node."""
    return sorted(select_nodes_by_role(all_nodes, CONTROL_PLANE_ROLE), key=str)


def bootstrap_control_plane_node(all_nodes: list[Node]) -> Node:
    """Return the bootstrap control plane node."""
    control_planes = control_plane_nodes(all_nodes)
    if not control_planes:
        raise NodeSelectionError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return control_planes[0]


def secondary_control_plane_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return every control plane node except the bootstrap one."""
    control_planes = control_plane_nodes(all_nodes)
    if not control_planes:
        raise NodeSelectionError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return control_planes[1:]


def _parent_dir(path: str) -> str:
    return posixpath.normpath(posixpath.dirname(path) or ".")


def kube_version(node: Node) -> str:
    """Return the Kubernetes version installed on the node."""
    try:
        lines = output_lines(node.command("cat", "/kind/version"))
    except Exception as exc:
        raise RuntimeError(f"failed to get file: {exc}") from exc
    if len(lines) != 1:
        raise ValueError(f"file should only be one line, got {len(lines)} lines")
    return lines[0]


def write_file(node: Node, dest: str, content: str) -> None:
    """Write content to dest on the node, creating its directory."""
    directory = _parent_dir(dest)
    try:
        node.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise RuntimeError(f"failed to create directory {directory}: {exc}") from exc
    node.command("cp", "/dev/stdin", dest).set_stdin(io.StringIO(content)).run()


def copy_node_to_node(a: Node, b: Node, file: str) -> None:
    """Copy file from node a to the same path on node b."""
    directory = _parent_dir(file)
    try:
        b.command("mkdir", "-p", directory).run()
    except Exception as exc:
        raise RuntimeError(f"failed to create directory {directory!r}: {exc}") from exc
    buffer = io.BytesIO()
    try:
        a.command("cat", file).set_stdout(buffer).run()
    except Exception as exc:
        raise RuntimeError(f"failed to read {file!r} from node: {exc}") from exc
    buffer.seek(0)
    try:
        b.command("cp", "/dev/stdin", file).set_stdin(buffer).run()
    except Exception as exc:
        raise RuntimeError(f"failed to write {file!r} to node: {exc}") from exc


def load_image_archive(node: Node, image: Any) -> None:
    """Import the image archive read from image into the node's containerd."""
    cmd = node.command("ctr", "--namespace=k8s.io", "images", "import", "-").set_stdin(image)
    try:
        cmd.run()
    except Exception as exc:
        raise RuntimeError(f"failed to load image: {exc}") from exc


def image_id(node: Node, image: str) -> str:
    """Return the ID of the named image on the node."""
    buffer = io.BytesIO()
    node.command("crictl", "inspecti", image).set_stdout(buffer).run()
    data = json.loads(buffer.getvalue())
    if not isinstance(data, dict):
        raise ValueError("unexpected crictl inspecti output")
    status = data.get("status") or {}
    if not isinstance(status, dict):
        raise ValueError("unexpected crictl inspecti output")
    return status.get("id", "") or ""