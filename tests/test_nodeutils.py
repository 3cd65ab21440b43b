import io

import pytest

from kindnodes.nodes import Cmd, Node, RunError
from kindnodes.nodeutils import (
    NodeSelectionError,
    api_server_endpoint_node,
    bootstrap_control_plane_node,
    control_plane_nodes,
    copy_node_to_node,
    external_load_balancer_node,
    image_id,
    internal_nodes,
    kube_version,
    load_image_archive,
    secondary_control_plane_nodes,
    select_nodes_by_role,
    write_file,
)


class FakeCmd(Cmd):
    def __init__(self, node, argv):
        super().__init__()
        self.node = node
        self.argv = argv

    def run(self):
        stdin = self.stdin.read() if self.stdin is not None else None
        self.node.calls.append((self.argv, stdin))
        out, fail = self.node.responses.get(self.argv[0], (b"", False))
        if fail:
            raise RunError(self.argv, b"boom", 1)
        if self.stdout is not None and out:
            self.stdout.write(out)


class FakeNode(Node):
    def __init__(self, name, role="worker", responses=None, role_error=False):
        super().__init__(name)
        self._role = role
        self.role_error = role_error
        self.responses = responses or {}
        self.calls = []

    def role(self):
        if self.role_error:
            raise RuntimeError("failed to get role for node")
        return self._role

    def ip(self):
        return ("", "")

    def command(self, command, *args):
        return FakeCmd(self, [command, *args])

    def serial_logs(self, writer):
        pass


def cluster():
    return [
        FakeNode("kind-worker", "worker"),
        FakeNode("kind-control-plane2", "control-plane"),
        FakeNode("kind-external-load-balancer", "external-load-balancer"),
        FakeNode("kind-control-plane", "control-plane"),
    ]


def test_select_nodes_by_role_keeps_order():
    nodes = cluster()
    assert select_nodes_by_role(nodes, "control-plane") == [nodes[1], nodes[3]]


def test_select_nodes_by_role_propagates_role_error():
    with pytest.raises(RuntimeError):
        select_nodes_by_role([FakeNode("x", role_error=True)], "worker")


def test_internal_nodes_excludes_load_balancer():
    nodes = cluster()
    assert internal_nodes(nodes) == [nodes[0], nodes[1], nodes[3]]


def test_external_load_balancer_node():
    nodes = cluster()
    assert external_load_balancer_node(nodes) is nodes[2]
    assert external_load_balancer_node(nodes[:2]) is None


def test_external_load_balancer_node_rejects_two():
    nodes = [
        FakeNode("a", "external-load-balancer"),
        FakeNode("b", "external-load-balancer"),
    ]
    with pytest.raises(NodeSelectionError, match="unexpected number"):
        external_load_balancer_node(nodes)


def test_control_plane_nodes_sorted_by_name():
    nodes = cluster()
    assert control_plane_nodes(nodes) == [nodes[3], nodes[1]]


def test_bootstrap_and_secondary():
    nodes = cluster()
    assert bootstrap_control_plane_node(nodes) is nodes[3]
    assert secondary_control_plane_nodes(nodes) == [nodes[1]]


def test_bootstrap_requires_control_plane():
    with pytest.raises(NodeSelectionError, match="expected at least one"):
        bootstrap_control_plane_node([FakeNode("w", "worker")])
    with pytest.raises(NodeSelectionError, match="expected at least one"):
        secondary_control_plane_nodes([])


def test_api_server_endpoint_prefers_load_balancer():
    nodes = cluster()
    assert api_server_endpoint_node(nodes) is nodes[2]


def test_api_server_endpoint_single_control_plane():
    cp = FakeNode("kind-control-plane", "control-plane")
    assert api_server_endpoint_node([FakeNode("kind-worker"), cp]) is cp


def test_api_server_endpoint_needs_exactly_one_control_plane():
    nodes = [FakeNode("a", "control-plane"), FakeNode("b", "control-plane")]
    with pytest.raises(NodeSelectionError, match="expected one control plane node"):
        api_server_endpoint_node(nodes)


def test_api_server_endpoint_wraps_errors():
    with pytest.raises(NodeSelectionError, match="failed to find api-server endpoint node"):
        api_server_endpoint_node([FakeNode("x", role_error=True)])


def test_kube_version():
    node = FakeNode("n", responses={"cat": (b"v1.21.1\n", False)})
    assert kube_version(node) == "v1.21.1"
    assert node.calls[0][0] == ["cat", "/kind/version"]


def test_kube_version_rejects_multiple_lines():
    node = FakeNode("n", responses={"cat": (b"a\nb\n", False)})
    with pytest.raises(ValueError, match="one line"):
        kube_version(node)


def test_kube_version_command_failure():
    node = FakeNode("n", responses={"cat": (b"", True)})
    with pytest.raises(RuntimeError, match="failed to get file"):
        kube_version(node)


def test_write_file():
    node = FakeNode("n")
    write_file(node, "/etc/kind/config.yaml", "content")
    assert node.calls == [
        (["mkdir", "-p", "/etc/kind"], None),
        (["cp", "/dev/stdin", "/etc/kind/config.yaml"], "content"),
    ]


def test_write_file_mkdir_failure():
    node = FakeNode("n", responses={"mkdir": (b"", True)})
    with pytest.raises(RuntimeError, match="failed to create directory"):
        write_file(node, "/etc/kind/x", "y")


def test_copy_node_to_node():
    a = FakeNode("a", responses={"cat": (b"hello", False)})
    b = FakeNode("b")
    copy_node_to_node(a, b, "/etc/file")
    assert a.calls == [(["cat", "/etc/file"], None)]
    assert b.calls == [
        (["mkdir", "-p", "/etc"], None),
        (["cp", "/dev/stdin", "/etc/file"], b"hello"),
    ]


def test_copy_node_to_node_read_failure():
    a = FakeNode("a", responses={"cat": (b"", True)})
    with pytest.raises(RuntimeError, match="failed to read"):
        copy_node_to_node(a, FakeNode("b"), "/etc/file")


def test_load_image_archive():
    node = FakeNode("n")
    load_image_archive(node, io.BytesIO(b"archive"))
    assert node.calls == [
        (["ctr", "--namespace=k8s.io", "images", "import", "-"], b"archive")
    ]


def test_load_image_archive_failure():
    node = FakeNode("n", responses={"ctr": (b"", True)})
    with pytest.raises(RuntimeError, match="failed to load image"):
        load_image_archive(node, io.BytesIO(b"x"))


def test_image_id():
    node = FakeNode("n", responses={"crictl": (b'{"status": {"id": "sha256:abc"}}', False)})
    assert image_id(node, "img") == "sha256:abc"
    assert node.calls[0][0] == ["crictl", "inspecti", "img"]


def test_image_id_missing_status_is_empty():
    node = FakeNode("n", responses={"crictl": (b"{}", False)})
    assert image_id(node, "img") == ""