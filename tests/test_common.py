import sys

import pytest

from kindnodes.common import (
    AggregateError,
    collect_logs,
    file_on_host,
    get_free_port,
    get_proxy_envs,
    make_node_namer,
    port_or_get_free_port,
    required_node_images,
    run_concurrently,
)
from kindnodes.nodes import LocalCmd, Node
from kindnodes.types import ClusterConfig, NodeConfig


def test_port_or_get_free_port_keeps_valid_port():
    assert port_or_get_free_port(80, "localhost") == 80


def test_port_or_get_free_port_picks_port_when_unset():
    port = port_or_get_free_port(0, "localhost")
    assert 0 < port <= 65535


def test_port_or_get_free_port_minus_one_means_zero():
    assert port_or_get_free_port(-1, "localhost") == 0


@pytest.mark.parametrize("addr", ["localhost", "127.0.0.1"])
def test_get_free_port_valid(addr):
    port = get_free_port(addr)
    assert 0 < port <= 65535


@pytest.mark.parametrize("addr", ["88.88.88.0", "2112:beaf:beaf:2:3"])
def test_get_free_port_invalid(addr):
    with pytest.raises(OSError):
        get_free_port(addr)


def _cluster_with_images(*images):
    return ClusterConfig(nodes=[NodeConfig(image=i) for i in images])


def test_required_node_images_different():
    assert required_node_images(_cluster_with_images("node1", "node2")) == {"node1", "node2"}


def test_required_node_images_same():
    assert required_node_images(_cluster_with_images("node1", "node1")) == {"node1"}


@pytest.mark.parametrize(
    "cluster_name,roles,want",
    [
        ("kind", ["control-plane"], ["kind-control-plane"]),
        (
            "kind-test",
            ["control-plane", "worker", "worker"],
            ["kind-test-control-plane", "kind-test-worker", "kind-test-worker2"],
        ),
        (
            "ab1",
            [
                "control-plane",
                "control-plane",
                "control-plane",
                "external-load-balancer",
                "worker",
                "worker",
                "worker",
            ],
            [
                "ab1-control-plane",
                "ab1-control-plane2",
                "ab1-control-plane3",
                "ab1-external-load-balancer",
                "ab1-worker",
                "ab1-worker2",
                "ab1-worker3",
            ],
        ),
    ],
)
def test_make_node_namer(cluster_name, roles, want):
    namer = make_node_namer(cluster_name)
    assert [namer(role) for role in roles] == want


def _proxy_cluster():
    cfg = ClusterConfig()
    cfg.networking.service_subnet = "10.0.0.0/24"
    cfg.networking.pod_subnet = "12.0.0.0/24"
    return cfg


def test_get_proxy_envs_default_env_returns_dict(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY", "http_proxy", "https_proxy", "no_proxy"):
        monkeypatch.delenv(name, raising=False)
    assert get_proxy_envs(_proxy_cluster()) == {}


def test_get_proxy_envs_reads_os_environ(monkeypatch):
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY", "http_proxy", "https_proxy", "no_proxy"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("http_proxy", "5.5.5.5")
    envs = get_proxy_envs(_proxy_cluster())
    assert envs["HTTP_PROXY"] == "5.5.5.5"
    assert envs["NO_PROXY"] == "10.0.0.0/24,12.0.0.0/24"


@pytest.mark.parametrize(
    "env,want",
    [
        ({}, {}),
        (
            {"HTTP_PROXY": "5.5.5.5"},
            {
                "HTTP_PROXY": "5.5.5.5",
                "http_proxy": "5.5.5.5",
                "NO_PROXY": "10.0.0.0/24,12.0.0.0/24",
                "no_proxy": "10.0.0.0/24,12.0.0.0/24",
            },
        ),
        (
            {"HTTPS_PROXY": "5.5.5.5"},
            {
                "HTTPS_PROXY": "5.5.5.5",
                "https_proxy": "5.5.5.5",
                "NO_PROXY": "10.0.0.0/24,12.0.0.0/24",
                "no_proxy": "10.0.0.0/24,12.0.0.0/24",
            },
        ),
        (
            {"HTTPS_PROXY": "5.5.5.5", "NO_PROXY": "8.8.8.8"},
            {
                "HTTPS_PROXY": "5.5.5.5",
                "https_proxy": "5.5.5.5",
                "NO_PROXY": "8.8.8.8,10.0.0.0/24,12.0.0.0/24",
                "no_proxy": "8.8.8.8,10.0.0.0/24,12.0.0.0/24",
            },
        ),
    ],
)
def test_get_proxy_envs_cases(env, want):
    assert get_proxy_envs(_proxy_cluster(), lambda e: env.get(e, "")) == want


def test_file_on_host_creates_parents(tmp_path):
    target = tmp_path / "a" / "b" / "file.txt"
    with file_on_host(target) as f:
        f.write(b"data")
    assert target.read_bytes() == b"data"


class EchoNode(Node):
    """A node whose commands print their own argument list."""

    def role(self):
        return "worker"

    def ip(self):
        return ("", "")

    def command(self, command, *args):
        return LocalCmd(
            sys.executable,
            "-c",
            "import sys; print(' '.join(sys.argv[1:]))",
            command,
            *args,
        )

    def serial_logs(self, writer):
        writer.write(b"")


def test_collect_logs_writes_files(tmp_path):
    out = tmp_path / "logs"
    collect_logs(EchoNode("kind-worker"), out)
    assert (out / "kubernetes-version.txt").read_text().strip() == "cat /kind/version"
    assert (out / "journal.log").read_text().strip() == "journalctl --no-pager"
    assert "kubelet.service" in (out / "kubelet.log").read_text()
    assert "containerd.service" in (out / "containerd.log").read_text()


def test_run_concurrently_single_error_is_raised():
    def fail():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        run_concurrently([fail, lambda: None])


def test_run_concurrently_aggregates_errors():
    def fail_a():
        raise ValueError("a")

    def fail_b():
        raise KeyError("b")

    with pytest.raises(AggregateError) as info:
        run_concurrently([fail_a, fail_b])
    assert len(info.value.errors) == 2