"""Manage local Kubernetes clusters whose nodes run as Docker containers."""

__version__ = "0.1.0"
__all__ = [
    "cluster",
    "common",
    "docker_images",
    "docker_network",
    "docker_node",
    "docker_provider",
    "docker_provision",
    "nodes",
    "nodeutils",
    "types",
]