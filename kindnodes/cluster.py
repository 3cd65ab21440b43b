"""Public entry point for cluster operations."""

from __future__ import annotations

from kindnodes.docker_images import is_available as docker_is_available
from kindnodes.docker_provider import DockerProvider
from kindnodes.nodes import Node
from kindnodes.nodeutils import internal_nodes
from kindnodes.types import DEFAULT_CLUSTER_NAME, Provider

DEFAULT_NAME = DEFAULT_CLUSTER_NAME


class NoNodeProviderDetectedError(Exception):
    """No supported node provider is available on the host."""

    def __init__(self, message: str = "failed to detect any supported node provider"):
        super().__init__(message)


def default_name(name: str) -> str:
    """Return name, or the default cluster name when name is empty."""
    return name or DEFAULT_NAME


def detect_node_provider() -> Provider:
    """Return an available node provider, without falling back to a default."""
    if docker_is_available():
        return DockerProvider()
    raise NoNodeProviderDetectedError()


class ClusterProvider:
    """Performs cluster operations through a node provider."""

    def __init__(self, provider: Provider | None = None) -> None:
        if provider is None:
            try:
                provider = detect_node_provider()
            except NoNodeProviderDetectedError:
                # keep working as before when nothing was detected
                provider = DockerProvider()
        self.provider = provider

    def list(self) -> list[str]:
        """Return the clusters for which nodes exist."""
        return self.provider.list_clusters()

    def list_nodes(self, name: str) -> list[Node]:
        """Return the nodes of the named cluster."""
        return self.provider.list_nodes(default_name(name))

    def list_internal_nodes(self, name: str) -> list[Node]:
        """Return the cluster's Kubernetes nodes, leaving out external ones."""
        return internal_nodes(self.provider.list_nodes(name))