"""Cluster configuration model and the provider interface."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from kindnodes.nodes import Node

DEFAULT_CLUSTER_NAME = "kind"
CONTROL_PLANE_ROLE = "control-plane"
WORKER_ROLE = "worker"
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"


class _StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value


class IPFamily(_StrEnum):
    """IP family of the cluster network."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"
    DUAL_STACK = "dual"


class NodeRole(_StrEnum):
    """Role of a configured cluster node."""

    CONTROL_PLANE = CONTROL_PLANE_ROLE
    WORKER = WORKER_ROLE


class MountPropagation(_StrEnum):
    """Mount propagation mode for an extra mount."""

    NONE = "None"
    HOST_TO_CONTAINER = "HostToContainer"
    BIDIRECTIONAL = "Bidirectional"


class PortMappingProtocol(_StrEnum):
    """Transport protocol of a port mapping."""

    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"


@dataclass
class Mount:
    """A host path mounted into a node container."""

    host_path: str = ""
    container_path: str = ""
    readonly: bool = False
    selinux_relabel: bool = False
    propagation: MountPropagation | str = MountPropagation.NONE


@dataclass
class PortMapping:
    """A container port published on the host."""

    container_port: int = 0
    host_port: int = 0
    listen_address: str = ""
    protocol: PortMappingProtocol | str = ""


@dataclass
class NodeConfig:
    """Configuration of one cluster node."""

    role: NodeRole | str = NodeRole.CONTROL_PLANE
    image: str = ""
    extra_mounts: list[Mount] = field(default_factory=list)
    extra_port_mappings: list[PortMapping] = field(default_factory=list)


@dataclass
class Networking:
    """Cluster-wide network settings."""

    ip_family: IPFamily | str = IPFamily.IPV4
    api_server_port: int = 0
    api_server_address: str = ""
    pod_subnet: str = ""
    service_subnet: str = ""


@dataclass
class ClusterConfig:
    """Configuration of a whole cluster."""

    name: str = DEFAULT_CLUSTER_NAME
    nodes: list[NodeConfig] = field(default_factory=list)
    networking: Networking = field(default_factory=Networking)


@dataclass
class ProviderInfo:
    """Capabilities reported by a node provider."""

    rootless: bool = False
    cgroup2: bool = False
    supports_memory_limit: bool = False
    supports_pids_limit: bool = False
    supports_cpu_shares: bool = False


class Provider(abc.ABC):
    """A provider of cluster node infrastructure.

    ``status`` objects passed to :meth:`provision` expose ``start(message)``
    and ``end(success)``.
    """

    @abc.abstractmethod
    def provision(self, cfg: ClusterConfig, status: Any, loadbalancer_image: str) -> None:
        """Create and start the nodes for the given cluster config."""

    @abc.abstractmethod
    def list_clusters(self) -> list[str]:
        """Return the names of clusters that currently have resources."""

    @abc.abstractmethod
    def list_nodes(self, cluster: str) -> list[Node]:
        """Return the nodes of the named cluster."""

    @abc.abstractmethod
    def delete_nodes(self, nodes: list[Node]) -> None:
        """Delete the given nodes."""

    @abc.abstractmethod
    def get_api_server_endpoint(self, cluster: str) -> str:
        """Return the host endpoint of the cluster's API server."""

    @abc.abstractmethod
    def get_api_server_internal_endpoint(self, cluster: str) -> str:
        """Return the in-network endpoint of the cluster's API server."""

    @abc.abstractmethod
    def collect_logs(self, directory: str, nodes: list[Node]) -> None:
        """Populate directory with logs and debug files."""

    @abc.abstractmethod
    def info(self) -> ProviderInfo:
        """Return the provider's capabilities."""