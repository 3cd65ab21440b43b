"""Planning and creation of the docker containers that make up a cluster."""

from __future__ import annotations

import copy
import os
from collections.abc import Callable

from kindnodes.common import (
    API_SERVER_INTERNAL_PORT,
    NO_PROXY,
    get_proxy_envs,
    make_node_namer,
    port_or_get_free_port,
)
from kindnodes.docker_images import (
    CLUSTER_LABEL_KEY,
    NODE_ROLE_LABEL_KEY,
    mount_dev_mapper,
    userns_remap,
)
from kindnodes.nodes import RunError, command, output_lines
from kindnodes.types import (
    CONTROL_PLANE_ROLE,
    EXTERNAL_LOAD_BALANCER_ROLE,
    WORKER_ROLE,
    ClusterConfig,
    IPFamily,
    Mount,
    MountPropagation,
    NodeConfig,
    PortMapping,
    PortMappingProtocol,
)


def _join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def plan_creation(
    cfg: ClusterConfig, network_name: str, loadbalancer_image: str
) -> list[Callable[[], None]]:
    """Return callables that each create one of the cluster's containers."""
    # all names are needed up front for NO_PROXY
    namer = make_node_namer(cfg.name)
    names = [namer(str(node.role)) for node in cfg.nodes]
    have_loadbalancer = cluster_has_implicit_load_balancer(cfg)
    if have_loadbalancer:
        names.append(namer(EXTERNAL_LOAD_BALANCER_ROLE))

    generic_args = common_args(cfg.name, cfg, network_name, names)

    api_server_port = cfg.networking.api_server_port
    api_server_address = cfg.networking.api_server_address
    funcs: list[Callable[[], None]] = []

    if have_loadbalancer:
        # only the load balancer publishes the configured endpoint
        api_server_port = 0
        api_server_address = "127.0.0.1"
        if cfg.networking.ip_family == IPFamily.IPV6:
            api_server_address = "::1"
        lb_name = names[-1]

        def create_loadbalancer() -> None:
            create_container(
                run_args_for_load_balancer(cfg, lb_name, generic_args, loadbalancer_image)
            )

        funcs.append(create_loadbalancer)

    ip_family = cfg.networking.ip_family
    for original, name in zip(cfg.nodes, names):
        node = copy.deepcopy(original)
        for mount in node.extra_mounts:
            if not os.path.isabs(mount.host_path):
                try:
                    mount.host_path = os.path.abspath(mount.host_path)
                except (OSError, ValueError) as exc:
                    raise ValueError(
                        "unable to resolve absolute path for hostPath: "
                        f'"{mount.host_path}": {exc}'
                    ) from exc

        role = str(node.role)
        if role == CONTROL_PLANE_ROLE:

            def create_control_plane(
                node: NodeConfig = node,
                name: str = name,
                address: str = api_server_address,
                port: int = api_server_port,
            ) -> None:
                node.extra_port_mappings.append(
                    PortMapping(
                        listen_address=address,
                        host_port=port,
                        container_port=API_SERVER_INTERNAL_PORT,
                    )
                )
                create_container(run_args_for_node(node, ip_family, name, generic_args))

            funcs.append(create_control_plane)
        elif role == WORKER_ROLE:

            def create_worker(node: NodeConfig = node, name: str = name) -> None:
                create_container(run_args_for_node(node, ip_family, name, generic_args))

            funcs.append(create_worker)
        else:
            raise ValueError(f'unknown node role: "{role}"')
    return funcs


def create_container(args: list[str]) -> None:
    """Run ``docker`` with args to create a container."""
    try:
        command("docker", *args).run()
    except RunError as exc:
        raise RuntimeError(f"docker run error: {exc}") from exc


def cluster_is_ipv6(cfg: ClusterConfig) -> bool:
    """Return whether the cluster uses IPv6, alone or in dual stack."""
    return cfg.networking.ip_family in (IPFamily.IPV6, IPFamily.DUAL_STACK)


def cluster_has_implicit_load_balancer(cfg: ClusterConfig) -> bool:
    """Return whether the cluster has more than one control plane node."""
    control_planes = sum(1 for node in cfg.nodes if str(node.role) == CONTROL_PLANE_ROLE)
    return control_planes > 1


def common_args(
    cluster: str, cfg: ClusterConfig, network_name: str, node_names: list[str]
) -> list[str]:
    """Return the ``docker run`` arguments shared by every container."""
    args = [
        "--detach",
        "--tty",
        "--label",
        f"{CLUSTER_LABEL_KEY}={cluster}",
        "--net",
        network_name,
        # restart only on host or daemon reboot, as far as docker allows
        "--restart=on-failure:1",
        # our entrypoint must be PID 1
        "--init=false",
    ]
    if cluster_is_ipv6(cfg):
        args += [
            "--sysctl=net.ipv6.conf.all.disable_ipv6=0",
            "--sysctl=net.ipv6.conf.all.forwarding=1",
        ]
    try:
        proxy_env = get_proxy_env(cfg, network_name, node_names)
    except Exception as exc:
        raise RuntimeError(f"proxy setup error: {exc}") from exc
    for key, value in proxy_env.items():
        args += ["-e", f"{key}={value}"]
    if userns_remap():
        args.append("--userns=host")
    if mount_dev_mapper():
        args += ["--volume", "/dev/mapper:/dev/mapper"]
    return args


def run_args_for_node(
    node: NodeConfig, cluster_ip_family: IPFamily | str, name: str, args: list[str]
) -> list[str]:
    """Return the full ``docker run`` arguments for a cluster node."""
    result = [
        "run",
        "--hostname",
        name,
        "--name",
        name,
        "--label",
        f"{NODE_ROLE_LABEL_KEY}={node.role}",
        "--privileged",
        "--security-opt",
        "seccomp=unconfined",
        "--security-opt",
        "apparmor=unconfined",
        "--tmpfs",
        "/tmp",
        "--tmpfs",
        "/run",
        "--volume",
        "/var",
        "--volume",
        "/lib/modules:/lib/modules:ro",
        "-e",
        "KIND_EXPERIMENTAL_CONTAINERD_SNAPSHOTTER",
        "--device",
        "/dev/fuse",
        *args,
    ]
    result += generate_mount_bindings(*node.extra_mounts)
    result += generate_port_mappings(cluster_ip_family, *node.extra_port_mappings)
    if str(node.role) == CONTROL_PLANE_ROLE:
        result += ["-e", "KUBECONFIG=/etc/kubernetes/admin.conf"]
    result.append(node.image)
    return result


def run_args_for_load_balancer(
    cfg: ClusterConfig, name: str, args: list[str], image: str
) -> list[str]:
    """Return the full ``docker run`` arguments for the external load balancer."""
    result = [
        "run",
        "--hostname",
        name,
        "--name",
        name,
        "--label",
        f"{NODE_ROLE_LABEL_KEY}={EXTERNAL_LOAD_BALANCER_ROLE}",
        *args,
    ]
    result += generate_port_mappings(
        cfg.networking.ip_family,
        PortMapping(
            listen_address=cfg.networking.api_server_address,
            host_port=cfg.networking.api_server_port,
            container_port=API_SERVER_INTERNAL_PORT,
        ),
    )
    result.append(image)
    return result


def get_proxy_env(
    cfg: ClusterConfig, network_name: str, node_names: list[str]
) -> dict[str, str]:
    """Return proxy variables, extending NO_PROXY with network subnets and node names."""
    envs = get_proxy_envs(cfg)
    if envs:
        no_proxy_list = [
            *get_subnets(network_name),
            envs[NO_PROXY],
            *node_names,
            # best effort for in-cluster service names
            ".svc",
            ".svc.cluster",
            ".svc.cluster.local",
        ]
        joined = ",".join(no_proxy_list)
        envs[NO_PROXY] = joined
        envs[NO_PROXY.lower()] = joined
    return envs


def get_subnets(network_name: str) -> list[str]:
    """Return the subnets of the named docker network."""
    fmt = '{{range (index (index . "IPAM") "Config")}}{{index . "Subnet"}} {{end}}'
    try:
        lines = output_lines(command("docker", "network", "inspect", "-f", fmt, network_name))
    except RunError as exc:
        raise RuntimeError(f"failed to get subnets: {exc}") from exc
    if not lines:
        raise RuntimeError("failed to get subnets: no output")
    return lines[0].strip().split(" ")


def generate_mount_bindings(*args: Mount) -> list[str]:
    """Convert mounts to ``--volume=host:container[:options]`` arguments."""
    result = []
    for mount in args:
        bind = f"{mount.host_path}:{mount.container_path}"
        attrs = []
        if mount.readonly:
            attrs.append("ro")
        if mount.selinux_relabel:
            attrs.append("Z")
        propagation = str(mount.propagation)
        if propagation == MountPropagation.BIDIRECTIONAL.value:
            attrs.append("rshared")
        elif propagation == MountPropagation.HOST_TO_CONTAINER.value:
            attrs.append("rslave")
        if attrs:
            bind = f"{bind}:{','.join(attrs)}"
        result.append(f"--volume={bind}")
    return result


def generate_port_mappings(
    cluster_ip_family: IPFamily | str, *args: PortMapping
) -> list[str]:
    """Convert port mappings to ``--publish=`` arguments."""
    result = []
    for mapping in args:
        listen_address = mapping.listen_address
        if not listen_address:
            if cluster_ip_family == IPFamily.IPV4:
                listen_address = "0.0.0.0"
            elif cluster_ip_family == IPFamily.IPV6:
                listen_address = "::"
            else:
                raise ValueError(f"unknown cluster IP family: {cluster_ip_family}")
        raw_protocol = str(mapping.protocol) or PortMappingProtocol.TCP.value
        try:
            protocol = PortMappingProtocol(raw_protocol)
        except ValueError:
            raise ValueError(f"unknown port mapping protocol: {raw_protocol}") from None
        try:
            host_port = port_or_get_free_port(mapping.host_port, listen_address)
        except OSError as exc:
            raise RuntimeError(
                f"failed to get random host port for port mapping: {exc}"
            ) from exc
        binding = _join_host_port(listen_address, host_port)
        result.append(f"--publish={binding}:{mapping.container_port}/{protocol.value}")
    return result