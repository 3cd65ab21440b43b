# kindnodes

A library for working with local Kubernetes clusters whose "nodes" are
Docker containers. Everything that touches the container runtime does so
by running the `docker` command line tool. The library can set up the
shared Docker network, plan and create node containers, list clusters and
their nodes, delete nodes, find API server endpoints, collect logs and
report what the Docker host supports.

## Installation

```
pip install .
```

A working `docker` command must be on `PATH` for anything that talks to
the container runtime. The package has no third-party dependencies.

## Modules

- `kindnodes.cluster`
  - `ClusterProvider(provider=None)` is the entry point. With no provider,
    it uses `detect_node_provider()`, and falls back to a `DockerProvider`
    if nothing is detected. Its methods are `list()` (cluster names),
    `list_nodes(name)` (all nodes; an empty name means the default cluster
    `"kind"`) and `list_internal_nodes(name)` (control planes and workers
    only).
  - `detect_node_provider()` returns a `DockerProvider` when `docker -v`
    reports a Docker version. Otherwise it raises
    `NoNodeProviderDetectedError`.
  - `default_name(name)` returns the default cluster name for an empty
    name.
- `kindnodes.docker_provider.DockerProvider` implements the
  `kindnodes.types.Provider` interface:
  - `provision(cfg, status, loadbalancer_image)` pulls the node images,
    ensures the `kind` network and creates all containers concurrently.
    The `KIND_EXPERIMENTAL_DOCKER_NETWORK` environment variable overrides
    the network name. `status` is any object with `start(message)` and
    `end(success)`.
  - `list_clusters()`, `list_nodes(cluster)` and `delete_nodes(nodes)`.
  - `get_api_server_endpoint(cluster)` returns the endpoint as seen from
    the host. `get_api_server_internal_endpoint(cluster)` returns it as
    seen inside the node network, on port 6443.
  - `collect_logs(directory, nodes)` writes `docker info`, and for each
    node its inspect output, serial log, journal, kubelet and containerd
    logs and Kubernetes version.
  - `info()` returns a cached `ProviderInfo`. `parse_docker_info(data)`
    builds one from `docker info --format '{{json .}}'` output.
- `kindnodes.docker_node`: `DockerNode` is a node backed by a container.
  `DockerNodeCmd` runs a command inside the container via `docker exec`.
- `kindnodes.docker_network`: `ensure_network(name)` creates the bridge
  network if needed. It tries IPv6 subnets derived from the name with
  `generate_ula_subnet_from_name(name, attempt)` and removes duplicate
  networks of the same name.
- `kindnodes.docker_provision`: `plan_creation(cfg, network_name,
  loadbalancer_image)` returns one callable per container to create. A
  load balancer is added when there is more than one control plane. The
  module also builds the `docker run` arguments: `common_args`,
  `run_args_for_node`, `run_args_for_load_balancer`,
  `generate_mount_bindings` and `generate_port_mappings`.
- `kindnodes.docker_images`: `ensure_node_images`, `pull_if_not_present`,
  `pull` (retries with growing pauses), `sanitize_image`, and host checks
  `is_available`, `userns_remap` and `mount_dev_mapper`.
- `kindnodes.nodeutils`: selects nodes by role with
  `select_nodes_by_role`, `internal_nodes`, `external_load_balancer_node`,
  `api_server_endpoint_node`, `control_plane_nodes`,
  `bootstrap_control_plane_node` and `secondary_control_plane_nodes`. It
  raises `NodeSelectionError` when the node list has the wrong shape. It
  also has node helpers: `kube_version`, `write_file`,
  `copy_node_to_node`, `load_image_archive` and `image_id`.
- `kindnodes.common`: `make_node_namer`, `get_proxy_envs`,
  `port_or_get_free_port`, `get_free_port`, `required_node_images`,
  `collect_logs`, `file_on_host` and `run_concurrently`.
- `kindnodes.nodes`: the abstract `Node` and `Cmd`, and the host command
  `LocalCmd`. Also `command`, `output`, `output_lines`, and `RunError`,
  which is raised when a command fails and carries its output.
- `kindnodes.types`: the configuration dataclasses `ClusterConfig`,
  `NodeConfig`, `Networking`, `Mount` and `PortMapping`, the enums they
  use, `ProviderInfo` and the abstract `Provider`.

## Example

```python
from kindnodes.cluster import ClusterProvider

provider = ClusterProvider()
for name in provider.list():
    print(name)
    for node in provider.list_internal_nodes(name):
        print("  ", node, node.role())
```

Node names follow the cluster name and the node's role:

```python
from kindnodes.common import make_node_namer

namer = make_node_namer("kind")
namer("control-plane")  # "kind-control-plane"
namer("worker")         # "kind-worker"
namer("worker")         # "kind-worker2"
```

## What it does not do

- There is no command line tool. The package is a library only.
- Provisioning stops once the node containers exist. The package does not
  bootstrap Kubernetes on the nodes.
- It does not write or merge kubeconfig files.
- It does not configure the load balancer. The caller supplies its image
  to `provision`.
- Docker is the only supported container runtime.

## Tests

```
pip install .[test]
pytest
```