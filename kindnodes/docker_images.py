"""Docker node image handling and host docker feature checks."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from kindnodes.common import required_node_images
from kindnodes.nodes import RunError, command, output_lines
from kindnodes.types import ClusterConfig

CLUSTER_LABEL_KEY = "io.x-k8s.kind.cluster"
NODE_ROLE_LABEL_KEY = "io.x-k8s.kind.role"

_log = logging.getLogger(__name__)


def ensure_node_images(cfg: ClusterConfig, status: Any) -> None:
    """Make sure every node image the config uses is present locally."""
    for required in sorted(required_node_images(cfg)):
        friendly, image = sanitize_image(required)
        status.start(f"Ensuring node image ({friendly}) 🖼")
        try:
            pull_if_not_present(image, 4)
        except Exception:
            status.end(False)
            raise


def pull_if_not_present(image: str, retries: int) -> bool:
    """Pull image unless present; return whether a pull was attempted."""
    try:
        command("docker", "inspect", "--type=image", image).run()
    except RunError:
        pull(image, retries)
        return True
    _log.debug("Image: %s present locally", image)
    return False


def pull(image: str, retries: int) -> None:
    """Pull image, retrying up to retries times with growing pauses."""
    _log.debug("Pulling image: %s ...", image)
    try:
        command("docker", "pull", image).run()
        return
    except RunError as exc:
        error: RunError = exc
    for attempt in range(retries):
        time.sleep(attempt + 1)
        _log.debug("Trying again to pull image: %r ... %s", image, error)
        try:
            command("docker", "pull", image).run()
            return
        except RunError as exc:
            error = exc
    raise RuntimeError(f'failed to pull image "{image}": {error}') from error


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a human readable image name and the pullable image name."""
    if "@sha256:" in image:
        return image.split("@sha256:")[0], image
    return image, image


def is_available() -> bool:
    """Return whether the docker command is available."""
    try:
        lines = output_lines(command("docker", "-v"))
    except RunError:
        return False
    return len(lines) == 1 and lines[0].startswith("Docker version")


def userns_remap() -> bool:
    """Return whether dockerd has user namespace remapping enabled."""
    try:
        lines = output_lines(
            command("docker", "info", "--format", "'{{json .SecurityOptions}}'")
        )
    except RunError:
        return False
    return bool(lines) and "name=userns" in lines[0]


def mount_dev_mapper() -> bool:
    """Return whether /dev/mapper must be mounted (Btrfs, ZFS, XFS and similar)."""
    try:
        lines = output_lines(command("docker", "info", "-f", "{{.Driver}}"))
    except RunError:
        return False
    if len(lines) != 1:
        return False
    storage = lines[0].strip().lower()
    if storage in ("btrfs", "zfs", "devicemapper"):
        return True

    try:
        lines = output_lines(command("docker", "info", "-f", "{{json .DriverStatus }}"))
    except RunError:
        return False
    if len(lines) != 1:
        return False
    try:
        status = json.loads(lines[0])
    except ValueError:
        return False
    if not isinstance(status, list):
        return False
    for item in status:
        if isinstance(item, list) and len(item) >= 2 and item[0] == "Backing Filesystem":
            storage = str(item[1]).lower()
            break
    return storage in ("btrfs", "zfs", "xfs")