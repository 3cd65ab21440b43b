"""Nodes backed by docker containers, and commands run inside them."""

from __future__ import annotations

from typing import Any

from kindnodes.docker_images import NODE_ROLE_LABEL_KEY
from kindnodes.nodes import Cmd, Node, RunError, output_lines
from kindnodes.nodes import command as host_command


class DockerNodeCmd(Cmd):
    """A command executed inside a node container via ``docker exec``."""

    def __init__(self, name_or_id: str, command: str, *args: str) -> None:
        super().__init__()
        self.name_or_id = name_or_id
        self.command = command
        self.args = list(args)

    def build_args(self) -> list[str]:
        """Return the arguments passed to the docker command."""
        # privileged so that commands can remount and the like
        args = ["exec", "--privileged"]
        if self.stdin is not None:
            args.append("-i")
        for entry in self.env:
            args += ["-e", entry]
        args += [self.name_or_id, self.command, *self.args]
        return args

    def run(self) -> None:
        cmd = host_command("docker", *self.build_args())
        if self.stdin is not None:
            cmd.set_stdin(self.stdin)
        if self.stderr is not None:
            cmd.set_stderr(self.stderr)
        if self.stdout is not None:
            cmd.set_stdout(self.stdout)
        cmd.run()


class DockerNode(Node):
    """A cluster node running as a docker container."""

    def role(self) -> str:
        label_format = '{{ index .Config.Labels "' + NODE_ROLE_LABEL_KEY + '"}}'
        try:
            lines = output_lines(
                host_command("docker", "inspect", "--format", label_format, self.name)
            )
        except RunError as exc:
            raise RuntimeError(f"failed to get role for node: {exc}") from exc
        if len(lines) != 1:
            raise ValueError(f"failed to get role for node: output lines {len(lines)} != 1")
        return lines[0]

    def ip(self) -> tuple[str, str]:
        try:
            lines = output_lines(
                host_command(
                    "docker",
                    "inspect",
                    "-f",
                    "{{range .NetworkSettings.Networks}}"
                    "{{.IPAddress}},{{.GlobalIPv6Address}}{{end}}",
                    self.name,
                )
            )
        except RunError as exc:
            raise RuntimeError(f"failed to get container details: {exc}") from exc
        if len(lines) != 1:
            raise ValueError(f"file should only be one line, got {len(lines)} lines")
        ips = lines[0].split(",")
        if len(ips) != 2:
            raise ValueError(
                f"container addresses should have 2 values, got {len(ips)} values"
            )
        return ips[0], ips[1]

    def command(self, command: str, *args: str) -> DockerNodeCmd:
        return DockerNodeCmd(self.name, command, *args)

    def serial_logs(self, writer: Any) -> None:
        host_command("docker", "logs", self.name).set_stdout(writer).set_stderr(writer).run()