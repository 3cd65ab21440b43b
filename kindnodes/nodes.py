"""Cluster nodes and the commands run against them or on the host."""

from __future__ import annotations

import abc
import io
import os
import subprocess
from typing import Any, BinaryIO


class RunError(Exception):
    """A command failed to start or exited unsuccessfully."""

    def __init__(self, command: list[str], output: bytes = b"", returncode: int | None = None):
        self.command = list(command)
        self.output = output
        self.returncode = returncode
        if returncode is None:
            detail = "could not be started"
        else:
            detail = f"failed with exit code {returncode}"
        super().__init__(f"command {' '.join(self.command)!r} {detail}")


def _write(writer: Any, data: bytes) -> None:
    if not data:
        return
    try:
        writer.write(data)
    except TypeError:
        writer.write(data.decode(errors="replace"))


class Cmd(abc.ABC):
    """A command that can be configured fluently and then run."""

    def __init__(self) -> None:
        self.env: list[str] = []
        self.stdin: Any = None
        self.stdout: Any = None
        self.stderr: Any = None

    @abc.abstractmethod
    def run(self) -> None:
        """Run the command, raising RunError on failure."""

    def set_env(self, *args: str) -> Cmd:
        """Replace the environment with KEY=VALUE entries."""
        self.env = list(args)
        return self

    def set_stdin(self, reader: Any) -> Cmd:
        self.stdin = reader
        return self

    def set_stdout(self, writer: Any) -> Cmd:
        self.stdout = writer
        return self

    def set_stderr(self, writer: Any) -> Cmd:
        self.stderr = writer
        return self


class LocalCmd(Cmd):
    """A command executed on the host."""

    def __init__(self, name: str, *args: str) -> None:
        super().__init__()
        self.name = name
        self.args = list(args)

    @property
    def argv(self) -> list[str]:
        return [self.name, *self.args]

    def run(self) -> None:
        kwargs: dict[str, Any] = {}
        if self.stdin is not None:
            data = self.stdin.read()
            kwargs["input"] = data.encode() if isinstance(data, str) else data
        else:
            kwargs["stdin"] = subprocess.DEVNULL
        if self.env:
            env = {}
            for entry in self.env:
                key, _, value = entry.partition("=")
                env[key] = value
            kwargs["env"] = env
        try:
            proc = subprocess.run(self.argv, capture_output=True, check=False, **kwargs)
        except OSError as exc:
            raise RunError(self.argv) from exc
        if self.stdout is not None:
            _write(self.stdout, proc.stdout)
        if self.stderr is not None:
            _write(self.stderr, proc.stderr)
        if proc.returncode != 0:
            raise RunError(self.argv, proc.stdout + proc.stderr, proc.returncode)


def command(name: str, *args: str) -> LocalCmd:
    """Return a host command for name with args."""
    return LocalCmd(name, *args)


def output(cmd: Cmd) -> bytes:
    """Run cmd and return its standard output."""
    buffer: BinaryIO = io.BytesIO()
    cmd.set_stdout(buffer).run()
    return buffer.getvalue()


def output_lines(cmd: Cmd) -> list[str]:
    """Run cmd and return its standard output split into lines."""
    lines = output(cmd).decode(errors="replace").split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


class Node(abc.ABC):
    """A cluster node, identified by its name."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return type(self) is type(other) and self.name == other.name

    def __hash__(self) -> int:
        return hash((type(self), self.name))

    @abc.abstractmethod
    def role(self) -> str:
        """Return the node's role."""

    @abc.abstractmethod
    def ip(self) -> tuple[str, str]:
        """Return the node's (ipv4, ipv6) addresses."""

    @abc.abstractmethod
    def command(self, command: str, *args: str) -> Cmd:
        """Return a command that runs inside the node."""

    @abc.abstractmethod
    def serial_logs(self, writer: Any) -> None:
        """Write the node container's logs to writer."""


__all__ = [
    "Cmd",
    "LocalCmd",
    "Node",
    "RunError",
    "command",
    "output",
    "output_lines",
    "os",
]