import io
import sys

import pytest

from kindnodes.nodes import (
    LocalCmd,
    Node,
    RunError,
    command,
    output,
    output_lines,
)


def py(code):
    return command(sys.executable, "-c", code)


def test_output_lines_splits_stdout():
    assert output_lines(py("print('a'); print('b')")) == ["a", "b"]


def test_output_lines_empty_output():
    assert output_lines(py("pass")) == []


def test_output_returns_bytes():
    assert output(py("import sys; sys.stdout.write('xy')")) == b"xy"


def test_failed_command_raises_with_output():
    with pytest.raises(RunError) as info:
        py("import sys; sys.stderr.write('boom'); sys.exit(3)").run()
    assert info.value.returncode == 3
    assert b"boom" in info.value.output


def test_missing_executable_raises_run_error():
    with pytest.raises(RunError) as info:
        command("definitely-not-a-real-binary-xyz").run()
    assert info.value.returncode is None


def test_stdin_is_forwarded():
    cmd = py("import sys; sys.stdout.write(sys.stdin.read())")
    assert output(cmd.set_stdin(io.StringIO("hello"))) == b"hello"
    cmd = py("import sys; sys.stdout.write(sys.stdin.read())")
    assert output(cmd.set_stdin(io.BytesIO(b"raw"))) == b"raw"


def test_stderr_goes_to_writer():
    err = io.BytesIO()
    py("import sys; sys.stderr.write('warn')").set_stderr(err).run()
    assert err.getvalue() == b"warn"


def test_set_env_replaces_environment():
    cmd = py("import os; print(os.environ.get('KIND_TEST_VAR'))")
    cmd.set_env("KIND_TEST_VAR=value")
    assert output_lines(cmd) == ["value"]


def test_setters_chain_and_return_same_command():
    cmd = LocalCmd("true")
    out = io.BytesIO()
    assert cmd.set_stdout(out).set_stderr(out) is cmd
    assert cmd.stdout is out and cmd.stderr is out


def test_node_is_abstract():
    with pytest.raises(TypeError):
        Node("n")


class _FakeNode(Node):
    def role(self):
        return "worker"

    def ip(self):
        return ("", "")

    def command(self, command, *args):
        return LocalCmd(command, *args)

    def serial_logs(self, writer):
        writer.write(b"")


def test_node_name_and_equality():
    a = _FakeNode("kind-worker")
    local = command("echo", "x")
    assert str(a) == "kind-worker"
    assert a == _FakeNode("kind-worker")
    assert len({a, _FakeNode("kind-worker")}) == 1
    assert local.argv == ["echo", "x"]
    assert a.command("echo", "x").argv == local.argv