import re
import time
from unittest import mock

import pytest

from rsyncb.config import SessionConfig
from rsyncb.host import RemoteHost
from rsyncb.session import (
    CommandTimeout,
    ConnectionFailure,
    NoActiveSession,
    ProcessError,
    run_remote,
    Session,
)
from rsyncb.session.commands import (
    CommandExecutor,
    new_sentinel,
    parse_cd,
    quote_path,
    resolve_directory,
    sentinel_command,
)
from rsyncb.session.events import Event


def test_sentinel_format():
    sentinel = new_sentinel()

    assert re.fullmatch(r"__COMMAND_COMPLETED_\d+__", sentinel)


def test_sentinels_strictly_increase():
    sentinels = [new_sentinel() for _ in range(100)]
    timestamps = [int(s.split("_")[-3]) for s in sentinels]

    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


def test_sentinel_command_does_not_contain_sentinel():
    sentinel = new_sentinel()
    command = sentinel_command(sentinel)

    # An echoed input line must never be mistaken for the sentinel itself
    assert sentinel not in command
    assert command.startswith("echo ")
    assert command.endswith(' $?"')


def test_parse_cd():
    assert parse_cd("ls /tmp") is None
    assert parse_cd("cdrom") is None
    assert parse_cd("cd") == []
    assert parse_cd("cd /tmp") == ["/tmp"]
    assert parse_cd("  cd   /tmp  ") == ["/tmp"]
    assert parse_cd("cd -P /tmp") == ["/tmp"]
    assert parse_cd("cd -") == ["-"]
    assert parse_cd("cd 'my dir'") == ["my dir"]
    assert parse_cd("cd 'unbalanced") is None


def test_parse_cd_chained():
    assert parse_cd("cd /tmp;ls") is None
    assert parse_cd("cd /tmp; ls") is None
    assert parse_cd("cd /tmp&&ls") is None
    assert parse_cd("cd /tmp || exit") is None
    assert parse_cd("cd /tmp|cat") is None
    assert parse_cd("cd /tmp >/dev/null") is None


def test_resolve_absolute():
    assert resolve_directory("/home/user", "/tmp") == "/tmp"
    assert resolve_directory(None, "/tmp/") == "/tmp"
    assert resolve_directory("/", "//srv//data") == "/srv/data"


def test_resolve_relative():
    assert resolve_directory("/tmp/a", "..") == "/tmp"
    assert resolve_directory("/tmp", "a/b/../c") == "/tmp/a/c"
    assert resolve_directory("/", "..") == "/"
    assert resolve_directory("/tmp", ".") == "/tmp"


def test_resolve_home():
    assert resolve_directory("/tmp", "~") == "~"
    assert resolve_directory("/tmp", "") == "~"
    assert resolve_directory("/tmp", "~/projects/") == "~/projects"
    assert resolve_directory("~", "projects") == "~/projects"
    assert resolve_directory(None, "projects") == "~/projects"
    assert resolve_directory("~/projects", "..") == "~"
    assert resolve_directory("~", "..") == "~/.."


def test_quote_path():
    assert quote_path("/tmp") == "/tmp"
    assert quote_path("/my dir") == "'/my dir'"
    assert quote_path("~") == '"$HOME"'
    assert quote_path("~/my dir") == "\"$HOME\"/'my dir'"


def test_execute_output(shell_session):
    result = shell_session.execute("echo hello; echo world")

    assert result.succeeded
    assert result.exit_code == 0
    assert result.stdout == "hello\nworld"
    assert "__COMMAND_COMPLETED_" not in result.stdout


def test_execute_empty_output(shell_session):
    result = shell_session.execute("true")

    assert result.succeeded
    assert result.stdout == ""


def test_execute_exit_code(shell_session):
    result = shell_session.execute("sh -c 'echo oops; exit 3'")

    assert not result.succeeded
    assert result.exit_code == 3
    assert result.stdout == "oops"


def test_execute_stderr(shell_session):
    result = shell_session.execute("echo problem >&2; sleep 0.2; false")

    assert not result.succeeded
    assert result.exit_code == 1
    assert result.stderr == "problem"
    assert result.stdout == ""


def test_execute_utf8(shell_session):
    result = shell_session.execute("printf 'caf\\303\\251\\n'")

    assert result.stdout == "café"


def test_execute_large_output(shell_session):
    result = shell_session.execute("seq 1 20000")

    lines = result.stdout.split("\n")

    assert len(lines) == 20000
    assert lines[0] == "1"
    assert lines[-1] == "20000"


def test_cd_is_tracked(shell_session, tmp_path):
    assert shell_session.working_directory == "~"

    result = shell_session.execute(f"cd {tmp_path}")

    assert result.succeeded
    assert result.working_directory == str(tmp_path)
    assert shell_session.working_directory == str(tmp_path)
    assert shell_session.execute("pwd").stdout == str(tmp_path)


def test_relative_cd_is_tracked(shell_session, tmp_path):
    (tmp_path / "a").mkdir()

    shell_session.execute(f"cd {tmp_path}/a")
    result = shell_session.execute("cd ..")

    assert result.working_directory == str(tmp_path)


def test_cd_back(shell_session, tmp_path):
    (tmp_path / "a").mkdir()

    shell_session.execute(f"cd {tmp_path}")
    shell_session.execute(f"cd {tmp_path}/a")

    result = shell_session.execute("cd -")

    assert result.working_directory == str(tmp_path)
    assert shell_session.previous_directory == f"{tmp_path}/a"


def test_cd_with_several_arguments_is_not_tracked(shell_session, tmp_path):
    shell_session.execute(f"cd {tmp_path}")

    result = shell_session.execute("cd / /tmp 2>/dev/null; true")

    assert result.working_directory == str(tmp_path)


def test_chained_cd_is_not_tracked(shell_session, tmp_path):
    (tmp_path / "a").mkdir()

    shell_session.execute(f"cd {tmp_path}")

    for command in [f"cd {tmp_path}/a&&true", f"cd {tmp_path}/a;true"]:
        result = shell_session.execute(command)

        assert result.succeeded
        assert result.working_directory == str(tmp_path)

        shell_session.execute(f"cd {tmp_path}")


def test_failed_cd_is_not_tracked(shell_session, tmp_path):
    shell_session.execute(f"cd {tmp_path}")

    result = shell_session.execute(f"cd {tmp_path}/missing")

    assert not result.succeeded
    assert result.working_directory == str(tmp_path)


def test_timeout(shell_session):
    with pytest.raises(CommandTimeout) as e:
        shell_session.execute("sleep 2", timeout=0.5)

    assert e.value.timeout == 0.5
    assert e.value.command == "sleep 2"

    # Late output of the timed out command doesn't end up in the next result
    result = shell_session.execute("echo hi")

    assert result.succeeded
    assert result.stdout == "hi"


def test_idle_output_is_discarded(shell_session):
    shell_session.execute("(sleep 0.2; echo noise) &")

    # Long enough for the background job to print while no command is running
    time.sleep(0.5)

    result = shell_session.execute("echo quiet")

    assert result.stdout == "quiet"


def idle_transport(*chunks):
    transport = mock.Mock()
    transport.events.drain.return_value = [(Event.STDOUT, c) for c in chunks]
    return transport


def test_idle_output_keeps_cut_off_stale_sentinel():
    executor = CommandExecutor(mock.Mock())
    executor._stale_sentinels.add("__COMMAND_COMPLETED_123__")

    transport = idle_transport(b"late\n", b"__COMMAND_COMPLETED_123__")
    leftover = executor._discard_idle_output(transport, "echo hi")

    assert leftover == "__COMMAND_COMPLETED_123__"

    # The rest of the sentinel line arrives along with the output of the next command
    assert executor._strip_stale_output(leftover + " 0\r\nhi\r\n") == "hi\r\n"
    assert not executor._stale_sentinels


def test_idle_output_keeps_half_a_stale_sentinel():
    executor = CommandExecutor(mock.Mock())
    executor._stale_sentinels.add("__COMMAND_COMPLETED_123__")

    leftover = executor._discard_idle_output(
        idle_transport(b"late\n__COMMAND_COMP"), "echo hi"
    )

    assert leftover == "__COMMAND_COMP"
    assert executor._strip_stale_output(leftover + "LETED_123__ 0\nhi\n") == "hi\n"


def test_idle_output_without_stale_sentinel_is_dropped():
    executor = CommandExecutor(mock.Mock())
    executor._stale_sentinels.add("__COMMAND_COMPLETED_123__")

    transport = idle_transport(b"late\n__COMMAND_COMPLETED_123__ 0\nmore_")

    assert executor._discard_idle_output(transport, "echo hi") == ""
    assert not executor._stale_sentinels


def test_process_exit_while_waiting(shell_session):
    with pytest.raises(ProcessError) as e:
        shell_session.execute("exit 3")

    assert e.value.exit_code == 3


def test_execute_without_session(host):
    session = Session(host, SessionConfig())

    with pytest.raises(NoActiveSession):
        session.execute("ls")


def test_run_remote(mock_ssh):
    host = RemoteHost("alice", "example.com")

    with mock.patch("subprocess.Popen", side_effect=mock_ssh("echo out; exit 2")) as m:
        result = run_remote(host, SessionConfig(), "ls /srv")

    assert not result.succeeded
    assert result.exit_code == 2
    assert result.stdout == "out"
    assert result.working_directory == "~"

    ssh_command = m.call_args[0][0]
    assert ssh_command[-1] == "ls /srv"
    assert "-T" in ssh_command


def test_run_remote_ssh_failure(mock_ssh):
    host = RemoteHost("alice", "example.com")

    callback = mock_ssh("echo 'connection refused' >&2; exit 255")

    with mock.patch("subprocess.Popen", side_effect=callback):
        with pytest.raises(ConnectionFailure) as e:
            run_remote(host, SessionConfig(), "ls")

    assert "connection refused" in str(e.value)


def test_run_remote_timeout(mock_ssh):
    host = RemoteHost("alice", "example.com")

    with mock.patch("subprocess.Popen", side_effect=mock_ssh("exec sleep 5")):
        with pytest.raises(CommandTimeout):
            run_remote(host, SessionConfig(), "ls", timeout=0.2)
