"""Tests that run against a real ssh host, enabled with the --ssh-host option."""

import pytest

from rsyncb.browser import RemoteDirectories
from rsyncb.config import SessionConfig
from rsyncb.host import RemoteHost
from rsyncb.session import check_connection, run_remote, Session


@pytest.fixture
def remote_host(request):
    return RemoteHost.parse(request.config.getoption("--ssh-host"))


@pytest.mark.ssh
def test_check_connection(remote_host):
    result = check_connection(remote_host, SessionConfig())

    assert result.success, result.stderr


@pytest.mark.ssh
def test_run_remote(remote_host):
    result = run_remote(remote_host, SessionConfig(), "echo foo")

    assert result.succeeded
    assert result.stdout == "foo"


@pytest.mark.ssh
def test_session(remote_host):
    with Session(remote_host, SessionConfig()) as session:
        result = session.execute("cd /tmp && pwd")

        assert result.stdout == "/tmp"

        result = session.execute("cd /tmp")

        assert result.working_directory == "/tmp"
        assert session.execute("pwd").stdout == "/tmp"

        result = session.execute("false")

        assert not result.succeeded
        assert result.exit_code == 1


@pytest.mark.ssh
def test_browse_listing(remote_host):
    with Session(remote_host, SessionConfig()) as session:
        directories = RemoteDirectories(session)

        tmp = session.execute("mktemp -d").stdout

        try:
            assert directories.create(f"{tmp}/a/b")

            nodes = directories.fetch_subtree(tmp, 2)

            assert nodes[tmp].children == [f"{tmp}/a"]
            assert nodes[f"{tmp}/a"].children == [f"{tmp}/a/b"]
        finally:
            session.execute(f"rm -rf {tmp}")
