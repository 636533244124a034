"""Module with shared fixtures, and a flag to pytest to enable tests on a real host."""

import subprocess
from unittest import mock

import pytest

from rsyncb.config import SessionConfig
from rsyncb.host import RemoteHost
from rsyncb.logger import log
from rsyncb.session import Session


def pytest_addoption(parser):
    parser.addoption(
        "--ssh-host",
        action="store",
        default=None,
        help="Run ssh tests against [user@]host (requires key-based login)",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "ssh: mark test as requiring a real ssh host")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--ssh-host"):
        skip_ssh = pytest.mark.skip(reason="only runs with --ssh-host option")

        for item in items:
            if "ssh" in item.keywords:
                item.add_marker(skip_ssh)


@pytest.fixture(autouse=True)
def _restore_log_level():
    """Undo logger level changes made by main() so later tests see all records."""
    level = log.level
    yield
    log.setLevel(level)


def _mock_ssh(substitute_command: str):
    """Return a Popen replacement that runs a local shell command instead of ssh."""
    realPopen = subprocess.Popen

    def wrapper(_command, *args, **kwargs):
        return realPopen(substitute_command, shell=True, *args, **kwargs)

    return wrapper


@pytest.fixture
def mock_ssh():
    return _mock_ssh


@pytest.fixture
def session_config():
    return SessionConfig(settle_delay=0.01, grace_period=0.5, command_timeout=5.0)


@pytest.fixture
def host():
    return RemoteHost("user", "example.com")


@pytest.fixture
def shell_session(host, session_config):
    """Session connected to a local sh standing in for the remote login shell."""
    session = Session(host, session_config)

    callback = _mock_ssh("echo banner; exec sh")

    with mock.patch("subprocess.Popen", side_effect=callback):
        assert session.connect()

    yield session

    session.disconnect()
