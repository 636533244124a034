from configparser import ConfigParser

import pytest

from rsyncb.config import BrowserConfig, Config, SessionConfig


def test_session_config_defaults():
    parser = ConfigParser()
    parser.read_string("[session]")

    cfg = SessionConfig.load(parser["session"])

    assert cfg == SessionConfig()
    assert cfg.command_timeout == 30.0


def test_session_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [session]
        ssh = /opt/bin/ssh
        extra_ssh_args = -4 -o "ServerAliveInterval 30"
        use_agent = no
        connect_timeout = 10
        command_timeout = 2.5
        """
    )

    cfg = SessionConfig.load(parser["session"])

    assert cfg.ssh == "/opt/bin/ssh"
    assert cfg.extra_ssh_args == ["-4", "-o", "ServerAliveInterval 30"]
    assert not cfg.use_agent
    assert cfg.connect_timeout == 10.0
    assert cfg.command_timeout == 2.5


def test_browser_config_load():
    parser = ConfigParser()
    parser.read_string(
        """
        [browser]
        max_depth = 4
        """
    )

    assert BrowserConfig.load(parser["browser"]).max_depth == 4


def test_browser_config_invalid_depth():
    parser = ConfigParser()
    parser.read_string(
        """
        [browser]
        max_depth = 0
        """
    )

    with pytest.raises(ValueError):
        BrowserConfig.load(parser["browser"])


def test_config_defaults(tmpdir):
    cfg = Config.load(str(tmpdir / "nonexistent"))

    assert cfg.session == SessionConfig()
    assert cfg.browser == BrowserConfig()


def test_config_load(tmp_path):
    (tmp_path / "config").write_text(
        """
        [session]
        command_timeout = 5

        [browser]
        max_depth = 3
        """
    )

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.session.command_timeout == 5.0
    assert cfg.browser.max_depth == 3


def test_config_load_failure_nonfatal(tmp_path, caplog):
    (tmp_path / "config").write_text("blabla")

    cfg = Config.load(str(tmp_path / "config"))

    assert cfg.session is not None
    assert cfg.browser is not None
    assert "failed to read config file" in caplog.text
