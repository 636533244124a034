"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import shlex
from typing import List

from rsyncb.logger import log


@dataclass
class SessionConfig:
    """Configuration variables related to the remote shell session."""

    # ssh client binary and any additional arguments passed to every invocation
    ssh: str = "ssh"
    extra_ssh_args: List[str] = field(default_factory=list)

    # Load the identity file into the local ssh-agent before connecting
    use_agent: bool = True
    ssh_add: str = "ssh-add"

    # Timings in seconds
    connect_timeout: float = 60.0
    settle_delay: float = 0.25
    grace_period: float = 0.5
    command_timeout: float = 30.0

    @staticmethod
    def load(section: SectionProxy) -> SessionConfig:
        """Load overridden variables from a section within a config file."""
        config = SessionConfig()

        config.ssh = section.get("ssh", fallback=config.ssh)

        if "extra_ssh_args" in section:
            config.extra_ssh_args = shlex.split(section["extra_ssh_args"])

        config.use_agent = section.getboolean("use_agent", fallback=config.use_agent)
        config.ssh_add = section.get("ssh_add", fallback=config.ssh_add)

        config.connect_timeout = section.getfloat(
            "connect_timeout", fallback=config.connect_timeout
        )
        config.settle_delay = section.getfloat(
            "settle_delay", fallback=config.settle_delay
        )
        config.grace_period = section.getfloat(
            "grace_period", fallback=config.grace_period
        )
        config.command_timeout = section.getfloat(
            "command_timeout", fallback=config.command_timeout
        )

        return config


@dataclass
class BrowserConfig:
    """Configuration variables related to browsing the remote directory tree."""

    # Number of directory levels retrieved by a single remote listing
    max_depth: int = 2

    @staticmethod
    def load(section: SectionProxy) -> BrowserConfig:
        """Load overridden variables from a section within a config file."""
        config = BrowserConfig()

        config.max_depth = section.getint("max_depth", fallback=config.max_depth)

        if config.max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {config.max_depth}")

        return config


@dataclass
class Config:
    """Configuration variables."""

    session: SessionConfig = field(default_factory=SessionConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "session" in parser:
                config.session = SessionConfig.load(parser["session"])

            if "browser" in parser:
                config.browser = BrowserConfig.load(parser["browser"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
