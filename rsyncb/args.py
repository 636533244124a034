"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
import shlex
from typing import List, Optional

from rsyncb.constants import DEFAULT_ROOT_PATH, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    destination: str
    path: Optional[str]

    port: int
    identity: Optional[str]
    root: str

    extra_ssh_args: List[str]

    config: str

    depth: Optional[int]
    timeout: Optional[int]

    check: bool
    debug: bool

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Browse a remote host over ssh and pick a directory.",
            usage="rsyncb [option...] destination [path]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION}",
            help="show the program version",
        )

        # Primary arguments
        parser.add_argument(
            "destination", type=str, help="remote host to browse ([user@]host)"
        )
        parser.add_argument(
            "path",
            type=str,
            nargs="?",
            help="directory to start browsing in (default is the root path)",
        )

        # Connection details
        parser.add_argument(
            "-p",
            "--port",
            type=cls._parse_positive,
            help="ssh port of the remote host",
            default=22,
        )
        parser.add_argument(
            "-i", "--identity", type=str, help="private key file to authenticate with"
        )
        parser.add_argument(
            "--root",
            type=str,
            help="directory to change to after connecting",
            default=DEFAULT_ROOT_PATH,
        )

        # Flag to pass additional options to SSH
        parser.add_argument(
            "--ssh",
            type=cls._parse_extra_args,
            help="additional arguments to pass to SSH",
            dest="extra_ssh_args",
            default=[],
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.rsyncb/config)",
            default="~/.rsyncb/config",
        )

        # Overrides of config file values
        parser.add_argument(
            "--depth",
            type=cls._parse_positive,
            help="number of directory levels listed per remote call",
        )
        parser.add_argument(
            "--timeout",
            type=cls._parse_positive,
            help="timeout for remote commands in milliseconds",
        )

        # Only test whether a connection can be made
        parser.add_argument(
            "--check",
            action="store_true",
            help="test the connection non-interactively and exit",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        return parser

    @staticmethod
    def _parse_extra_args(arg: str) -> List[str]:
        return shlex.split(arg)

    @staticmethod
    def _parse_positive(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
