"""
Module that queries and modifies remote directories through a session.

Every operation costs at least one round trip over the session, and latency is what
makes browsing a remote machine feel slow. Listing a directory is therefore never done
one directory at a time: fetch_subtree() retrieves all directories up to a certain depth
with a single find command, regardless of how wide the tree is. The browser can then
navigate that many levels down without talking to the remote again.
"""

from typing import Dict, Optional

from rsyncb.constants import EXISTS_MARKER, NOT_EXISTS_MARKER
from rsyncb.logger import log, summarize
from rsyncb.session import Session, SessionError
from rsyncb.session.commands import quote_path
from .tree import DirectoryNode, normalize_path, parse_listing


def exists_command(path: str) -> str:
    """Compose the command that reports whether a directory exists."""
    return (
        f"if [ -d {quote_path(path)} ]; "
        f'then echo "{EXISTS_MARKER}"; else echo "{NOT_EXISTS_MARKER}"; fi'
    )


def listing_command(path: str, max_depth: int) -> str:
    """
    Compose the command that recursively lists directories up to a depth.

    The root itself is left out and the output is sorted byte-wise, one path per line.
    Unreadable directories are silently skipped.
    """
    return (
        f"find {quote_path(path)} -mindepth 1 -maxdepth {max_depth} -type d "
        f"2>/dev/null | LC_ALL=C sort"
    )


def create_command(path: str) -> str:
    """Compose the command that creates a directory and any missing parents."""
    return f"mkdir -p {quote_path(path)}"


class RemoteDirectories:
    """Directory operations on the remote host of a session."""

    def __init__(self, session: Session) -> None:
        """Instantiate directory operations on top of a connected session."""
        self.session = session

        self._home: Optional[str] = None

    def exists(self, path: str) -> bool:
        """Check whether the path exists on the remote and is a directory."""
        result = self.session.execute(exists_command(path))

        lines = result.stdout.splitlines()
        answer = lines[-1].strip() if lines else ""

        if answer == EXISTS_MARKER:
            return True
        elif answer == NOT_EXISTS_MARKER:
            return False
        else:
            raise SessionError(
                f"unexpected response to existence check of {path}: "
                f"{summarize(result.stdout, single_line=True)}",
                result.command,
                result.exit_code,
            )

    def fetch_subtree(self, path: str, max_depth: int) -> Dict[str, DirectoryNode]:
        """
        Retrieve all directories up to max_depth levels below the path.

        Returns an empty mapping if the path doesn't exist. Otherwise the mapping
        includes the node of the path itself.
        """
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")

        path = normalize_path(path)

        if not self.exists(path):
            log.info(f"not listing {path} since it does not exist")
            return {}

        result = self.session.execute(listing_command(path, max_depth))

        if not result.succeeded:
            log.warning(
                f"listing {path} exited with code {result.exit_code}, "
                f"results may be incomplete"
            )

        nodes = parse_listing(path, result.stdout.splitlines(), max_depth)

        log.debug(f"listed {len(nodes)} directories below {path}")

        return nodes

    def create(self, path: str) -> bool:
        """Create a directory along with any missing parents, returning success."""
        result = self.session.execute(create_command(path))

        if not result.succeeded:
            log.error(
                f"failed to create {path} (exit code {result.exit_code}): "
                f"{summarize(result.stdout or result.stderr, single_line=True)}"
            )

        return result.succeeded

    def home(self) -> str:
        """Return the absolute path of the remote home directory."""
        if self._home is None:
            result = self.session.execute('echo "$HOME"')
            lines = result.stdout.splitlines()

            if not result.succeeded or not lines or not lines[-1].startswith("/"):
                raise SessionError(
                    "failed to determine remote home directory",
                    result.command,
                    result.exit_code,
                )

            self._home = normalize_path(lines[-1].strip())

        return self._home

    def resolve(self, path: str) -> str:
        """Turn a path that may be relative to the home directory into a cache key."""
        if path.startswith("/"):
            return normalize_path(path)

        home = self.home()

        if path == "~":
            return home
        elif path.startswith("~/"):
            return normalize_path(path[2:], home)
        else:
            return normalize_path(path, home)
