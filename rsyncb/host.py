"""Module defining the host record that sessions are opened for."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from rsyncb.constants import DEFAULT_ROOT_PATH
from rsyncb.logger import log


@dataclass
class RemoteHost:
    """
    Connection details of a remote host, along with its last known working directory.

    Host records are owned by whatever stores them (a flat file, a database, or just the
    command-line arguments). The session only reads the connection details and reports
    back changes of the current directory through the save callback.
    """

    username: str
    host: str
    port: int = 22
    identity_file: Optional[str] = None
    root_path: str = DEFAULT_ROOT_PATH
    current_directory: Optional[str] = None
    name: str = ""

    on_save: Optional[Callable[[RemoteHost], None]] = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Derive a display name if none was given."""
        if not self.name:
            self.name = self.destination

    @property
    def destination(self) -> str:
        """Return the user@host destination understood by ssh."""
        if self.username:
            return f"{self.username}@{self.host}"
        else:
            return self.host

    @staticmethod
    def parse(destination: str, **kwargs) -> RemoteHost:
        """Create a host record from a [user@]host destination string."""
        username, separator, host = destination.rpartition("@")

        if not host:
            raise ValueError(f"invalid destination: {destination!r}")

        return RemoteHost(username=username if separator else "", host=host, **kwargs)

    def save(self) -> None:
        """Persist the host record through the save callback, if there is one."""
        if self.on_save is None:
            return

        try:
            self.on_save(self)
        except Exception as e:
            # The record is only a convenience cache of session state, so failing to
            # persist it shouldn't break the session.
            log.error(f"failed to save host {self.name}: {e}")
