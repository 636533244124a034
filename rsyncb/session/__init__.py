"""
Modules that manage an interactive ssh session and execute commands through it.

rsyncb talks to the remote host through a single long-lived ssh process running an
interactive login shell, rather than starting a new ssh process for every command.
Connecting can take seconds (key exchange, authentication, possibly a passphrase prompt)
while a command on an established shell returns in a single round trip, which makes a
big difference when browsing directories interactively.

The layers, from the bottom up:

* transport: owns the ssh process, forwards its output to an event queue from
background threads and reports when it exits.
* session: the connect/disconnect lifecycle and its state machine on top of a transport.
* commands: request/response command execution on the shell, using an echoed sentinel
line to find the end of the output of each command.

The one-shot alternative, a separate non-interactive ssh process per command, is
available through run_remote() for callers that don't need a session.
"""

from .commands import CommandResult, run_remote
from .errors import (
    CommandTimeout,
    ConnectionFailure,
    NoActiveSession,
    ProcessError,
    RemoteNotFound,
    SessionError,
)
from .session import Session, SessionStatus
from .transport import check_connection, ConnectionCheck

__all__ = [
    "CommandResult",
    "run_remote",
    "CommandTimeout",
    "ConnectionFailure",
    "NoActiveSession",
    "ProcessError",
    "RemoteNotFound",
    "SessionError",
    "Session",
    "SessionStatus",
    "check_connection",
    "ConnectionCheck",
]
