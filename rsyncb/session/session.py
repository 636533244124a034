"""Module that implements the lifecycle of an interactive ssh session with a host."""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
import os
import subprocess
import threading
import time
from typing import Iterator, Optional

from rsyncb.config import SessionConfig
from rsyncb.constants import DEFAULT_ROOT_PATH
from rsyncb.host import RemoteHost
from rsyncb.logger import log, summarize
from .commands import CommandExecutor, CommandResult, HOME_DIRECTORY, quote_path
from .errors import ConnectionFailure, NoActiveSession, SessionError
from .events import Event, EventTimeout
from .transport import compose_ssh_command, TransportProcess

# Turns the login shell into something that can be scraped: no echo of the input and no
# prompts in between the output of commands. Shells without these features just ignore
# the corresponding part.
PREPARE_SHELL_COMMAND = "stty -echo 2>/dev/null; unset PROMPT_COMMAND; PS1=''; PS2=''"


class SessionStatus(Enum):
    """States of a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Session:
    """
    Stateful wrapper around one live ssh process running a login shell on a host.

    The session exclusively owns its transport process. Commands borrow it one at a
    time through channel(), which serves as a single-slot request queue: a command
    submitted while another one is running waits for it to finish first.

    The process may exit at any time without the session asking for it (the remote
    side logged out, the network dropped). The session then moves to the disconnected
    state, or the error state if ssh reported a failure, and a command that is waiting
    for output at that moment fails with a ProcessError.
    """

    def __init__(self, host: RemoteHost, config: Optional[SessionConfig] = None):
        """Instantiate a disconnected session for the given host."""
        self.host = host
        self.config = config or SessionConfig()

        self.status = SessionStatus.DISCONNECTED
        self.last_error: Optional[SessionError] = None

        self.working_directory: Optional[str] = host.current_directory
        self.previous_directory: Optional[str] = None

        self._transport: Optional[TransportProcess] = None
        self._executor = CommandExecutor(self)

        # Guards the status and transport, which are also modified by the exit handler
        self._state_lock = threading.RLock()

        # Held for the duration of a command
        self._request_lock = threading.Lock()

    def __enter__(self) -> Session:
        """Connect to the host, raising the reason of failure if it isn't possible."""
        if not self.connect():
            raise self.last_error or ConnectionFailure(
                f"failed to connect to {self.host.destination}"
            )

        return self

    def __exit__(self, *exc_info) -> None:
        """Disconnect from the host."""
        self.disconnect()

    @property
    def connected(self) -> bool:
        """Check if the session is connected."""
        return self.status == SessionStatus.CONNECTED

    def connect(self) -> bool:
        """
        Start the ssh process and wait until the remote shell is ready.

        Returns immediately if the session is already connected. Otherwise the reason of
        any failure is logged and kept in last_error, and False is returned. Connecting
        is never retried automatically.
        """
        with self._state_lock:
            if self.status == SessionStatus.CONNECTED and self._transport is not None:
                return True

            self.status = SessionStatus.CONNECTING
            self.last_error = None

        self._load_identity()

        transport = TransportProcess(
            compose_ssh_command(self.host, self.config), on_exit=self._handle_exit
        )

        try:
            with self._state_lock:
                self._transport = transport

            transport.start()
            self._await_first_output(transport)

            # Give the shell a moment to print its banners before sending commands
            time.sleep(self.config.settle_delay)

            with self._state_lock:
                # The process may have exited right after its first output
                if self._transport is not transport:
                    raise ConnectionFailure(
                        f"ssh to {self.host.destination} exited while connecting",
                        exit_code=transport.returncode,
                    )

                self.status = SessionStatus.CONNECTED

            self._prepare_shell()
        except SessionError as e:
            self._fail(transport, e)
            return False

        log.info(f"connected to {self.host.destination}")

        return True

    def disconnect(self) -> bool:
        """
        Ask the remote shell to exit and stop the ssh process if it doesn't.

        Always leaves the session disconnected. A command that is still waiting for
        output fails with a ProcessError.
        """
        with self._state_lock:
            transport = self._transport

            self._transport = None
            self.status = SessionStatus.DISCONNECTED

        if transport is None:
            return True

        log.debug(f"disconnecting from {self.host.destination}")

        try:
            transport.write(b"exit\n")
        except SessionError as e:
            log.debug(f"failed to ask remote shell to exit: {e}")

        if transport.wait(self.config.grace_period) is None:
            log.debug("ssh did not exit within grace period, terminating it")
            transport.terminate()

        transport.close()

        return True

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Execute a command on the remote shell, see CommandExecutor.execute()."""
        return self._executor.execute(command, timeout)

    @contextmanager
    def channel(self) -> Iterator[TransportProcess]:
        """
        Acquire exclusive use of the transport process for a single request.

        Raises NoActiveSession immediately if the session isn't connected.
        """
        self._check_connected()

        with self._request_lock:
            # The session may have been disconnected while waiting for the lock
            transport = self._check_connected()

            yield transport

    def track_directory(self, path: str) -> None:
        """Record a change of the remote working directory."""
        if path == self.working_directory:
            return

        log.debug(f"working directory changed to {path}")

        self.previous_directory = self.working_directory
        self.working_directory = path

        self.host.current_directory = path
        self.host.save()

    def _check_connected(self) -> TransportProcess:
        with self._state_lock:
            if self.status != SessionStatus.CONNECTED or self._transport is None:
                raise NoActiveSession(
                    f"not connected to {self.host.destination} ({self.status.value})"
                )

            return self._transport

    def _load_identity(self) -> None:
        """
        Add the identity file of the host to the local ssh-agent.

        This is a convenience so that a passphrase is only asked for once, so failures
        are logged and otherwise ignored. The connection attempt still proceeds.
        """
        if not self.config.use_agent or not self.host.identity_file:
            return

        identity_file = os.path.expanduser(self.host.identity_file)

        try:
            proc = subprocess.run(
                [self.config.ssh_add, identity_file],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.config.connect_timeout,
            )
        except Exception as e:
            log.warning(f"failed to add {identity_file} to ssh-agent: {e}")
            return

        if proc.returncode != 0:
            stderr = proc.stderr.decode(errors="replace").strip()

            log.warning(
                f"failed to add {identity_file} to ssh-agent "
                f"(exit code {proc.returncode}): {stderr}"
            )

    def _await_first_output(self, transport: TransportProcess) -> None:
        """Wait until ssh shows signs of life on either output stream."""
        try:
            event, value = transport.events.get(timeout=self.config.connect_timeout)
        except EventTimeout:
            raise ConnectionFailure(
                f"no response from {self.host.destination} "
                f"within {self.config.connect_timeout} seconds"
            )

        if event == Event.PROCESS_EXIT:
            raise ConnectionFailure(
                f"ssh to {self.host.destination} exited before connecting",
                exit_code=value,
            )

        log.debug(f"first output of ssh: {summarize(value, single_line=True)}")

    def _prepare_shell(self) -> None:
        """
        Make the shell suitable for scraping and move to the starting directory.

        That is the root path of the host, or the directory the host was left in during
        an earlier session if it still exists.
        """
        resume_directory = self.host.current_directory

        result = self.execute(PREPARE_SHELL_COMMAND)

        if not result.succeeded:
            log.debug(f"preparing shell failed with exit code {result.exit_code}")

        self.working_directory = HOME_DIRECTORY
        self.previous_directory = None

        root_path = self.host.root_path

        if root_path and root_path != DEFAULT_ROOT_PATH:
            result = self.execute(f"cd {quote_path(root_path)}")

            if not result.succeeded:
                log.warning(
                    f"failed to change to root directory {root_path}: {result.stdout}"
                )

        if resume_directory is None or resume_directory in (
            HOME_DIRECTORY,
            self.working_directory,
        ):
            return

        result = self.execute(f"cd {quote_path(resume_directory)}")

        if not result.succeeded:
            log.warning(
                f"failed to return to directory {resume_directory}: {result.stdout}"
            )

    def _fail(self, transport: TransportProcess, error: SessionError) -> None:
        """Give up on connecting and release the transport process."""
        log.error(f"failed to connect to {self.host.destination}: {error}")

        with self._state_lock:
            if self._transport is transport:
                self._transport = None

            self.status = SessionStatus.ERROR
            self.last_error = error

        transport.close()

    def _handle_exit(self, transport: TransportProcess, exit_code: int) -> None:
        """Release the transport process after it has exited on its own."""
        with self._state_lock:
            # Exits of processes that were deliberately stopped are not of interest
            if transport is not self._transport:
                return

            self._transport = None

            if exit_code != 0:
                self.status = SessionStatus.ERROR
                self.last_error = ConnectionFailure(
                    f"ssh to {self.host.destination} exited unexpectedly",
                    exit_code=exit_code,
                )
            else:
                self.status = SessionStatus.DISCONNECTED

        if exit_code != 0:
            log.error(f"ssh to {self.host.destination} exited with code {exit_code}")
        else:
            log.info(f"remote shell on {self.host.destination} logged out")

        transport.close()
