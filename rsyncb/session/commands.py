"""
Module that implements command execution on top of an interactive remote shell.

An interactive ssh session only exposes the byte streams of a login shell, so there is
no way to tell where the output of one command ends and the output of the next begins.
That is solved by following every command with an echo of a unique marker line, the
sentinel:

    ls -l /srv
    echo "__COMMAND_COMPLETED_""1589973126000__ $?"

Everything that is printed before the sentinel is the output of the command, and the
number that follows the sentinel is its exit code. The sentinel is split into two quoted
halves in the echo command so that the input line itself never matches if the remote
terminal happens to echo it back.

A sentinel embeds the time in milliseconds at which the command was submitted. That
makes it unique within a session, which matters when a command times out: its output
keeps arriving in the background and its sentinel is remembered, so that this stale
output can be recognized and discarded when it shows up in front of the output of the
next command.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
import posixpath
import shlex
import subprocess
import threading
import time
from typing import List, Optional, Set, Tuple, TYPE_CHECKING

from rsyncb.config import SessionConfig
from rsyncb.constants import SENTINEL_PREFIX, SENTINEL_SUFFIX, SSH_ERROR_CODE
from rsyncb.host import RemoteHost
from rsyncb.logger import log, summarize
from .errors import CommandTimeout, ConnectionFailure, ProcessError
from .events import Event, EventTimeout
from .transport import compose_ssh_command, TransportProcess

if TYPE_CHECKING:
    from .session import Session

# Directory that a login shell starts in
HOME_DIRECTORY = "~"

# Characters that make up the control and redirection operators of the shell
SHELL_OPERATOR_CHARS = ";&|()<>"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command executed on the remote host."""

    command: str
    succeeded: bool
    stdout: str
    stderr: str = ""
    exit_code: Optional[int] = None
    working_directory: Optional[str] = None


_sentinel_lock = threading.Lock()
_last_sentinel_time = 0


def new_sentinel() -> str:
    """
    Generate a fresh sentinel based on the current time in milliseconds.

    Sentinels are strictly increasing, even if they are requested within the same
    millisecond.
    """
    global _last_sentinel_time

    with _sentinel_lock:
        now = time.time_ns() // 1_000_000
        _last_sentinel_time = max(now, _last_sentinel_time + 1)

        return f"{SENTINEL_PREFIX}{_last_sentinel_time}{SENTINEL_SUFFIX}"


def sentinel_command(sentinel: str) -> str:
    """Compose the shell command that prints the sentinel and the last exit code."""
    assert sentinel.startswith(SENTINEL_PREFIX)

    return f'echo "{SENTINEL_PREFIX}""{sentinel[len(SENTINEL_PREFIX):]} $?"'


def quote_path(path: str) -> str:
    """Quote a remote path for the shell while keeping a leading ~ expandable."""
    if path == HOME_DIRECTORY:
        return '"$HOME"'
    elif path.startswith(HOME_DIRECTORY + "/"):
        return '"$HOME"/' + shlex.quote(path[2:])
    else:
        return shlex.quote(path)


def parse_cd(command: str) -> Optional[List[str]]:
    """
    Return the arguments of a cd command, or None if it is not one.

    Options like -P are left out. Commands that can't be split into words (e.g.
    unbalanced quotes) are not considered cd commands, and neither are cd commands that
    are chained with or redirected to other commands, since the directory they end up
    in can't be told from the words alone.
    """
    command = command.strip()

    if command != "cd" and not command.startswith("cd "):
        return None

    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True

    try:
        words = list(lexer)[1:]
    except ValueError:
        return None

    if any(c in SHELL_OPERATOR_CHARS for word in words for c in word):
        return None

    return [w for w in words if w == "-" or not w.startswith("-")]


def resolve_directory(current: Optional[str], target: str) -> str:
    """
    Resolve the target of a cd command against the current directory.

    Absolute paths replace the current directory, ".." pops a segment and anything else
    is appended. Paths relative to the home directory are kept symbolic since the home
    directory isn't known locally.
    """
    if target in ("", HOME_DIRECTORY):
        return HOME_DIRECTORY

    if target.startswith("/"):
        # POSIX leaves a leading double slash implementation-defined, treat it as one
        return posixpath.normpath("/" + target.lstrip("/"))

    if target.startswith(HOME_DIRECTORY + "/"):
        return posixpath.normpath(target)

    base = current or HOME_DIRECTORY
    resolved = posixpath.normpath(posixpath.join(base, target))

    # Climbing above the home directory leaves a path that can't be normalized
    if resolved == "." or resolved.startswith(".."):
        return posixpath.join(base, target)

    return resolved


class CommandExecutor:
    """
    Executes commands one at a time on the shell of a session.

    The executor doesn't own the ssh process. It borrows the transport for the duration
    of a single command through Session.channel(), which also guarantees that no other
    command is in flight at the same time.
    """

    def __init__(self, session: Session) -> None:
        """Instantiate an executor for commands on the given session."""
        self._session = session

        self._transport: Optional[TransportProcess] = None
        self._stale_sentinels: Set[str] = set()

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Execute a command on the remote shell and wait for it to complete.

        Raises NoActiveSession if the session isn't connected, CommandTimeout if the
        command didn't complete within the timeout (in seconds) and ProcessError if the
        ssh process failed or exited while waiting.
        """
        if timeout is None:
            timeout = self._session.config.command_timeout

        with self._session.channel() as transport:
            if transport is not self._transport:
                # Sentinels of timed out commands can't show up on a new connection
                self._transport = transport
                self._stale_sentinels.clear()

            stdout, stderr, exit_code = self._run(transport, command, timeout)

        succeeded = exit_code is None or exit_code == 0

        if succeeded:
            self._track_directory(command)
        else:
            log.debug(f"command exited with code {exit_code}: {summarize(command)}")

        return CommandResult(
            command=command,
            succeeded=succeeded,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            working_directory=self._session.working_directory,
        )

    def _run(
        self, transport: TransportProcess, command: str, timeout: float
    ) -> Tuple[str, str, Optional[int]]:
        """Submit the command and collect its output until the sentinel shows up."""
        leftover = self._discard_idle_output(transport, command)

        sentinel = new_sentinel()

        log.debug(f"executing {summarize(command)} (sentinel {sentinel})")

        transport.write(f"{command}\n{sentinel_command(sentinel)}\n".encode())

        deadline = time.monotonic() + timeout

        stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        stdout = leftover
        stderr = ""

        while True:
            stdout = self._strip_stale_output(stdout)

            completion = self._find_completion(stdout, sentinel)

            if completion is not None:
                output, exit_code = completion
                return output, stderr.strip(), exit_code

            try:
                event, value = transport.events.get(
                    timeout=max(deadline - time.monotonic(), 0)
                )
            except EventTimeout:
                self._stale_sentinels.add(sentinel)

                raise CommandTimeout(
                    f"no response within {timeout} seconds", command, timeout
                )

            if event == Event.STDOUT:
                stdout += stdout_decoder.decode(value)
            elif event == Event.STDERR:
                stderr += stderr_decoder.decode(value)
            elif event == Event.PROCESS_EXIT:
                raise ProcessError(
                    "ssh exited while waiting for command to complete", command, value
                )

    @staticmethod
    def _find_completion(
        stdout: str, sentinel: str
    ) -> Optional[Tuple[str, Optional[int]]]:
        """Split off the command output and exit code once the sentinel line is in."""
        position = stdout.find(sentinel)

        if position == -1:
            return None

        line_end = stdout.find("\n", position)

        if line_end == -1:
            return None

        status = stdout[position + len(sentinel) : line_end].strip()

        try:
            exit_code: Optional[int] = int(status)
        except ValueError:
            log.debug(f"unexpected exit status after sentinel: {summarize(status)}")
            exit_code = None

        output = stdout[:position].replace("\r\n", "\n").strip()

        return output, exit_code

    def _strip_stale_output(self, stdout: str) -> str:
        """Discard output up to and including the sentinel of a timed out command."""
        for sentinel in list(self._stale_sentinels):
            position = stdout.find(sentinel)

            if position == -1:
                continue

            line_end = stdout.find("\n", position)

            if line_end == -1:
                continue

            log.debug(f"discarding late output of timed out command ({sentinel})")

            self._stale_sentinels.remove(sentinel)
            stdout = stdout[line_end + 1 :]

        return stdout

    def _discard_idle_output(self, transport: TransportProcess, command: str) -> str:
        """
        Throw away output that arrived while no command was running.

        Returns the start of a sentinel line of a timed out command that hasn't been
        completed yet, so that it can be stripped once the rest of it arrives.
        """
        noise = b""

        for event, value in transport.events.drain():
            if event == Event.STDOUT:
                noise += value
            elif event == Event.PROCESS_EXIT:
                raise ProcessError("ssh exited before command was sent", command, value)
            elif event == Event.EXCEPTION:
                raise value

        if not noise:
            return ""

        text = noise.decode(errors="replace")

        log.debug(f"discarding idle output: {summarize(text, single_line=True)}")

        return self._pending_stale_output(self._strip_stale_output(text))

    def _pending_stale_output(self, text: str) -> str:
        """Return the start of a sentinel line of a timed out command that is cut off."""
        positions = [text.find(s) for s in self._stale_sentinels if s in text]

        if positions:
            return text[min(positions) :]

        # A sentinel at the start of the last line may be cut off halfway
        line_start = text.rfind("\n") + 1
        tail = text[line_start:]

        for sentinel in self._stale_sentinels:
            if tail and sentinel.startswith(tail):
                return tail

        return ""

    def _track_directory(self, command: str) -> None:
        """Update the tracked working directory after a successful cd command."""
        arguments = parse_cd(command)

        if arguments is None:
            return

        if len(arguments) > 1:
            log.debug(f"not tracking directory change of {summarize(command)}")
            return

        target = arguments[0] if arguments else HOME_DIRECTORY

        if target == "-":
            new_directory = self._session.previous_directory or HOME_DIRECTORY
        else:
            new_directory = resolve_directory(self._session.working_directory, target)

        self._session.track_directory(new_directory)


def run_remote(
    host: RemoteHost,
    config: SessionConfig,
    command: str,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Execute a single command in its own non-interactive ssh process.

    This needs no sentinel because the end of the output is simply the end of the
    process, at the cost of a new connection per command. The working directory always
    starts out as the home directory.
    """
    if timeout is None:
        timeout = config.command_timeout

    ssh_command = compose_ssh_command(host, config, command)

    log.debug(f"running {ssh_command}")

    try:
        proc = subprocess.run(
            ssh_command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeout(f"no response within {timeout} seconds", command, timeout)
    except OSError as e:
        raise ProcessError(f"failed to start ssh: {e}", command)

    stdout = proc.stdout.decode(errors="replace").strip()
    stderr = proc.stderr.decode(errors="replace").strip()

    # ssh exits with the remote command's exit code or 255 in case of failure
    if proc.returncode == SSH_ERROR_CODE:
        raise ConnectionFailure(
            f"ssh to {host.destination} failed: {stderr}", command, proc.returncode
        )

    return CommandResult(
        command=command,
        succeeded=proc.returncode == 0,
        stdout=stdout,
        stderr=stderr,
        exit_code=proc.returncode,
        working_directory=HOME_DIRECTORY,
    )
