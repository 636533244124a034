"""Module that owns the ssh process of a session and the threads serving its streams."""

from __future__ import annotations

import contextlib
import ctypes
from dataclasses import dataclass
import os
import signal
import subprocess
import threading
from typing import Any, Callable, IO, List, Optional

from rsyncb.config import SessionConfig
from rsyncb.constants import SSH_ERROR_CODE
from rsyncb.host import RemoteHost
from rsyncb.logger import log, summarize
from .errors import ProcessError
from .events import Event, EventQueue

# Maximum number of bytes forwarded per output event
CHUNK_SIZE = 4096

# Messages printed by ssh when it wants the user to confirm an unknown host key
HOST_KEY_PROMPTS = (
    "Are you sure you want to continue connecting",
    "Host key verification failed",
)


def compose_ssh_command(
    host: RemoteHost, config: SessionConfig, command: Optional[str] = None
) -> List[str]:
    """
    Compose the full command for starting ssh for the given host.

    Without a command, ssh is asked to allocate a pseudo-terminal so that the remote
    side starts an interactive login shell that reads commands from stdin. With a
    command, it is executed directly without a terminal (one-shot use).
    """
    ssh_command = [config.ssh]

    # Disable INFO messages like "Connection to host closed" on stderr
    ssh_command.extend(["-o", "LogLevel=error"])

    ssh_command.extend(["-p", str(host.port)])

    if host.identity_file:
        ssh_command.extend(["-i", os.path.expanduser(host.identity_file)])

    # Append any additional arguments
    ssh_command.extend(config.extra_ssh_args)

    # stdin is a pipe rather than a terminal, so allocation has to be forced
    if command is None:
        ssh_command.append("-tt")
    else:
        ssh_command.append("-T")

    ssh_command.append(host.destination)

    if command is not None:
        ssh_command.append(command)

    return ssh_command


def _set_death_signal(sig: signal.Signals) -> int:
    """Set the signal that the current process gets when its parent dies."""
    libc = ctypes.CDLL("libc.so.6")

    # https://github.com/torvalds/linux/blob/master/include/uapi/linux/prctl.h#L9
    PR_SET_PDEATHSIG = 1

    return libc.prctl(PR_SET_PDEATHSIG, sig)


def _ignore_process_error(call: Callable[[], Any]) -> Callable[[], None]:
    """
    Workaround for race condition in Popen.terminate/Popen.kill.

    https://bugs.python.org/issue40550
    """

    def wrapper() -> None:
        with contextlib.suppress(ProcessLookupError):
            call()

    return wrapper


class TransportProcess:
    """
    Handle to one spawned ssh process and its three byte streams.

    All output is forwarded as raw chunks to the event queue by two reader threads. A
    third thread waits for the process to exit and posts PROCESS_EXIT once all output
    has been forwarded, after which the optional exit callback is invoked. The process
    is exclusively owned by whoever created the handle: nothing else may write to its
    stdin or consume its events.
    """

    def __init__(
        self,
        command: List[str],
        on_exit: Optional[Callable[[TransportProcess, int], None]] = None,
    ) -> None:
        """Prepare a handle for the given command without starting it yet."""
        self.command = command
        self.events = EventQueue()

        self._on_exit = on_exit

        self._proc: Optional[subprocess.Popen] = None
        self._readers: List[threading.Thread] = []
        self._watcher: Optional[threading.Thread] = None

        self._write_lock = threading.Lock()

    def start(self) -> None:
        """Spawn the process and start forwarding its output."""
        if self._proc is not None:
            raise ProcessError("transport process was already started")

        def preexec_fn() -> None:
            # Terminate ssh if rsyncb is terminated
            _set_death_signal(signal.SIGTERM)

        log.debug(f"running {self.command}")

        try:
            self._proc = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                # Unbuffered so that reads return as soon as any output is available
                bufsize=0,
                preexec_fn=preexec_fn,
            )
        except Exception as e:
            raise ProcessError(f"failed to start ssh: {e}")

        assert self._proc.stdout is not None
        assert self._proc.stderr is not None

        self._readers = [
            self._start_thread(self._forward_output, self._proc.stdout, Event.STDOUT),
            self._start_thread(self._forward_output, self._proc.stderr, Event.STDERR),
        ]
        self._watcher = self._start_thread(self._watch_process, self._proc)

    @property
    def alive(self) -> bool:
        """Check if the process has been started and is still running."""
        return self._proc is not None and self._proc.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        """Return the exit code of the process if it has exited."""
        return self._proc.returncode if self._proc else None

    def write(self, data: bytes) -> None:
        """Write all of the given bytes to the stdin of the process."""
        if self._proc is None or self._proc.stdin is None:
            raise ProcessError("transport process is not running")

        log.debug(f"writing {summarize(data, single_line=True)}")

        try:
            with self._write_lock:
                view = memoryview(data)

                while len(view) > 0:
                    written = self._proc.stdin.write(view)
                    view = view[written:]
        except (OSError, ValueError) as e:
            raise ProcessError(
                f"failed to write to ssh: {e}", exit_code=self._proc.poll()
            )

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process to exit and return its exit code, or None on timeout."""
        if self._proc is None:
            return None

        try:
            return self._proc.wait(timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self) -> None:
        """Forcefully stop the process."""
        if self._proc is not None:
            _ignore_process_error(self._proc.terminate)()

    def close(self, timeout: float = 5.0) -> None:
        """
        Stop the process if it's still running and release the streams and threads.

        Safe to call more than once and on every exit path, including after a crash.
        """
        if self._proc is None:
            return

        if self._proc.poll() is None:
            self.terminate()

            if self.wait(timeout) is None:
                _ignore_process_error(self._proc.kill)()
                self.wait(timeout)

        # The exit handler may close the transport from the watcher thread itself
        watcher = self._watcher

        if watcher is not None and watcher is not threading.current_thread():
            watcher.join(timeout)

        streams: List[Optional[IO[bytes]]] = [self._proc.stdin]

        # Streams may still be held open by orphaned remote children, in which case
        # their reader is left to finish on its own.
        outputs = [self._proc.stdout, self._proc.stderr]

        for reader, stream in zip(self._readers, outputs):
            if not reader.is_alive():
                streams.append(stream)

        for stream in streams:
            if stream is not None:
                with contextlib.suppress(OSError):
                    stream.close()

    def _forward_output(self, stream: IO[bytes], event: Event) -> None:
        """Forward chunks of output from a stream until the end of the stream."""
        try:
            while True:
                chunk = stream.read(CHUNK_SIZE)

                if not chunk:
                    break

                self.events.notify(event, chunk)
        except (OSError, ValueError) as e:
            if stream.closed:
                # The stream was closed underneath the reader during teardown
                log.debug(f"stopped reading {event}: {e}")
            else:
                log.error(f"failed to read {event} of ssh: {e}")

                # Wake up whoever is waiting for output
                error = ProcessError(f"failed to read output of ssh: {e}")
                self.events.exception(error)

    def _watch_process(self, proc: subprocess.Popen) -> None:
        """Wait for the process to exit and signal it once all output is forwarded."""
        exit_code = proc.wait()

        for reader in self._readers:
            reader.join(1.0)

        log.debug(f"ssh process {proc.pid} exited with code {exit_code}")

        self.events.notify(Event.PROCESS_EXIT, exit_code)

        if self._on_exit is not None:
            try:
                self._on_exit(self, exit_code)
            except Exception as e:
                log.error(f"exit handler of ssh process {proc.pid} failed: {e}")

    @staticmethod
    def _start_thread(target: Callable[..., None], *args: Any) -> threading.Thread:
        """
        Start a thread with the specified function.

        It is made a daemon just in case the thread fails to exit properly and blocks
        the shutting down of the program.
        """
        t = threading.Thread(target=target, args=args, daemon=True)
        t.start()
        return t


@dataclass
class ConnectionCheck:
    """Outcome of a non-interactive connection test."""

    success: bool
    message: str
    interactive: bool = False
    stderr: str = ""
    exit_code: Optional[int] = None


def check_connection(host: RemoteHost, config: SessionConfig) -> ConnectionCheck:
    """
    Test whether ssh can log in to the host without any user interaction.

    A connection that is only refused because ssh wants the user to confirm the host
    key is reported as interactive rather than as a failure, so that the caller can
    fall back to connecting in a terminal.
    """
    ssh_command = compose_ssh_command(host, config, "exit")

    # Never prompt for anything, fail instead
    ssh_command[1:1] = ["-o", "BatchMode=yes"]

    log.debug(f"running {ssh_command}")

    try:
        proc = subprocess.run(
            ssh_command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=config.connect_timeout,
        )
    except subprocess.TimeoutExpired:
        return ConnectionCheck(
            success=False,
            message=f"ssh connection to {host.destination} timed out",
        )
    except Exception as e:
        return ConnectionCheck(success=False, message=f"ssh process error: {e}")

    stderr = proc.stderr.decode(errors="replace").strip()

    if proc.returncode == 0:
        return ConnectionCheck(
            success=True,
            message="ssh connection established successfully",
            exit_code=proc.returncode,
        )
    elif any(prompt in stderr for prompt in HOST_KEY_PROMPTS):
        return ConnectionCheck(
            success=False,
            interactive=True,
            message="ssh connection requires user interaction",
            stderr=stderr,
            exit_code=proc.returncode,
        )
    else:
        reason = "ssh failed" if proc.returncode == SSH_ERROR_CODE else "login failed"

        return ConnectionCheck(
            success=False,
            message=f"{reason} with code {proc.returncode}",
            stderr=stderr,
            exit_code=proc.returncode,
        )
