"""Exceptions raised by remote shell sessions and the operations built on them."""

from typing import Optional


class SessionError(RuntimeError):
    """Base class of all errors related to a remote shell session."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        """Instantiate the error with the attempted command and exit code, if known."""
        super().__init__(message)

        self.message = message
        self.command = command
        self.exit_code = exit_code

    def __str__(self) -> str:
        details = []

        if self.command is not None:
            details.append(f"command: {self.command}")

        if self.exit_code is not None:
            details.append(f"exit code: {self.exit_code}")

        if details:
            return f"{self.message} ({', '.join(details)})"
        else:
            return self.message


class ConnectionFailure(SessionError):
    """The ssh process could not be started or exited before producing any output."""


class NoActiveSession(SessionError):
    """A command was attempted while the session isn't connected."""


class CommandTimeout(SessionError):
    """The completion marker of a command wasn't observed before the deadline."""

    def __init__(self, message: str, command: str, timeout: float) -> None:
        """Instantiate the error with the command and the timeout that expired."""
        super().__init__(message, command)

        self.timeout = timeout


class RemoteNotFound(SessionError):
    """A remote path does not exist (or is not a directory)."""

    def __init__(self, path: str) -> None:
        """Instantiate the error for the missing path."""
        super().__init__(f"remote directory {path} does not exist")

        self.path = path


class ProcessError(SessionError):
    """The ssh process failed at the OS level or exited while a command was pending."""
