"""Module defining how the directory browser asks the user for decisions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import auto, Enum
import sys
from typing import List, Optional, TextIO


class ActionKind(Enum):
    """Things the user can do while browsing."""

    ENTER = auto()
    UP = auto()
    CREATE = auto()
    REFRESH = auto()
    SELECT = auto()
    CANCEL = auto()


@dataclass(frozen=True)
class Action:
    """
    Choice made by the user.

    The argument is the path to enter for ENTER and optionally the name of the new
    directory for CREATE (the browser asks for one otherwise).
    """

    kind: ActionKind
    argument: Optional[str] = None


@dataclass(frozen=True)
class BrowserEntry:
    """Child directory offered as a choice, expandable if it may have children."""

    name: str
    path: str
    expandable: bool


class Prompter(ABC):
    """Interface of the menu layer that the directory browser asks for choices."""

    @abstractmethod
    def choose(self, path: str, entries: List[BrowserEntry]) -> Action:
        """Ask what to do in the directory at path with the given children."""

    @abstractmethod
    def ask_directory_name(self, parent: str) -> Optional[str]:
        """Ask for the name of a new directory, None to cancel."""

    @abstractmethod
    def confirm_create(self, path: str) -> bool:
        """Ask whether a directory that doesn't exist should be created."""

    @abstractmethod
    def notify(self, message: str) -> None:
        """Inform the user of something that happened."""


class ConsolePrompter(Prompter):
    """
    Minimal line-based prompter for terminals.

    Prompts are written to stderr by default so that stdout only carries the selected
    path and can be captured by scripts.
    """

    HELP = (
        "[number] enter  [..] up  [+] new directory  [r] refresh  [s] select  [q] quit"
    )

    def __init__(
        self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None
    ) -> None:
        """Instantiate a prompter reading from and writing to the given streams."""
        self._input = stdin or sys.stdin
        self._output = stdout or sys.stderr

    def choose(self, path: str, entries: List[BrowserEntry]) -> Action:
        """Print the entries and read commands until one of them is valid."""
        self._print(f"\n{path}")

        for i, entry in enumerate(entries, 1):
            marker = "/+" if entry.expandable else "/"
            self._print(f"  {i:>3}. {entry.name}{marker}")

        if not entries:
            self._print("  (no subdirectories)")

        self._print(self.HELP)

        while True:
            answer = self._ask("> ")

            if answer is None or answer == "q":
                return Action(ActionKind.CANCEL)
            elif answer == "s":
                return Action(ActionKind.SELECT)
            elif answer == "..":
                return Action(ActionKind.UP)
            elif answer == "r":
                return Action(ActionKind.REFRESH)
            elif answer.startswith("+"):
                return Action(ActionKind.CREATE, answer[1:].strip() or None)
            elif answer.isdigit() and 1 <= int(answer) <= len(entries):
                return Action(ActionKind.ENTER, entries[int(answer) - 1].path)

            self._print(f"invalid choice: {answer}")

    def ask_directory_name(self, parent: str) -> Optional[str]:
        """Read the name of a new directory below the parent."""
        return self._ask(f"new directory in {parent}: ") or None

    def confirm_create(self, path: str) -> bool:
        """Ask a yes/no question about creating the path."""
        answer = self._ask(f"{path} does not exist, create it? [y/N] ")

        return answer is not None and answer.lower() in ("y", "yes")

    def notify(self, message: str) -> None:
        """Print the message."""
        self._print(message)

    def _ask(self, prompt: str) -> Optional[str]:
        """Read a line of input, returning None at the end of input."""
        self._output.write(prompt)
        self._output.flush()

        line = self._input.readline()

        if not line:
            return None

        return line.strip()

    def _print(self, line: str) -> None:
        print(line, file=self._output)
