"""Interactive prompts and local git helpers.

``Prompter`` is the interface the resolution code talks to;
``ConsolePrompter`` implements it on plain stdin/stdout. End-of-input
and Ctrl-C on any prompt raise ``PromptCancelledError``, which aborts
the whole command.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import getpass
import logging
from pathlib import Path
import subprocess
import sys
from typing import Any, Protocol, TextIO, TypeVar

from azdo_cli.errors import PromptCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Validator = Callable[[str], str | None]
"""Returns an error message for invalid input, or ``None``."""


class Prompter(Protocol):
    """Interactive prompt provider."""

    def text(
        self,
        message: str,
        *,
        initial: str | None = None,
        placeholder: str | None = None,
        validate: Validator | None = None,
    ) -> str: ...  # noqa: D102

    def secret(self, message: str, *, validate: Validator | None = None) -> str: ...  # noqa: D102

    def select(
        self,
        message: str,
        options: Sequence[tuple[T, str]],
        *,
        initial: Any = None,
    ) -> T: ...  # noqa: D102

    def confirm(self, message: str, *, initial: bool = True) -> bool: ...  # noqa: D102


class ConsolePrompter:
    """Line-based prompts on a pair of text streams.

    Attributes:
        stdin: Stream answers are read from.
        stdout: Stream questions are written to.
    """

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def _ask(self, message: str) -> str:
        self.stdout.write(message)
        self.stdout.flush()
        try:
            line = self.stdin.readline()
        except KeyboardInterrupt as exc:
            raise PromptCancelledError("Canceled") from exc
        if not line:
            raise PromptCancelledError("Canceled")
        return line.rstrip("\r\n")

    def text(
        self,
        message: str,
        *,
        initial: str | None = None,
        placeholder: str | None = None,
        validate: Validator | None = None,
    ) -> str:
        """Ask for free text; an empty answer takes *initial*."""
        hint = initial if initial is not None else placeholder
        suffix = f" [{hint}]" if hint else ""
        while True:
            answer = self._ask(f"{message}{suffix}: ")
            if answer == "" and initial is not None:
                answer = initial
            error = validate(answer) if validate else None
            if error is None:
                return answer
            self.stdout.write(f"  {error}\n")

    def secret(self, message: str, *, validate: Validator | None = None) -> str:
        """Ask for hidden input (tokens)."""
        while True:
            try:
                answer = getpass.getpass(f"{message}: ", stream=self.stdout)
            except (EOFError, KeyboardInterrupt) as exc:
                raise PromptCancelledError("Canceled") from exc
            error = validate(answer) if validate else None
            if error is None:
                return answer
            self.stdout.write(f"  {error}\n")

    def select(
        self,
        message: str,
        options: Sequence[tuple[T, str]],
        *,
        initial: Any = None,
    ) -> T:
        """Pick one option by number; an empty answer takes *initial*."""
        if not options:
            msg = "select() needs at least one option"
            raise ValueError(msg)
        default_index = 0
        for index, (value, _label) in enumerate(options):
            if type(value) is type(initial) and value == initial:
                default_index = index
                break

        self.stdout.write(f"{message}\n")
        for index, (_value, label) in enumerate(options, start=1):
            marker = "*" if index - 1 == default_index else " "
            self.stdout.write(f" {marker} {index}) {label}\n")
        while True:
            answer = self._ask(f"Choice [{default_index + 1}]: ").strip()
            if answer == "":
                return options[default_index][0]
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return options[int(answer) - 1][0]
            self.stdout.write(f"  Enter a number between 1 and {len(options)}\n")

    def confirm(self, message: str, *, initial: bool = True) -> bool:
        """Yes/no question; an empty answer takes *initial*."""
        hint = "Y/n" if initial else "y/N"
        while True:
            answer = self._ask(f"{message} ({hint}): ").strip().lower()
            if answer == "":
                return initial
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            self.stdout.write("  Answer y or n\n")


def list_git_branches(cwd: str | Path) -> list[str]:
    """Local git branch names in *cwd*; empty when git is unavailable.

    Args:
        cwd: Repository directory.

    Returns:
        Short branch names in git's order.
    """
    try:
        result = subprocess.run(  # nosec B607
            ["git", "branch", "--format=%(refname:short)"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (OSError, subprocess.SubprocessError):
        logger.debug("git branch listing failed in %s", cwd, exc_info=True)
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]
