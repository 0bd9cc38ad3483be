"""User-facing status output.

``Reporter`` writes one line per event through ``rich`` consoles. The
color decision is made once (``should_use_color``) and passed in
explicitly, so the consoles never sniff the environment themselves.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
import sys
from typing import TextIO

from rich.console import Console
from rich.text import Text

from azdo_cli.models import RunInfo

_COLOR_FORCE_VARS = ("AZDO_COLOR", "FORCE_COLOR", "CLICOLOR_FORCE", "CLICOLOR")


def should_use_color(
    stream: TextIO,
    environ: Mapping[str, str] | None = None,
    forced: bool | None = None,
) -> bool:
    """Decide whether to emit ANSI colors on *stream*.

    ``NO_COLOR`` always wins; then the first of ``AZDO_COLOR``,
    ``FORCE_COLOR``, ``CLICOLOR_FORCE`` and ``CLICOLOR`` that is set
    (``0``/``false`` disable); then whether *stream* is a terminal.

    Args:
        stream: Output stream.
        environ: Environment mapping; ``os.environ`` when omitted.
        forced: Explicit choice from the command line, if any.

    Returns:
        True when output should be colored.
    """
    if forced is not None:
        return forced
    env = os.environ if environ is None else environ
    if env.get("NO_COLOR"):
        return False
    for name in _COLOR_FORCE_VARS:
        if name in env:
            return env[name].strip().lower() not in ("0", "false")
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


@dataclass
class Reporter:
    """Writes status lines for the CLI commands.

    Attributes:
        use_color: Emit ANSI color codes.
        stream: Stream for progress and success lines.
        err_stream: Stream for warnings and errors.
    """

    use_color: bool = False
    stream: TextIO = field(default_factory=lambda: sys.stdout)
    err_stream: TextIO = field(default_factory=lambda: sys.stderr)
    _out: Console = field(init=False, repr=False)
    _err: Console = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._out = self._console(self.stream)
        self._err = self._console(self.err_stream)

    def _console(self, stream: TextIO) -> Console:
        return Console(
            file=stream,
            force_terminal=self.use_color,
            no_color=not self.use_color,
            color_system="standard" if self.use_color else None,
            markup=False,
            emoji=False,
            highlight=False,
            soft_wrap=True,
        )

    def _write(self, console: Console, style: str, prefix: str, message: str) -> None:
        console.print(Text(f"{prefix} {message}", style=style))

    def start(self, message: str) -> None:
        """Announce a step that is about to run."""
        self._write(self._out, "cyan", "...", message)

    def success(self, message: str) -> None:
        """Report a finished step."""
        self._write(self._out, "green", "ok ", message)

    def info(self, message: str) -> None:
        """Print a neutral note."""
        self._write(self._out, "cyan", "-- ", message)

    def warn(self, message: str) -> None:
        """Print a recoverable problem to the error stream."""
        self._write(self._err, "yellow", "!! ", message)

    def error(self, message: str) -> None:
        """Print a failure to the error stream."""
        self._write(self._err, "red", "xx ", message)

    def run(self, run: RunInfo) -> None:
        """Report a run id and, when known, its web link."""
        self.success(f"Run #{run.id}")
        if run.url:
            self.info(f"Open: {run.url}")
