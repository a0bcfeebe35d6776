"""Command line construction for the copy tool.

The argument vector funnels through a single command-line string, so
path-like arguments are quoted here once and never re-escaped later.
At launch the string is tokenised back into argv without spawning a shell;
on Windows subprocess rebuilds the CreateProcess string from those tokens.
"""

from __future__ import annotations

import shlex
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "RunRequest",
    "build_request",
    "format_command_line",
    "quote",
    "split_command_line",
]

IS_WINDOWS = sys.platform == "win32"


def quote(value: str) -> str:
    """Wrap a path-like argument in double quotes.

    Empty or whitespace-only values and values that already start and end
    with a double quote are returned unchanged.
    """
    if not value or not value.strip():
        return value
    if value.startswith('"') and value.endswith('"'):
        return value
    return f'"{value}"'


@dataclass(frozen=True)
class RunRequest:
    """Specification for one run of the copy tool.

    Attributes:
        executable: Program name or path, resolved via PATH at launch
        arguments: Ordered arguments, already quoted where needed
        cwd: Working directory for the child (None = inherit)
    """

    executable: str
    arguments: tuple[str, ...] = ()
    cwd: Path | None = None

    @property
    def command_line(self) -> str:
        """Arguments joined with single spaces, without the executable."""
        return " ".join(arg for arg in self.arguments if arg).strip()

    def argv(self, resolved_executable: str | None = None) -> list[str]:
        """Split the command line back into an argument vector.

        Args:
            resolved_executable: Absolute path to use instead of ``executable``

        Raises:
            ValueError: If the command line has unbalanced quotes
        """
        program = resolved_executable or self.executable
        return [program, *split_command_line(self.command_line)]


def split_command_line(command_line: str) -> list[str]:
    """Tokenise on whitespace, honouring double quotes only.

    Backslashes are literal so Windows paths and UNC shares survive,
    apostrophes are ordinary characters (``Bob's Files``) and ``#`` does
    not start a comment.

    Raises:
        ValueError: If a quote is left open
    """
    lexer = shlex.shlex(command_line, posix=True)
    lexer.whitespace_split = True
    lexer.quotes = '"'
    lexer.escape = ""
    lexer.commenters = ""
    return list(lexer)


def build_request(
    executable: str,
    source: str,
    destination: str,
    options: str = "",
    cwd: Path | None = None,
) -> RunRequest:
    """Build the request ``executable "source" "destination" options``.

    Args:
        executable: Copy tool to run
        source: Opaque source path (not validated)
        destination: Opaque destination path (not validated)
        options: Caller-assembled flags, appended verbatim
        cwd: Optional working directory
    """
    arguments = [quote(source), quote(destination)]
    if options and options.strip():
        arguments.append(options.strip())
    return RunRequest(executable=executable, arguments=tuple(arguments), cwd=cwd)


def format_command_line(request: RunRequest, resolved_executable: str | None = None) -> str:
    """Render the full command line for display or for CreateProcess."""
    program = resolved_executable or request.executable
    if IS_WINDOWS:
        program = subprocess.list2cmdline([program])
    else:
        program = shlex.quote(program)
    return f"{program} {request.command_line}".strip()
