"""Console logger used by the command-line commands."""

from __future__ import annotations

import sys
from datetime import datetime
from typing import Any, NoReturn, Optional, TextIO

from .migrator import Logger

__all__ = ["CliLog"]

_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S "


class CliLog(Logger):
    """Writes to standard error; in verbose mode every line gets a timestamp."""

    def __init__(self, verbose: bool = False, stream: Optional[TextIO] = None) -> None:
        super().__init__(verbose=verbose, stream=stream)

    def _write(self, text: str) -> None:
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(text)
        stream.flush()

    def _stamped(self, message: str) -> str:
        if not message.endswith("\n"):
            message += "\n"
        return datetime.now().strftime(_TIMESTAMP_FORMAT) + message

    def printf(self, fmt: str, *args: Any) -> None:
        """Write ``fmt % args``; verbose output is timestamped and newline-terminated."""
        message = fmt % args if args else fmt
        self._write(self._stamped(message) if self.verbose else message)

    def println(self, *args: Any) -> None:
        """Write the arguments separated by spaces, followed by a newline."""
        message = " ".join(str(arg) for arg in args) + "\n"
        self._write(self._stamped(message) if self.verbose else message)

    def fatal(self, *args: Any) -> NoReturn:
        """Print the arguments and exit with status 1."""
        self.println(*args)
        raise SystemExit(1)

    def fatal_err(self, err: BaseException) -> NoReturn:
        """Print ``error: <err>`` and exit with status 1."""
        self.fatal("error:", err)