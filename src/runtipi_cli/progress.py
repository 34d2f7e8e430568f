"""Step-by-step progress reporting for long running commands."""

from __future__ import annotations

import sys
from typing import Protocol, TextIO

SUCCESS_MARK = "✓"
FAIL_MARK = "✗"
PENDING_MARK = "…"


class ProgressReporter(Protocol):
    """Receives one ``begin`` per step followed by ``succeed`` or ``fail``."""

    def begin(self, message: str) -> None: ...

    def succeed(self, message: str) -> None: ...

    def fail(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...


class ConsoleReporter:
    """Plain line-oriented reporter for terminals and CI logs."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def _write(self, line: str) -> None:
        print(line, file=self._stream, flush=True)

    def begin(self, message: str) -> None:
        self._write(f"{PENDING_MARK} {message}")

    def succeed(self, message: str) -> None:
        self._write(f"{SUCCESS_MARK} {message}")

    def fail(self, message: str) -> None:
        self._write(f"{FAIL_MARK} {message}")

    def info(self, message: str) -> None:
        self._write(message)

