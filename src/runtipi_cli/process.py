"""External process execution.

All subprocess calls of the CLI go through ``run_process`` so that callers get
a uniform ``CommandResult`` (never an exception) and tests can patch a single
seam.
"""

from __future__ import annotations

import asyncio
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from runtipi_cli.logging import get_logger

log = get_logger("runtipi_cli.process")

# Conventional shell exit codes for launch failures
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return shlex.join(self.args)


async def run_process(
    args: Sequence[str | Path],
    *,
    cwd: Path | None = None,
    timeout: float = 120,
) -> CommandResult:
    """Run a command without a shell and capture its output."""
    argv = tuple(str(a) for a in args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as exc:
        log.warning("process_launch_failed", cmd=shlex.join(argv), error=str(exc))
        return CommandResult(argv, EXIT_NOT_FOUND, "", str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("process_timeout", cmd=shlex.join(argv), timeout=timeout)
        return CommandResult(argv, EXIT_TIMEOUT, "", f"Command timed out after {timeout}s")

    result = CommandResult(
        argv,
        proc.returncode if proc.returncode is not None else -1,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )
    if not result.ok:
        log.debug(
            "process_failed",
            cmd=result.command,
            returncode=result.returncode,
            stderr=result.stderr[:500],
        )
    return result
