"""Cancellable subprocess execution for backends that drive host tools."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from rootstock.context import BuildContext
from rootstock.errors import FatalError, TransientError

TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def run_command(
    ctx: BuildContext,
    argv: Sequence[str],
    *,
    backend: str,
    operation: str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    poll_interval: float = 0.1,
) -> CommandResult:
    """Run *argv*, terminating it as soon as *ctx* is done.

    Non-zero exit is reported as ``TransientError`` since package managers and
    registry tools fail mostly on network trouble.
    """
    ctx.check(operation)
    command = tuple(str(arg) for arg in argv)
    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as exc:
        raise FatalError(
            f"Required host tool `{command[0]}` was not found.",
            hint=f"Install `{command[0]}` and ensure it is in PATH.",
            context={"backend": backend, "operation": operation, "command": " ".join(command)},
        ) from exc
    except PermissionError as exc:
        raise FatalError(
            f"Permission denied executing `{command[0]}`.",
            context={"backend": backend, "operation": operation, "command": " ".join(command)},
        ) from exc

    while True:
        try:
            stdout, stderr = process.communicate(timeout=poll_interval)
            break
        except subprocess.TimeoutExpired:
            if ctx.done:
                _stop(process)
                ctx.check(operation)

    if process.returncode != 0:
        raise TransientError(
            f"`{command[0]}` exited with status {process.returncode}.",
            hint="Check the tool output; the build may be retried from scratch.",
            context={
                "backend": backend,
                "operation": operation,
                "command": " ".join(command),
                "returncode": str(process.returncode),
                "stderr": stderr[:2000] if stderr else "",
            },
        )
    return CommandResult(argv=command, returncode=process.returncode, stdout=stdout, stderr=stderr)


def _stop(process: subprocess.Popen[str]) -> None:
    process.terminate()
    try:
        process.communicate(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()


__all__ = ["CommandResult", "run_command"]
