"""Blocking capture of a command's stdout and stderr.

Unlike the streaming handle, stdout and stderr are collected into separate
buffers, and nothing is returned until the command has finished.

Result contract:
- Non-zero exit is not an error: exit_code holds the real status and
  error is None
- error is set only when the command could not run to completion (start
  failure, deadline, cancel). exit_code is then 0 and both buffers are
  empty, whatever the child may have written
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import NamedTuple

import anyio

from .context import ExecContext
from .errors import ExecError, ProcessError
from .runtime import CommandSpec, ProcessRunner

__all__ = ["CaptureResult", "capture", "output"]

logger = logging.getLogger(__name__)


class CaptureResult(NamedTuple):
    """Buffers and status of a captured command.

    Unpacks as ``stdout, stderr, exit_code, error``.
    """

    stdout: bytes
    stderr: bytes
    exit_code: int
    error: ExecError | None = None

    @property
    def ok(self) -> bool:
        """True when the command ran to completion and exited 0."""
        return self.error is None and self.exit_code == 0


def _failed(error: ExecError) -> CaptureResult:
    # exit_code 0 is a sentinel here, not a real status
    return CaptureResult(b"", b"", 0, error)


async def capture(
    ctx: ExecContext | None,
    program: str,
    *args: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
) -> CaptureResult:
    """Run a command to completion and capture its output.

    Args:
        ctx: Deadline/cancel token (None = run until the command exits)
        program: Executable name or path; resolved via PATH, no shell
        *args: Arguments, already split
        cwd: Working directory (None = inherit)
        env: Environment (None = inherit)
        runner: ProcessRunner to use (default: configured timeouts)

    Returns:
        CaptureResult(stdout, stderr, exit_code, error)
    """
    spec = CommandSpec.of(program, args, cwd=cwd, env=env)
    runner = runner or ProcessRunner()

    if ctx is not None and ctx.err is not None:
        logger.debug(f"Context already done, not starting {program}: {ctx.err}")
        return _failed(ctx.err)

    try:
        process = await runner.spawn(
            spec,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except Exception as e:
        logger.debug(f"Failed to start {program}: {e}")
        return _failed(ProcessError.from_spawn_error(program, spec.argv, e))

    try:
        result, err = await runner.race(ctx, process.communicate)
    finally:
        if process.returncode is None:
            await runner.terminate(process)

    if err is not None:
        logger.debug(f"Context fired for pid={process.pid}: {err}")
        # Let the pipes reach EOF so their transports close
        with anyio.move_on_after(runner.kill_timeout):
            await process.communicate()
        return _failed(err)

    if result is None:
        raise RuntimeError(f"No output collected for pid={process.pid}")
    stdout, stderr = result
    logger.debug(
        f"Captured pid={process.pid} returncode={process.returncode} "
        f"stdout={len(stdout)}B stderr={len(stderr)}B"
    )
    return CaptureResult(stdout, stderr, process.returncode, None)


def output(
    ctx: ExecContext | None,
    program: str,
    *args: str,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
) -> CaptureResult:
    """Blocking form of capture().

    Runs in a fresh event loop, so it must not be called from a thread
    that is already running one; await capture() there instead.
    """
    return anyio.run(
        functools.partial(
            capture, ctx, program, *args, cwd=cwd, env=env, runner=runner
        )
    )
