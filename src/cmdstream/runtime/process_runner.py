"""Process launch primitive shared by the streaming and capture modes.

This module provides:
- CommandSpec: immutable description of one command (no shell parsing)
- ProcessRunner.spawn: start a child with caller-chosen stdout/stderr
- ProcessRunner.terminate: best-effort forced termination, cancel-safe
- ProcessRunner.race: wait for some work OR an ExecContext, whichever first

Key design points:
- The child is a single process; no process groups are created
- stdin is always DEVNULL so the child never inherits the caller's stdin
- Termination is attempted exactly once per process and never raises
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import anyio

from ..config import get_config
from ..context import ExecContext
from ..errors import ContextError

__all__ = [
    "CommandSpec",
    "ProcessRunner",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CommandSpec:
    """Specification for a command to run.

    Attributes:
        program: Executable name (resolved through PATH) or path
        args: Arguments, already split
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    program: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    @classmethod
    def of(
        cls,
        program: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "CommandSpec":
        """Build a spec, normalising argument and path types."""
        return cls(
            program=program,
            args=tuple(str(a) for a in args),
            cwd=Path(cwd) if cwd is not None else None,
            env=env,
        )

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


def _default_term_timeout() -> float:
    return get_config().term_timeout


def _default_kill_timeout() -> float:
    return get_config().kill_timeout


@dataclass
class ProcessRunner:
    """Starts, terminates and supervises single child processes.

    Example:
        runner = ProcessRunner()
        process = await runner.spawn(
            CommandSpec.of("ls", ["-la"]),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        result, ctx_err = await runner.race(ctx, process.communicate)
        if ctx_err is not None:
            await runner.terminate(process)
    """

    term_timeout: float = field(default_factory=_default_term_timeout)
    kill_timeout: float = field(default_factory=_default_kill_timeout)

    async def spawn(
        self,
        spec: CommandSpec,
        *,
        stdout: Any,
        stderr: Any,
    ) -> asyncio.subprocess.Process:
        """Start the child process.

        Args:
            spec: Command specification
            stdout: PIPE, DEVNULL, STDOUT or a file descriptor
            stderr: PIPE, DEVNULL, STDOUT or a file descriptor

        Returns:
            The running process

        Raises:
            OSError: If the platform could not start the program
            ValueError: If an argument cannot be passed to the OS (NUL byte)
            TypeError: If an env value or argument has an unsupported type
        """
        kwargs: dict[str, Any] = {}
        if spec.env is not None:
            kwargs["env"] = dict(spec.env)
        if spec.cwd is not None:
            kwargs["cwd"] = spec.cwd

        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
            **kwargs,
        )

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.program} cwd={spec.cwd}"
        )
        return process

    async def race(
        self,
        ctx: ExecContext | None,
        work: Callable[[], Awaitable[T]],
    ) -> tuple[T | None, ContextError | None]:
        """Run ``work()`` until it finishes or ``ctx`` fires.

        Whichever side finishes first cancels the other.

        Returns:
            (result, None) if the work finished first,
            (None, err) if the context fired first
        """
        if ctx is None:
            return await work(), None

        err = ctx.err
        if err is not None:
            return None, err

        result: T | None = None
        fired: ContextError | None = None
        failure: Exception | None = None
        finished = False

        async def run_work() -> None:
            nonlocal result, finished, failure
            try:
                result = await work()
                finished = True
            except Exception as exc:
                # Re-raised below without the task group's ExceptionGroup
                failure = exc
            tg.cancel_scope.cancel()

        async def watch_context() -> None:
            nonlocal fired
            fired = await ctx.wait()
            tg.cancel_scope.cancel()

        async with anyio.create_task_group() as tg:
            tg.start_soon(run_work)
            tg.start_soon(watch_context)

        if failure is not None:
            raise failure
        if finished:
            return result, None
        return None, fired

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process, shielded from cancellation.

        Cleanup completes even if the caller is cancelled; the cancellation
        is re-raised afterwards.
        """
        if process.returncode is not None:
            return

        task = asyncio.create_task(self._terminate_process(process))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                logger.debug(f"Double cancel during termination pid={process.pid}")
            raise

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process, gracefully first if configured.

        Termination strategy:
        1. If term_timeout > 0: SIGTERM, wait up to term_timeout
        2. SIGKILL (TerminateProcess on Windows)
        3. Wait up to kill_timeout for the exit to be reaped
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if self.term_timeout > 0:
                process.send_signal(signal.SIGTERM)
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                    logger.debug(
                        f"Subprocess terminated gracefully pid={pid} "
                        f"returncode={process.returncode}"
                    )
                    return
                except asyncio.TimeoutError:
                    pass

            process.kill()
            logger.debug(f"Sent kill to pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            logger.debug(
                f"Subprocess killed pid={pid} "
                f"returncode={process.returncode}"
            )
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")
