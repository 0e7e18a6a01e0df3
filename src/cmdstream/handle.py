"""Streaming execution handle.

launch() starts a command and returns immediately with an ExecHandle that
exposes two independent facets of the one child process:

- a byte stream carrying the child's stdout and stderr combined
  (each ordered internally, interleaved as the platform delivers them)
- a one-shot completion future resolving to exactly one Outcome

Example:
    ctx = ExecContext.with_timeout(10)
    async with await launch(ctx, "ls", ["-la"]) as handle:
        async for chunk in handle:
            sys.stdout.buffer.write(chunk)
        outcome = await handle.wait()
        outcome.raise_error()

Key design points:
- Start failures (missing executable, permission denied) are not raised by
  launch(); they arrive through the completion future like any other
  process error
- The outcome is published only after the child has been reaped, so a
  reader that drains the stream first never misses output
- Reading the stream never waits on the outcome, and vice versa
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import get_config
from .context import ExecContext
from .errors import (
    Canceled,
    ConstructionError,
    DeadlineExceeded,
    ExecError,
    ProcessError,
)
from .runtime import CommandSpec, ProcessRunner

__all__ = [
    "ExecHandle",
    "Outcome",
    "OutcomeKind",
    "launch",
]

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """Terminal state of a launched command."""

    OK = "ok"
    PROCESS_ERROR = "process_error"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CANCELED = "canceled"


@dataclass(frozen=True)
class Outcome:
    """Terminal result delivered through ExecHandle.done.

    Attributes:
        kind: Which terminal state was reached
        error: None for OK, otherwise the matching ExecError
        returncode: Exit status if the child was reaped, else None
    """

    kind: OutcomeKind
    error: ExecError | None = None
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @classmethod
    def from_error(cls, error: ExecError, returncode: int | None = None) -> "Outcome":
        if isinstance(error, DeadlineExceeded):
            kind = OutcomeKind.DEADLINE_EXCEEDED
        elif isinstance(error, Canceled):
            kind = OutcomeKind.CANCELED
        else:
            kind = OutcomeKind.PROCESS_ERROR
        return cls(kind=kind, error=error, returncode=returncode)

    def raise_error(self) -> None:
        """Raise the carried error, if any."""
        if self.error is not None:
            raise self.error


class ExecHandle:
    """One child process with a live combined-output stream.

    Use launch() rather than constructing this directly. The handle owns the
    child exclusively; only its supervising task signals or reaps it.

    The stream supports a single reader at a time.

    Attributes:
        spec: Command that was launched
        done: Future resolved once with the Outcome
    """

    def __init__(
        self,
        spec: CommandSpec,
        ctx: ExecContext,
        runner: ProcessRunner,
        reader: asyncio.StreamReader,
        transport: asyncio.ReadTransport,
        write_fd: int,
        read_chunk_size: int,
    ) -> None:
        self.spec = spec
        self.done: asyncio.Future[Outcome] = asyncio.get_running_loop().create_future()
        self._ctx = ctx
        self._runner = runner
        self._reader = reader
        self._transport = transport
        self._write_fd: int | None = write_fd
        self._read_chunk_size = read_chunk_size
        self._process: asyncio.subprocess.Process | None = None
        self._terminated = False
        self._task = asyncio.create_task(
            self._supervise(), name=f"cmdstream-supervise-{spec.program}"
        )

    @classmethod
    async def start(
        cls,
        ctx: ExecContext | None,
        spec: CommandSpec,
        *,
        runner: ProcessRunner | None = None,
        read_chunk_size: int | None = None,
    ) -> "ExecHandle":
        """Create the output pipe and hand the launch to a supervising task.

        Raises:
            ConstructionError: If the pipe could not be created or attached
        """
        loop = asyncio.get_running_loop()

        try:
            read_fd, write_fd = os.pipe()
        except OSError as e:
            raise ConstructionError(spec.program, e) from e

        reader = asyncio.StreamReader()
        pipe_file = os.fdopen(read_fd, "rb", buffering=0)
        try:
            transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), pipe_file
            )
        except OSError as e:
            pipe_file.close()
            os.close(write_fd)
            raise ConstructionError(spec.program, e) from e

        # Private child context so aclose() can stop the child without
        # touching the caller's context
        own_ctx = ctx.child() if ctx is not None else ExecContext.background()

        return cls(
            spec,
            own_ctx,
            runner or ProcessRunner(),
            reader,
            transport,
            write_fd,
            read_chunk_size or get_config().read_chunk_size,
        )

    # ------------------------------------------------------------------
    # Process facet
    # ------------------------------------------------------------------

    @property
    def program(self) -> str:
        return self.spec.program

    @property
    def argv(self) -> list[str]:
        return self.spec.argv

    @property
    def pid(self) -> int | None:
        """Child pid, None until the child has started."""
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    async def wait(self) -> Outcome:
        """Wait for the terminal outcome. Returns the same value every time."""
        # Shield so a cancelled waiter does not cancel the shared future
        return await asyncio.shield(self.done)

    async def check(self) -> None:
        """Wait for the outcome and raise its error, if any."""
        outcome = await self.wait()
        outcome.raise_error()

    # ------------------------------------------------------------------
    # Stream facet
    # ------------------------------------------------------------------

    async def read(self, n: int = -1) -> bytes:
        """Read up to n bytes (all remaining if n < 0); b"" at end of data."""
        return await self._reader.read(n)

    async def readline(self) -> bytes:
        return await self._reader.readline()

    def at_eof(self) -> bool:
        return self._reader.at_eof()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._reader.read(self._read_chunk_size)
            if not chunk:
                return
            yield chunk

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> Outcome:
        """Stop the child if still running and release the stream.

        A still-running child is terminated and the outcome becomes
        CANCELED. Unread output is discarded. Safe to call repeatedly.
        """
        self._ctx.cancel()
        outcome = await self.wait()
        self._transport.close()
        return outcome

    async def __aenter__(self) -> "ExecHandle":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        state = self.done.result().kind.value if self.done.done() else "running"
        return f"ExecHandle(program={self.program!r}, pid={self.pid}, state={state})"

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(self) -> None:
        """Sole writer of the outcome."""
        # Replaced below unless the supervisor itself is cancelled
        outcome = Outcome.from_error(Canceled())
        try:
            outcome = await self._run()
        except Exception as e:
            logger.exception(f"Supervisor failed for {self.program}")
            outcome = Outcome.from_error(
                ProcessError.from_spawn_error(self.program, self.argv, e),
                returncode=self.returncode,
            )
        finally:
            self._close_write_end()
            try:
                process = self._process
                if process is not None and process.returncode is None and not self._terminated:
                    # Supervisor cancelled mid-run (e.g. loop shutdown)
                    self._terminated = True
                    await self._runner.terminate(process)
            finally:
                self._publish(outcome)

    async def _run(self) -> Outcome:
        spec = self.spec

        err = self._ctx.err
        if err is not None:
            logger.debug(f"Context already done, not starting {spec.program}: {err}")
            return Outcome.from_error(err)

        try:
            process = await self._runner.spawn(
                spec, stdout=self._write_fd, stderr=self._write_fd
            )
        except Exception as e:
            logger.debug(f"Failed to start {spec.program}: {e}")
            return Outcome.from_error(ProcessError.from_spawn_error(spec.program, spec.argv, e))
        finally:
            # The child holds its own copy; ours must go for EOF to arrive
            self._close_write_end()

        self._process = process
        returncode, err = await self._runner.race(self._ctx, process.wait)

        if err is not None:
            logger.debug(f"Context fired for pid={process.pid}: {err}")
            self._terminated = True
            await self._runner.terminate(process)
            return Outcome.from_error(err, returncode=process.returncode)

        logger.debug(
            f"Subprocess completed pid={process.pid} "
            f"returncode={returncode}"
        )
        if returncode == 0:
            return Outcome(OutcomeKind.OK, returncode=0)
        return Outcome.from_error(
            ProcessError.from_returncode(spec.program, spec.argv, returncode),
            returncode=returncode,
        )

    def _close_write_end(self) -> None:
        if self._write_fd is not None:
            os.close(self._write_fd)
            self._write_fd = None

    def _publish(self, outcome: Outcome) -> None:
        if self.done.done():
            return
        logger.debug(f"Outcome for {self.program}: {outcome.kind.value}")
        self.done.set_result(outcome)


async def launch(
    ctx: ExecContext | None,
    program: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
) -> ExecHandle:
    """Launch a command and return its handle without waiting for it.

    Args:
        ctx: Deadline/cancel token to observe (None = no deadline)
        program: Executable name or path; resolved via PATH, no shell
        args: Arguments, already split
        cwd: Working directory (None = inherit)
        env: Environment (None = inherit)
        runner: ProcessRunner to use (default: configured timeouts)

    Returns:
        A running ExecHandle

    Raises:
        ConstructionError: Only if the output pipe could not be set up
    """
    spec = CommandSpec.of(program, args, cwd=cwd, env=env)
    return await ExecHandle.start(ctx, spec, runner=runner)
