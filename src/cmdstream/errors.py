"""cmdstream exception classes.

Terminal outcomes of a launched command are reported as instances of these
classes, either raised (construction failures) or delivered through the
completion signal / capture result.
"""

from __future__ import annotations

import signal
from collections.abc import Sequence

__all__ = [
    "ExecError",
    "ConstructionError",
    "ProcessError",
    "ContextError",
    "DeadlineExceeded",
    "Canceled",
]


class ExecError(Exception):
    """Base exception for cmdstream."""
    pass


class ConstructionError(ExecError):
    """Resource setup failed before any process existed.

    Attributes:
        program: The program that was about to be launched
        cause: Underlying OS error
    """

    def __init__(self, program: str, cause: OSError) -> None:
        self.program = program
        self.cause = cause
        super().__init__(f"exec: {program!r}: pipe setup failed: {cause}")


class ProcessError(ExecError):
    """The command could not be started, or exited abnormally.

    Attributes:
        program: Program name as passed by the caller
        argv: Full argument vector
        returncode: Exit status (None when the process never started,
            negative signal number when killed by a signal)
        message: Platform description of the failure
    """

    def __init__(
        self,
        program: str,
        argv: Sequence[str],
        message: str,
        returncode: int | None = None,
    ) -> None:
        self.program = program
        self.argv = list(argv)
        self.returncode = returncode
        self.message = message
        super().__init__(f'exec: "{program}": {message}')

    @classmethod
    def from_spawn_error(cls, program: str, argv: Sequence[str], exc: Exception) -> "ProcessError":
        """Wrap a failed spawn attempt."""
        strerror = getattr(exc, "strerror", None)
        if strerror:
            message = f"[Errno {getattr(exc, 'errno', None)}] {strerror}"
            filename = getattr(exc, "filename", None)
            # A missing cwd fails with the directory, not the program, as filename
            if filename is not None and str(filename) != program:
                message += f": {str(filename)!r}"
        else:
            message = str(exc)
        return cls(program, argv, message)

    @classmethod
    def from_returncode(cls, program: str, argv: Sequence[str], returncode: int) -> "ProcessError":
        """Describe a non-zero exit status."""
        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            message = f"signal: {name}"
        else:
            message = f"exit status {returncode}"
        return cls(program, argv, message, returncode=returncode)


class ContextError(ExecError):
    """The caller's context fired before the command completed."""
    pass


class DeadlineExceeded(ContextError):
    """The context deadline elapsed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class Canceled(ContextError):
    """The context was canceled explicitly."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)
