"""cmdstream - run external commands with live output or captured buffers.

Two modes over one child process:
    launch(): streaming handle, combined stdout+stderr as a live byte stream
        plus a one-shot completion future
    output() / capture(): blocking (or awaitable) run-to-completion with
        separate stdout/stderr buffers and the exit code

Both observe a caller-owned ExecContext (deadline and/or cancel).

Environment variables:
    CMDSTREAM_TERM_TIMEOUT: SIGTERM grace before SIGKILL (default 0)
    CMDSTREAM_KILL_TIMEOUT: wait for a killed child to exit (default 1.0)
    CMDSTREAM_READ_CHUNK_SIZE: chunk size for async iteration (default 4096)
    CMDSTREAM_LOG_DEBUG: debug logging to a temp file (default false)

Call setup_logging() once at startup to route the package logs according
to these settings.
"""

__version__ = "0.1.0"

from .capture import CaptureResult, capture, output
from .context import ExecContext
from .errors import (
    Canceled,
    ConstructionError,
    ContextError,
    DeadlineExceeded,
    ExecError,
    ProcessError,
)
from .handle import ExecHandle, Outcome, OutcomeKind, launch
from .logs import setup_logging
from .runtime import CommandSpec, ProcessRunner

__all__ = [
    "__version__",
    "CaptureResult",
    "Canceled",
    "CommandSpec",
    "ConstructionError",
    "ContextError",
    "DeadlineExceeded",
    "ExecContext",
    "ExecError",
    "ExecHandle",
    "Outcome",
    "OutcomeKind",
    "ProcessError",
    "ProcessRunner",
    "capture",
    "launch",
    "output",
    "setup_logging",
]
