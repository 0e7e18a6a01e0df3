"""Runtime module for child process launch and termination.

Both the streaming handle and the capture helper start their children
through ProcessRunner.
"""

from __future__ import annotations

from .process_runner import CommandSpec, ProcessRunner

__all__ = [
    "CommandSpec",
    "ProcessRunner",
]
