"""Deadline and cancellation token.

An ExecContext is owned by the caller. Launched commands only observe it:
they read ``err`` and await ``wait()``, and never cancel it themselves.

Example:
    ctx = ExecContext.with_timeout(5.0)
    handle = await launch(ctx, "make", ["test"])
    ...
    ctx.cancel()  # from any thread

Contexts form a tree: ``ctx.child()`` fires when either the child itself or
any ancestor fires, and reports the ancestor's reason in the latter case.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

import anyio

from .errors import Canceled, ContextError, DeadlineExceeded

__all__ = ["ExecContext"]

logger = logging.getLogger(__name__)


class ExecContext:
    """Thread-safe deadline/cancel token.

    Attributes:
        parent: Context this one was derived from, if any
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        deadline: float | None = None,
        parent: ExecContext | None = None,
    ) -> None:
        """Create a context.

        Args:
            timeout: Seconds from now until the context expires
            deadline: Absolute ``time.monotonic()`` expiry
            parent: Context whose termination also terminates this one
        """
        if timeout is not None:
            expiry = time.monotonic() + timeout
            deadline = expiry if deadline is None else min(deadline, expiry)

        self.parent = parent
        self._own_deadline = deadline
        self._lock = threading.Lock()
        self._err: ContextError | None = None
        self._waiters: set[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = set()

    @classmethod
    def background(cls) -> ExecContext:
        """Context that only ends through an explicit cancel()."""
        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> ExecContext:
        return cls(timeout=seconds)

    def child(self, timeout: float | None = None) -> ExecContext:
        """Derive a context bounded by this one."""
        return ExecContext(timeout, parent=self)

    @property
    def deadline(self) -> float | None:
        """Earliest expiry of this context and its ancestors."""
        candidates = [self._own_deadline]
        if self.parent is not None:
            candidates.append(self.parent.deadline)
        candidates = [d for d in candidates if d is not None]
        return min(candidates) if candidates else None

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None without one."""
        deadline = self.deadline
        if deadline is None:
            return None
        return deadline - time.monotonic()

    @property
    def err(self) -> ContextError | None:
        """Termination reason, or None while the context is live.

        The first reason recorded is final.
        """
        with self._lock:
            if self._err is not None:
                return self._err

        if self.parent is not None:
            parent_err = self.parent.err
            if parent_err is not None:
                return self._fire(parent_err)

        if self._own_deadline is not None and time.monotonic() >= self._own_deadline:
            return self._fire(DeadlineExceeded())

        return None

    def done(self) -> bool:
        return self.err is not None

    def cancel(self) -> None:
        """Cancel the context. Safe to call from any thread, repeatedly."""
        if self.err is None:
            self._fire(Canceled())

    def _fire(self, err: ContextError) -> ContextError:
        with self._lock:
            if self._err is None:
                self._err = err
            result = self._err
            waiters = list(self._waiters)

        for loop, event in waiters:
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # Loop already closed; its waiter is gone with it.
                logger.debug("Skipping waiter on closed event loop")

        return result

    async def wait(self) -> ContextError:
        """Block until the context fires and return the reason.

        Races the cancel event, the deadline timer and the parent context.
        """
        err = self.err
        if err is not None:
            return err

        event = asyncio.Event()
        waiter = (asyncio.get_running_loop(), event)
        with self._lock:
            self._waiters.add(waiter)

        try:
            # Re-check: cancel() may have run before the waiter was registered
            if self.err is None:
                async with anyio.create_task_group() as tg:
                    if self.parent is not None:
                        tg.start_soon(self._follow_parent, self.parent, event)
                    with anyio.move_on_after(self.remaining()):
                        await event.wait()
                    tg.cancel_scope.cancel()
        finally:
            with self._lock:
                self._waiters.discard(waiter)

        # The timer may wake a hair before the monotonic deadline
        return self.err or self._fire(DeadlineExceeded())

    async def _follow_parent(self, parent: ExecContext, event: asyncio.Event) -> None:
        await parent.wait()
        event.set()

    def __enter__(self) -> ExecContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    async def __aenter__(self) -> ExecContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.cancel()

    def __repr__(self) -> str:
        err = self.err
        state = "live" if err is None else str(err)
        remaining = self.remaining()
        remaining_str = "none" if remaining is None else f"{remaining:.3f}s"
        return f"ExecContext(state={state}, remaining={remaining_str})"
