"""Capture mode tests.

Test coverage:
- Blocking output(): buffers, exit code, error contract
- Non-zero exit is not an error; start failure / deadline / cancel are
- Awaitable capture() inside a running loop
"""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from pathlib import Path

import pytest

from cmdstream.capture import CaptureResult, capture, output
from cmdstream.context import ExecContext
from cmdstream.errors import Canceled, DeadlineExceeded, ProcessError
from cmdstream.runtime import ProcessRunner

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX commands")


# =============================================================================
# Blocking Output Tests
# =============================================================================


class TestOutput:
    """Test the blocking output() helper."""

    @pytest.mark.timeout(10)
    def test_echo(self):
        stdout, stderr, code, err = output(None, "echo", "hello")

        assert err is None
        assert stdout == b"hello\n"
        assert stderr == b""
        assert code == 0

    @pytest.mark.timeout(10)
    def test_missing_executable(self):
        stdout, stderr, code, err = output(None, "ec", "hello")

        assert err is not None
        assert isinstance(err, ProcessError)
        assert '"ec"' in str(err)
        assert stdout == b""
        assert stderr == b""
        assert code == 0

    @pytest.mark.timeout(10)
    def test_bad_env_value(self):
        result = output(None, "echo", "x", env={"A": 1})  # type: ignore[dict-item]

        assert isinstance(result.error, ProcessError)
        assert '"echo"' in str(result.error)
        assert result == CaptureResult(b"", b"", 0, result.error)

    @pytest.mark.timeout(10)
    def test_missing_cwd_names_directory(self, tmp_path: Path):
        missing = tmp_path / "gone"
        _, _, code, err = output(None, "ls", cwd=missing)

        assert isinstance(err, ProcessError)
        assert str(missing) in str(err)
        assert code == 0

    @pytest.mark.timeout(10)
    def test_return_code_is_not_error(self, return_err_script: str):
        stdout, stderr, code, err = output(ExecContext.background(), "/bin/bash", return_err_script)

        assert err is None
        assert code == 10
        assert stdout == b"about to fail\n"
        assert stderr == b"failing with 10\n"

    @pytest.mark.timeout(10)
    def test_separate_streams(self):
        result = output(None, "sh", "-c", "echo out; echo err >&2")

        assert result.stdout == b"out\n"
        assert result.stderr == b"err\n"
        assert result.ok

    @pytest.mark.timeout(10)
    def test_tiny_deadline(self):
        ctx = ExecContext.with_timeout(0.0001)
        stdout, stderr, code, err = output(ctx, "sleep", "10")

        assert isinstance(err, DeadlineExceeded)
        assert (stdout, stderr, code) == (b"", b"", 0)

    @pytest.mark.timeout(15)
    def test_generous_deadline(self):
        ctx = ExecContext.with_timeout(10)
        _, _, code, err = output(ctx, "sleep", "1")

        assert err is None
        assert code == 0

    @pytest.mark.timeout(10)
    def test_deadline_discards_partial_output(self):
        ctx = ExecContext.with_timeout(0.5)
        start = time.monotonic()
        stdout, stderr, code, err = output(
            ctx, "sh", "-c", "echo partial; echo partial >&2; exec sleep 10"
        )
        elapsed = time.monotonic() - start

        assert isinstance(err, DeadlineExceeded)
        assert (stdout, stderr, code) == (b"", b"", 0)
        assert elapsed < 5

    @pytest.mark.timeout(10)
    def test_cancel_from_another_thread(self):
        ctx = ExecContext.background()
        timer = threading.Timer(0.3, ctx.cancel)
        timer.start()
        try:
            _, _, code, err = output(ctx, "sleep", "10")
        finally:
            timer.join()

        assert isinstance(err, Canceled)
        assert code == 0

    @pytest.mark.timeout(10)
    def test_already_canceled(self):
        ctx = ExecContext.background()
        ctx.cancel()

        result = output(ctx, "echo", "never")

        assert isinstance(result.error, Canceled)
        assert result == CaptureResult(b"", b"", 0, result.error)

    @pytest.mark.timeout(10)
    def test_cwd(self, tmp_path: Path):
        stdout, _, _, err = output(None, "pwd", cwd=tmp_path)

        assert err is None
        assert tmp_path.name in stdout.decode()

    @pytest.mark.timeout(10)
    def test_killed_by_foreign_signal(self):
        """A child that dies from a signal reports it in exit_code."""
        _, _, code, err = output(None, "sh", "-c", "kill -TERM $$")

        assert err is None
        assert code == -15


# =============================================================================
# Async Capture Tests
# =============================================================================


class TestCapture:
    """Test the awaitable capture()."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_capture_in_running_loop(self, runner: ProcessRunner):
        result = await capture(None, "echo", "hello", runner=runner)

        assert result == CaptureResult(b"hello\n", b"", 0, None)

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_capture_cancel_same_loop(self, runner: ProcessRunner):
        ctx = ExecContext.background()
        asyncio.get_running_loop().call_later(0.2, ctx.cancel)

        result = await capture(ctx, "sleep", "10", runner=runner)

        assert isinstance(result.error, Canceled)
        assert result.exit_code == 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_caller_cancellation_kills_child(self, runner: ProcessRunner):
        task = asyncio.create_task(capture(None, "sleep", "10", runner=runner))
        await asyncio.sleep(0.3)
        start = time.monotonic()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert time.monotonic() - start < 3

    @pytest.mark.asyncio
    @pytest.mark.timeout(10)
    async def test_many_concurrent_captures(self, runner: ProcessRunner):
        results = await asyncio.gather(
            *(capture(None, "echo", str(i), runner=runner) for i in range(10))
        )

        assert [r.stdout for r in results] == [f"{i}\n".encode() for i in range(10)]


# =============================================================================
# CaptureResult Tests
# =============================================================================


class TestCaptureResult:
    """Test the result tuple."""

    def test_unpacks_in_order(self):
        stdout, stderr, code, err = CaptureResult(b"o", b"e", 3, None)
        assert (stdout, stderr, code, err) == (b"o", b"e", 3, None)

    def test_ok(self):
        assert CaptureResult(b"", b"", 0).ok
        assert not CaptureResult(b"", b"", 1).ok
        assert not CaptureResult(b"", b"", 0, Canceled()).ok
