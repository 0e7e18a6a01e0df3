"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Make src importable without installing
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"

from cmdstream.config import reload_config  # noqa: E402
from cmdstream.runtime import ProcessRunner  # noqa: E402


@pytest.fixture
def fixtures_dir() -> Path:
    """Directory holding the shell fixtures."""
    return FIXTURES_DIR


@pytest.fixture
def infinite_script() -> str:
    """Script that prints to stdout and stderr until killed."""
    return str(FIXTURES_DIR / "infinite.sh")


@pytest.fixture
def return_err_script() -> str:
    """Script that exits with status 10."""
    return str(FIXTURES_DIR / "return-err.sh")


@pytest.fixture
def listing_dir(tmp_path: Path) -> Path:
    """Directory with known file names to list."""
    directory = tmp_path / "listing"
    directory.mkdir()
    (directory / "exec.go").write_text("package exec\n")
    (directory / "exec_test.go").write_text("package exec\n")
    return directory


@pytest.fixture
def runner() -> ProcessRunner:
    """ProcessRunner that kills immediately, with a short reap timeout."""
    return ProcessRunner(term_timeout=0.0, kill_timeout=1.0)


@pytest.fixture
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Config loaded from an environment without CMDSTREAM_* variables."""
    for name in (
        "CMDSTREAM_TERM_TIMEOUT",
        "CMDSTREAM_KILL_TIMEOUT",
        "CMDSTREAM_READ_CHUNK_SIZE",
        "CMDSTREAM_LOG_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    config = reload_config()
    yield config
    reload_config()
