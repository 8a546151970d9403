from __future__ import annotations

import os
import shutil
import sys

import pytest

from xllive.mcp.edit import executor as executor_module

IS_MACOS = sys.platform == "darwin"
RUN_LIVE_TESTS = os.getenv("RUN_LIVE_TESTS") == "1"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers to avoid pytest warnings."""
    config.addinivalue_line(
        "markers",
        "live: requires macOS with Microsoft Excel running (set RUN_LIVE_TESTS=1).",
    )


def _live_skip_reason() -> str | None:
    """Return a skip reason for live-marked tests, or None when they should run."""
    if not RUN_LIVE_TESTS:
        return "Live tests disabled; set RUN_LIVE_TESTS=1 to enable."
    if not IS_MACOS:
        return "Live tests require macOS."
    if shutil.which("osascript") is None:
        return "osascript is unavailable."
    return None


def pytest_runtest_setup(item: pytest.Item) -> None:
    """Skip live tests unless the environment can drive Excel."""
    if item.get_closest_marker("live") is not None:
        reason = _live_skip_reason()
        if reason:
            pytest.skip(reason)


@pytest.fixture(autouse=True)  # type: ignore[misc]
def _block_osascript_for_non_live_tests(
    request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Make an unmocked live command fail fast outside live-marked tests."""
    if request.node.get_closest_marker("live") is not None:
        return

    def _no_osascript(*args: object, **kwargs: object) -> object:
        raise FileNotFoundError("osascript disabled in tests")

    monkeypatch.setattr(executor_module.subprocess, "run", _no_osascript)
