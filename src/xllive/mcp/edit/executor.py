from __future__ import annotations

from collections.abc import Callable
import logging
import subprocess
import time
from typing import Any

from ..errors import LiveChannelUnavailable, LiveCommandFailed
from .escaping import quote_for_shell
from .models import LiveSettings, RetryPolicy

logger = logging.getLogger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
Sleeper = Callable[[float], None]


class CommandExecutor:
    """Run AppleScript through ``osascript`` with timeout and retry.

    This is the only place live commands are launched. Failed attempts are
    retried after ``base_delay * attempt`` seconds.
    """

    def __init__(
        self,
        settings: LiveSettings,
        *,
        runner: Runner | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        """Create an executor.

        Args:
            settings: Live channel settings, including both retry policies.
            runner: Replacement for ``subprocess.run``.
            sleep: Replacement for ``time.sleep`` between attempts.
        """
        self._settings = settings
        self._runner = runner or subprocess.run
        self._sleep = sleep or time.sleep

    @property
    def settings(self) -> LiveSettings:
        """Live channel settings this executor was created with."""
        return self._settings

    def execute(self, script: str, *, retry: RetryPolicy | None = None) -> str:
        """Run a script and return its trimmed stdout.

        Args:
            script: AppleScript source; values inside must already be escaped.
            retry: Retry policy; defaults to the command policy.

        Returns:
            Trimmed stdout of the successful attempt.

        Raises:
            LiveChannelUnavailable: If ``osascript`` cannot be launched at all.
            LiveCommandFailed: If every attempt failed.
        """
        policy = retry or self._settings.command_retry
        for attempt in range(1, policy.max_attempts + 1):
            timed_out = False
            returncode: int | None = None
            try:
                completed = self._run_once(script, policy.timeout)
            except FileNotFoundError as exc:
                raise LiveChannelUnavailable(
                    f"{self._settings.osascript} is not available on this system ({exc})."
                ) from exc
            except subprocess.TimeoutExpired:
                timed_out = True
                error = f"timed out after {policy.timeout:g}s"
            else:
                if completed.returncode == 0:
                    return (completed.stdout or "").strip()
                returncode = completed.returncode
                error = (completed.stderr or "").strip() or f"exit status {returncode}"
            logger.warning(
                "AppleScript attempt %d/%d failed (%s): %s",
                attempt,
                policy.max_attempts,
                "timeout-kill" if timed_out else f"exit={returncode}",
                error,
            )
            if attempt == policy.max_attempts:
                raise LiveCommandFailed(
                    f"AppleScript failed after {attempt} attempt(s): {error}",
                    attempts=attempt,
                    timed_out=timed_out,
                    returncode=returncode,
                )
            self._sleep(policy.base_delay * attempt)
        raise LiveCommandFailed("AppleScript retry loop exited without a result.")

    def shell_command(self, script: str) -> str:
        """Return the ``/bin/sh`` form of the command with shell quoting applied."""
        return f"{self._settings.osascript} -e '{quote_for_shell(script)}'"

    def _run_once(
        self, script: str, timeout: float
    ) -> subprocess.CompletedProcess[str]:
        kwargs: dict[str, Any] = {
            "capture_output": True,
            "text": True,
            "timeout": timeout,
            "check": False,
        }
        if self._settings.use_shell:
            return self._runner(self.shell_command(script), shell=True, **kwargs)
        return self._runner([self._settings.osascript, "-e", script], **kwargs)


__all__ = ["CommandExecutor", "Runner", "Sleeper"]
