"""Command execution helpers for the host probes.

Two flavours exist. ``run_sync`` executes cheap probe commands inline and
returns their output or ``None``. ``spawn`` starts side-effecting commands as
child processes on the running asyncio loop and hands back a task resolving to
a :class:`CommandResult`; neither flavour raises on command failure.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess  # nosec B404 - probes rely on CLI calls
from collections.abc import Callable, Sequence
from dataclasses import dataclass

LOGGER = logging.getLogger("kiosk.shell")

SYNC_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command: exactly one of ``output`` / ``error`` is set."""

    output: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, output: str) -> CommandResult:
        return cls(output=output, error=None)

    @classmethod
    def failure(cls, error: str) -> CommandResult:
        return cls(output=None, error=error or "unknown error")

    @property
    def ok(self) -> bool:
        return self.error is None


CommandCallback = Callable[[CommandResult], None]

_BACKGROUND: set[asyncio.Task] = set()


def runtime_env() -> dict[str, str]:
    env = os.environ.copy()
    env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return env


def elevated(args: Sequence[str]) -> list[str]:
    """Wrap a command so it runs with root privileges without prompting."""
    return ["sudo", "-n", *args]


def _clean(text: str) -> str:
    return text.replace("\0", "").strip()


def run_sync(args: Sequence[str], *, input_text: str | None = None, timeout: float = SYNC_TIMEOUT_SECONDS) -> str | None:
    """Run a command inline and return its trimmed stdout, or None on failure."""
    command = list(args)
    try:
        result = subprocess.run(  # nosec B603 - callers pass fixed command arrays
            command,
            capture_output=True,
            text=True,
            check=True,
            input=input_text,
            timeout=timeout,
            env=runtime_env(),
        )
    except FileNotFoundError as exc:
        LOGGER.debug("[shell] %s not available: %s", command[0], exc)
        return None
    except subprocess.CalledProcessError as exc:
        LOGGER.debug("[shell] %s failed (exit %s): %s", " ".join(command), exc.returncode, (exc.stderr or "").strip())
        return None
    except subprocess.TimeoutExpired:
        LOGGER.warning("[shell] %s timed out after %.0fs", " ".join(command), timeout)
        return None
    return _clean(result.stdout)


async def run_async(args: Sequence[str], *, input_text: str | None = None) -> CommandResult:
    """Run a command as a child process without blocking the loop."""
    command = list(args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=runtime_env(),
        )
    except OSError as exc:
        LOGGER.warning("[shell] Failed to start %s: %s", command[0], exc)
        return CommandResult.failure(str(exc))
    stdout, stderr = await proc.communicate(input_text.encode("utf-8") if input_text is not None else None)
    if proc.returncode == 0:
        return CommandResult.success(_clean(stdout.decode("utf-8", errors="ignore")))
    error = _clean(stderr.decode("utf-8", errors="ignore")) or f"exit status {proc.returncode}"
    LOGGER.warning("[shell] %s failed: %s", " ".join(command), error)
    return CommandResult.failure(error)


async def _resolved(result: CommandResult) -> CommandResult:
    return result


def _track(task: asyncio.Task, callback: CommandCallback | None) -> asyncio.Task:
    _BACKGROUND.add(task)

    def _done(finished: asyncio.Task) -> None:
        _BACKGROUND.discard(finished)
        if callback is None or finished.cancelled():
            return
        try:
            callback(finished.result())
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("[shell] Command callback failed: %s", exc, exc_info=True)

    task.add_done_callback(_done)
    return task


def spawn(
    args: Sequence[str],
    callback: CommandCallback | None = None,
    *,
    input_text: str | None = None,
) -> asyncio.Task:
    """Fire-and-forget a command; ``callback`` receives the CommandResult."""
    return _track(asyncio.ensure_future(run_async(args, input_text=input_text)), callback)


def reject(error: str, callback: CommandCallback | None = None) -> asyncio.Task:
    """Complete a command request with an error without running anything."""
    LOGGER.error("[shell] %s", error)
    return _track(asyncio.ensure_future(_resolved(CommandResult.failure(error))), callback)
