"""
Hardware change detection

Samples the host probes on fixed cadences and raises change notifications
only when a value actually moved:

- Display status/brightness every 500 ms (users toggle the screen by hand and
  expect the dashboard to follow quickly)
- Up time, memory and processor metrics every 60 s
- On-screen keyboard visibility pushed by a ``dbus-monitor`` child process

A failed probe yields ``None`` for that tick and is retried by the next one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from kiosk import shell
from kiosk.events import DISPLAY_CHANGED, KEYBOARD_CHANGED, EventBus
from kiosk.hardware import HardwareSnapshot, HostProbe

LOGGER = logging.getLogger("kiosk.poller")

DISPLAY_INTERVAL_SECONDS = 0.5
METRICS_INTERVAL_SECONDS = 60.0

KEYBOARD_SIGNAL_MATCH = (
    "type='signal',interface='org.freedesktop.DBus.Properties',"
    "member='PropertiesChanged',path='/sm/puri/OSK0'"
)

_UNSET = object()


class ChangeDetector:
    """Remembers the previous value per field; the first observation always counts as a change."""

    def __init__(self) -> None:
        self._previous: dict[str, Any] = {}

    def observe(self, field: str, value: Any) -> bool:
        if self._previous.get(field, _UNSET) == value:
            return False
        self._previous[field] = value
        return True

    def previous(self, field: str) -> Any:
        value = self._previous.get(field, _UNSET)
        return None if value is _UNSET else value


class Poller:
    def __init__(self, probe: HostProbe, snapshot: HardwareSnapshot, bus: EventBus) -> None:
        self.probe = probe
        self.snapshot = snapshot
        self.bus = bus
        self.detector = ChangeDetector()

    def poll_display(self) -> bool:
        status = self.probe.get_display_status()
        brightness = self.probe.get_display_brightness()
        status_changed = self.detector.observe("display_status", status)
        brightness_changed = self.detector.observe("display_brightness", brightness)
        self.snapshot.display_status = status
        self.snapshot.display_brightness = brightness
        if not (status_changed or brightness_changed):
            return False
        LOGGER.info("[poller] Display changed: status=%s brightness=%s", status, brightness)
        self.bus.emit(DISPLAY_CHANGED)
        return True

    def poll_keyboard(self) -> bool:
        visibility = self.probe.get_keyboard_visibility()
        self.snapshot.keyboard_visibility = visibility
        if not self.detector.observe("keyboard_visibility", visibility):
            return False
        LOGGER.info("[poller] Keyboard visibility changed: %s", visibility)
        self.bus.emit(KEYBOARD_CHANGED)
        return True

    def on_keyboard_signal(self, visible: bool) -> None:
        self.probe.update_keyboard_visibility(visible)
        self.poll_keyboard()

    def poll_metrics(self) -> None:
        self.snapshot.up_time = self.probe.get_up_time()
        self.snapshot.memory_size = self.probe.get_memory_size()
        self.snapshot.memory_usage = self.probe.get_memory_usage()
        self.snapshot.processor_usage = self.probe.get_processor_usage()
        self.snapshot.processor_temperature = self.probe.get_processor_temperature()

    async def run(self) -> None:
        self.poll_keyboard()
        await asyncio.gather(
            _every(DISPLAY_INTERVAL_SECONDS, self.poll_display, "display"),
            _every(METRICS_INTERVAL_SECONDS, self.poll_metrics, "metrics"),
        )


async def _every(interval: float, action: Callable[[], Any], name: str) -> None:
    while True:
        try:
            action()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("[poller] %s tick failed: %s", name, exc, exc_info=True)
        await asyncio.sleep(interval)


class KeyboardSignalParser:
    """Extracts ``Visible`` updates from ``dbus-monitor`` output.

    The value arrives on the line following ``string "Visible"``::

        dict entry(
           string "Visible"
           variant             boolean true
        )
    """

    def __init__(self) -> None:
        self._expect_value = False

    def feed(self, line: str) -> bool | None:
        text = line.strip()
        if text == 'string "Visible"':
            self._expect_value = True
            return None
        if self._expect_value and "boolean" in text:
            self._expect_value = False
            if text.endswith("true"):
                return True
            if text.endswith("false"):
                return False
        return None


class KeyboardWatcher:
    """Follows on-screen keyboard visibility through a detached ``dbus-monitor``."""

    def __init__(self, on_visible: Callable[[bool], None]) -> None:
        self._on_visible = on_visible
        self._process: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._watch())

    async def _watch(self) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                "dbus-monitor",
                "--session",
                KEYBOARD_SIGNAL_MATCH,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=shell.runtime_env(),
            )
        except OSError as exc:
            LOGGER.warning("[poller] Unable to start dbus-monitor: %s", exc)
            return
        parser = KeyboardSignalParser()
        assert self._process.stdout is not None
        async for raw in self._process.stdout:
            visible = parser.feed(raw.decode("utf-8", errors="ignore"))
            if visible is None:
                continue
            try:
                self._on_visible(visible)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("[poller] Keyboard signal handler failed: %s", exc, exc_info=True)
        LOGGER.warning("[poller] dbus-monitor exited with status %s", await self._process.wait())

    async def stop(self) -> None:
        if self._process is not None and self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        self._process = None
