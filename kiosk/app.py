"""Startup wiring for kiosk-bridge.

Starts the browser first so the dashboard is visible as early as possible,
then, when an MQTT url is configured, brings up the hardware probes, the
poller and the Home Assistant publisher around it. A host that cannot run the
hardware core still gets the browser.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Sequence

from kiosk import __version__, systemd_notify
from kiosk.capabilities import CapabilitySet, UnsupportedHostError, resolve_capabilities
from kiosk.config import ConfigError, KioskConfig
from kiosk.events import DISPLAY_CHANGED, EventBus
from kiosk.hardware import HostProbe
from kiosk.identity import DeviceIdentity, build_identity
from kiosk.integration import DiscoveryPublisher
from kiosk.poller import KeyboardWatcher, Poller
from kiosk.window import ChromiumWindow, InputLock, WindowControl, launch_browser, wait_for_devtools

LOGGER = logging.getLogger("kiosk")

BROWSER_EXIT_TIMEOUT_SECONDS = 5.0


def log_device_summary(identity: DeviceIdentity, capabilities: CapabilitySet) -> None:
    LOGGER.info("Device: %s (%s)", identity.display_name, identity.node_id)
    LOGGER.info("Model: %s / %s", identity.vendor, identity.model)
    LOGGER.info("Serial number: %s", identity.serial_number)
    LOGGER.info("Session: %s (display %s)", capabilities.session_type.value, capabilities.display_name or "unknown")
    supported = [name for name in capabilities.as_dict() if capabilities.supports(name)]
    LOGGER.info("Capabilities: %s", ", ".join(supported) or "none")


class KioskBridge:
    """Hardware probes, poller and MQTT publisher for one kiosk."""

    def __init__(self, config: KioskConfig, window: WindowControl) -> None:
        self.config = config
        self.window = window
        self.publisher: DiscoveryPublisher | None = None
        self._watcher: KeyboardWatcher | None = None
        self._tasks: list[asyncio.Task] = []

    def start(self) -> bool:
        try:
            capabilities = resolve_capabilities()
        except UnsupportedHostError as exc:
            LOGGER.warning("Hardware integration disabled: %s", exc)
            return False

        probe = HostProbe(capabilities)
        identity = build_identity(probe, __version__)
        log_device_summary(identity, capabilities)
        LOGGER.info("Machine id: %s", probe.get_machine_id() or "unknown")

        snapshot = probe.snapshot()
        bus = EventBus()
        poller = Poller(probe, snapshot, bus)
        self.publisher = DiscoveryPublisher(self.config, identity, capabilities, probe, snapshot, bus, self.window)

        self._tasks.append(asyncio.create_task(poller.run()))
        if capabilities.display_status:
            lock = InputLock(self.window, probe, snapshot)
            bus.subscribe(DISPLAY_CHANGED, lock.on_display_changed)
            self._tasks.append(asyncio.create_task(lock.run()))
        if capabilities.keyboard_visibility:
            self._watcher = KeyboardWatcher(poller.on_keyboard_signal)
            self._watcher.start()
        self.publisher.start()
        return True

    async def shutdown(self) -> None:
        if self.publisher is not None:
            self.publisher.mark_terminated()
            self.publisher.stop()
        if self._watcher is not None:
            await self._watcher.stop()
        for task in self._tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []


async def _close_browser(window: WindowControl, browser: asyncio.subprocess.Process) -> None:
    if browser.returncode is not None:
        return
    window.terminate_application()
    try:
        await asyncio.wait_for(browser.wait(), BROWSER_EXIT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        LOGGER.warning("Browser did not exit, terminating it")
        with contextlib.suppress(ProcessLookupError):
            browser.terminate()


async def run(config: KioskConfig) -> int:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    window = ChromiumWindow(config.devtools_url, on_terminate=stop_event.set)

    try:
        browser = await launch_browser(config)
    except OSError as exc:
        LOGGER.error("Unable to launch browser '%s': %s", config.browser_command, exc)
        return 1
    browser_task = asyncio.create_task(browser.wait())
    browser_task.add_done_callback(lambda _task: stop_event.set())

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    bridge: KioskBridge | None = None
    if config.mqtt_enabled:
        await wait_for_devtools(window)
        bridge = KioskBridge(config, window)
        if not bridge.start():
            bridge = None
    else:
        LOGGER.info("No MQTT url configured; running the browser only")

    systemd_notify.ready(f"Showing {config.web_url}")
    await stop_event.wait()
    systemd_notify.stopping()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.remove_signal_handler(sig)

    if bridge is not None:
        await bridge.shutdown()
    await _close_browser(window, browser)
    browser_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await browser_task
    LOGGER.info("Browser exited with status %s", browser.returncode)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        config = KioskConfig.from_sources(argv)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return 1
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    LOGGER.info("kiosk-bridge %s starting", __version__)

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
