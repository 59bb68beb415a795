"""Tests for startup wiring (kiosk/app.py)."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest
from kiosk.app import KioskBridge, main, run
from kiosk.capabilities import UnsupportedHostError
from kiosk.config import KioskConfig
from kiosk.events import DISPLAY_CHANGED, EventBus

pytestmark = pytest.mark.anyio


def _exited_browser():
    process = Mock()
    process.returncode = 0
    process.wait = AsyncMock(return_value=0)
    return process


def test_main_without_web_url_exits_with_error(tmp_path):
    with patch.dict("os.environ", {"XDG_CONFIG_HOME": str(tmp_path)}, clear=True):
        assert main([]) == 1


async def test_browser_only_run_ends_with_browser():
    with (
        patch("kiosk.app.launch_browser", AsyncMock(return_value=_exited_browser())),
        patch("kiosk.app.KioskBridge") as bridge_class,
        patch("kiosk.app.systemd_notify") as notify,
    ):
        assert await run(KioskConfig(web_url="http://ha")) == 0
    bridge_class.assert_not_called()
    notify.ready.assert_called_once()
    notify.stopping.assert_called_once()


async def test_browser_launch_failure():
    with patch("kiosk.app.launch_browser", AsyncMock(side_effect=FileNotFoundError("chromium"))):
        assert await run(KioskConfig(web_url="http://ha")) == 1


async def test_run_with_mqtt_starts_and_stops_bridge():
    bridge = Mock()
    bridge.start.return_value = True
    bridge.shutdown = AsyncMock()
    with (
        patch("kiosk.app.launch_browser", AsyncMock(return_value=_exited_browser())),
        patch("kiosk.app.wait_for_devtools", AsyncMock(return_value=True)),
        patch("kiosk.app.KioskBridge", return_value=bridge),
        patch("kiosk.app.systemd_notify"),
    ):
        assert await run(KioskConfig(web_url="http://ha", mqtt_url="mqtt://broker")) == 0
    bridge.start.assert_called_once()
    bridge.shutdown.assert_awaited_once()


async def test_bridge_unsupported_host():
    with patch("kiosk.app.resolve_capabilities", side_effect=UnsupportedHostError("Platform 'darwin' is not supported")):
        bridge = KioskBridge(KioskConfig(web_url="http://ha", mqtt_url="mqtt://broker"), Mock())
        assert bridge.start() is False
    assert bridge.publisher is None
    await bridge.shutdown()


async def test_bridge_wires_components(full_capabilities, identity):
    publisher = Mock()
    watcher = Mock()
    watcher.stop = AsyncMock()
    poller = Mock()
    poller.run = AsyncMock()
    lock = Mock()
    lock.run = AsyncMock()
    bus = EventBus()
    with (
        patch("kiosk.app.resolve_capabilities", return_value=full_capabilities),
        patch("kiosk.app.HostProbe") as probe_class,
        patch("kiosk.app.EventBus", return_value=bus),
        patch("kiosk.app.InputLock", return_value=lock) as lock_class,
        patch("kiosk.app.build_identity", return_value=identity),
        patch("kiosk.app.Poller", return_value=poller),
        patch("kiosk.app.KeyboardWatcher", return_value=watcher) as watcher_class,
        patch("kiosk.app.DiscoveryPublisher", return_value=publisher),
    ):
        bridge = KioskBridge(KioskConfig(web_url="http://ha", mqtt_url="mqtt://broker"), Mock())
        assert bridge.start() is True
        await bridge.shutdown()

    probe = probe_class.return_value
    lock_class.assert_called_once_with(bridge.window, probe, probe.snapshot.return_value)
    lock.run.assert_called_once()
    lock.on_display_changed.assert_not_called()
    bus.emit(DISPLAY_CHANGED)
    lock.on_display_changed.assert_called_once()
    watcher_class.assert_called_once_with(poller.on_keyboard_signal)
    watcher.start.assert_called_once()
    publisher.start.assert_called_once()
    publisher.mark_terminated.assert_called_once()
    publisher.stop.assert_called_once()
    watcher.stop.assert_awaited_once()
