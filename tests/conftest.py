"""Shared test fixtures for the kiosk-bridge test suite.

This module provides reusable fixtures for:
- MQTT client mocking
- Capability sets, device identity and configuration objects
- Host probe and window-control doubles
- A fake sysfs tree rooted in ``tmp_path``
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import Mock

import paho.mqtt.client as mqtt
import pytest
from kiosk.capabilities import CapabilitySet, SessionType
from kiosk.config import KioskConfig
from kiosk.events import EventBus
from kiosk.hardware import HardwareSnapshot, HostProbe
from kiosk.identity import DeviceIdentity
from kiosk.integration import DiscoveryPublisher
from kiosk.window import WindowMode

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client.

    ``publish`` returns an ``MQTTMessageInfo``-like mock with a success code and
    ``subscribe`` returns paho's ``(result, mid)`` tuple.
    """
    client = Mock(spec=mqtt.Client)
    client.connect_async = Mock()
    client.disconnect = Mock()
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))

    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)

    client.loop_start = Mock()
    client.loop_stop = Mock()
    return client


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def full_capabilities(tmp_path):
    """Every capability present on a Wayland session."""
    return CapabilitySet(
        session_type=SessionType.WAYLAND,
        display_status=True,
        display_brightness=True,
        keyboard_visibility=True,
        package_upgrades=True,
        processor_temperature=True,
        power_control=True,
        display_name="HDMI-A-1",
        backlight_path=tmp_path / "sys/class/backlight/rpi_backlight",
    )


@pytest.fixture
def identity():
    return DeviceIdentity(
        node_id="rpi_AB12CD",
        display_name="Living Room",
        model="Raspberry Pi 4 Model B Rev 1.5",
        vendor="Raspberry Pi Ltd",
        serial_number="10000000ab12cd",
        software_version="1.3.0",
    )


@pytest.fixture
def kiosk_config():
    return KioskConfig(
        web_url="http://homeassistant.local:8123",
        mqtt_url="mqtt://broker.local:1883",
        mqtt_user="kiosk",
        mqtt_password="secret",
    )


@pytest.fixture
def snapshot():
    return HardwareSnapshot(
        display_status="ON",
        display_brightness=80,
        keyboard_visibility="OFF",
        up_time=125.0,
        memory_size=8.0,
        memory_usage=75.0,
        processor_usage=12.5,
        processor_temperature=48.3,
    )


@pytest.fixture
def mock_probe():
    """Host probe double; setters record calls and never touch the host."""
    probe = Mock(spec=HostProbe)
    probe.get_host_name.return_value = "living-room"
    probe.get_package_upgrades.return_value = ["chromium", "openssl"]
    return probe


@pytest.fixture
def mock_window():
    window = Mock()
    window.get_window_mode.return_value = WindowMode.FULLSCREEN
    window.get_last_input_timestamp.return_value = None
    window.set_window_mode.return_value = True
    window.reload_content.return_value = True
    return window


@pytest.fixture
def make_publisher(kiosk_config, identity, full_capabilities, mock_probe, snapshot, mock_window, mock_mqtt_client):
    """Factory for publishers wired to the shared doubles.

    Usage:
        publisher = make_publisher(capabilities=CapabilitySet(...))
    """

    def _create(**overrides: Any) -> DiscoveryPublisher:
        kwargs: dict[str, Any] = {
            "config": kiosk_config,
            "identity": identity,
            "capabilities": full_capabilities,
            "probe": mock_probe,
            "snapshot": snapshot,
            "bus": EventBus(),
            "window": mock_window,
            "client_factory": Mock(return_value=mock_mqtt_client),
        }
        kwargs.update(overrides)
        return DiscoveryPublisher(**kwargs)

    return _create


# ============================================================================
# Fake sysfs
# ============================================================================


@pytest.fixture
def sysfs(tmp_path):
    """Write files below ``tmp_path``.

    Usage:
        sysfs({"sys/class/backlight/bl/brightness": "128\\n"})
    """

    def _write(files: dict[str, str]) -> Path:
        for relative, content in files.items():
            path = tmp_path / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return tmp_path

    return _write
