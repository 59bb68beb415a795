"""Stable device identity used to namespace every MQTT topic."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kiosk.hardware import HostProbe
from kiosk.utils import strip_non_alnum

NODE_PREFIX = "rpi"
SERIAL_SUFFIX_LENGTH = 6


@dataclass(frozen=True)
class DeviceIdentity:
    node_id: str
    display_name: str
    model: str
    vendor: str
    serial_number: str
    software_version: str

    def device_block(self) -> dict[str, Any]:
        """The ``device`` object shared by every discovery config."""
        return {
            "identifiers": [self.node_id],
            "name": self.display_name,
            "model": self.model,
            "manufacturer": self.vendor,
            "serial_number": self.serial_number,
            "sw_version": self.software_version,
        }


def build_node_id(serial_number: str, prefix: str = NODE_PREFIX) -> str:
    """Derive the node id from the last characters of the serial number.

    Example: ``10000000ab12cd`` -> ``rpi_AB12CD``
    """
    suffix = strip_non_alnum(serial_number[-SERIAL_SUFFIX_LENGTH:].upper()) or "0" * SERIAL_SUFFIX_LENGTH
    return f"{prefix}_{suffix}"


def build_display_name(hostname: str) -> str:
    """Human readable device name, e.g. ``living-room`` -> ``Living Room``."""
    return hostname.replace("-", " ").replace("_", " ").replace(".", " ").strip().title()


def build_identity(probe: HostProbe, software_version: str) -> DeviceIdentity:
    serial_number = probe.get_serial_number()
    return DeviceIdentity(
        node_id=build_node_id(serial_number),
        display_name=build_display_name(probe.get_host_name()),
        model=probe.get_model(),
        vendor=probe.get_vendor(),
        serial_number=serial_number,
        software_version=software_version,
    )
