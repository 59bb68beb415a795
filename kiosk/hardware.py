"""Host hardware probes for kiosk-bridge.

Every getter returns a typed value or ``None``; failures of the underlying
files and commands are logged and never raised. Side-effecting setters run as
child processes and report through a :class:`~kiosk.shell.CommandResult`.
"""

from __future__ import annotations

import logging
import math
import re
import socket
import time
from dataclasses import dataclass, fields
from pathlib import Path

import psutil

from kiosk import shell
from kiosk.capabilities import CapabilitySet, SessionType, find_thermal_zone
from kiosk.shell import CommandCallback
from kiosk.utils import clean_sysfs_text

LOGGER = logging.getLogger("kiosk.hardware")

DEFAULT_MODEL = "Generic"
DEFAULT_VENDOR = "Generic"
DEFAULT_SERIAL = "123456"

DEVICE_TREE_MODEL = "sys/firmware/devicetree/base/model"
DEVICE_TREE_SERIAL = "sys/firmware/devicetree/base/serial-number"
DMI_MODEL = "sys/class/dmi/id/product_name"
DMI_VENDOR = "sys/class/dmi/id/sys_vendor"
DMI_SERIAL = "sys/class/dmi/id/product_serial"
MACHINE_ID = "etc/machine-id"

KEYBOARD_SERVICE = "sm.puri.OSK0"
KEYBOARD_OBJECT = "/sm/puri/OSK0"

ON = "ON"
OFF = "OFF"
_STATUSES = (ON, OFF)
_VCGENCMD_TEMP_RE = re.compile(r"temp=(\d+(?:\.\d+)?)")


@dataclass
class HardwareSnapshot:
    """Last sampled hardware state shared by the poller and the publisher."""

    display_status: str | None = None
    display_brightness: int | None = None
    keyboard_visibility: str | None = None
    up_time: float | None = None
    memory_size: float | None = None
    memory_usage: float | None = None
    processor_usage: float | None = None
    processor_temperature: float | None = None

    def as_dict(self) -> dict[str, object]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def read_machine_id(root: Path = Path("/")) -> str | None:
    path = root / MACHINE_ID
    try:
        value = clean_sysfs_text(path.read_text(encoding="utf-8", errors="ignore"))
    except OSError as exc:
        LOGGER.debug("[hardware] Unable to read %s: %s", path, exc)
        return None
    return value or None


def native_brightness(percent: float, maximum: int) -> int:
    """Map a percentage onto the backlight's native ``1..maximum`` range."""
    percent = max(1.0, min(100.0, float(percent)))
    return max(1, min(round(percent / 100 * maximum), maximum))


def brightness_percent(value: int, maximum: int) -> int:
    return round(value / maximum * 100)


class HostProbe:
    def __init__(self, capabilities: CapabilitySet, root: Path = Path("/")) -> None:
        self.capabilities = capabilities
        self.root = root
        self._brightness_max: int | None = None
        self._keyboard_visibility: str | None = None
        if capabilities.keyboard_visibility:
            self._keyboard_visibility = self._query_keyboard_visibility()

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _path(self, relative: str) -> Path:
        return self.root / relative

    def _read_text(self, relative: str | Path) -> str | None:
        path = relative if isinstance(relative, Path) else self._path(relative)
        try:
            value = clean_sysfs_text(path.read_text(encoding="utf-8", errors="ignore"))
        except OSError as exc:
            LOGGER.debug("[hardware] Unable to read %s: %s", path, exc)
            return None
        return value or None

    def _read_privileged(self, relative: str) -> str | None:
        path = self._path(relative)
        if not path.exists():
            return None
        value = self._read_text(path)
        if value is not None:
            return value
        output = shell.run_sync(shell.elevated(["cat", str(path)]))
        return clean_sysfs_text(output) if output else None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def get_model(self) -> str:
        return self._read_text(DEVICE_TREE_MODEL) or self._read_text(DMI_MODEL) or DEFAULT_MODEL

    def get_vendor(self) -> str:
        model = self._read_text(DEVICE_TREE_MODEL)
        if model:
            if model.startswith("Raspberry Pi"):
                return "Raspberry Pi Ltd"
            return model.split(" ")[0]
        return self._read_text(DMI_VENDOR) or DEFAULT_VENDOR

    def get_serial_number(self) -> str:
        return self._read_text(DEVICE_TREE_SERIAL) or self._read_privileged(DMI_SERIAL) or DEFAULT_SERIAL

    def get_machine_id(self) -> str | None:
        return read_machine_id(self.root)

    @staticmethod
    def get_host_name() -> str:
        return socket.gethostname()

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    @staticmethod
    def get_up_time() -> float | None:
        """System up time in minutes."""
        try:
            return max(0.0, time.time() - psutil.boot_time()) / 60
        except (OSError, psutil.Error) as exc:
            LOGGER.warning("[hardware] Unable to read up time: %s", exc)
            return None

    @staticmethod
    def get_memory_size() -> float | None:
        """Total memory in GiB."""
        try:
            return psutil.virtual_memory().total / 1024**3
        except (OSError, psutil.Error) as exc:
            LOGGER.warning("[hardware] Unable to read memory size: %s", exc)
            return None

    @staticmethod
    def get_memory_usage() -> float | None:
        """Used memory in percent of the total."""
        try:
            memory = psutil.virtual_memory()
        except (OSError, psutil.Error) as exc:
            LOGGER.warning("[hardware] Unable to read memory usage: %s", exc)
            return None
        if not memory.total:
            return None
        return (memory.total - memory.available) / memory.total * 100

    @staticmethod
    def get_processor_usage() -> float | None:
        """Five minute load average relative to the CPU count, in percent."""
        try:
            load5 = psutil.getloadavg()[1]
            cpus = psutil.cpu_count() or 1
        except (OSError, psutil.Error) as exc:
            LOGGER.warning("[hardware] Unable to read processor usage: %s", exc)
            return None
        return load5 / cpus * 100

    def get_processor_temperature(self) -> float | None:
        """CPU temperature in °C."""
        zone = find_thermal_zone(self.root)
        if zone is not None:
            raw = self._read_text(zone / "temp")
            if raw is not None:
                try:
                    return int(raw) / 1000
                except ValueError:
                    LOGGER.warning("[hardware] Unexpected thermal reading '%s' in %s", raw, zone)
        output = shell.run_sync(["vcgencmd", "measure_temp"])
        if output:
            match = _VCGENCMD_TEMP_RE.search(output)
            if match:
                return float(match.group(1))
        return None

    @staticmethod
    def get_package_upgrades() -> list[str] | None:
        """Names of packages with a pending upgrade."""
        output = shell.run_sync(["apt", "list", "--upgradable"], timeout=120)
        if output is None:
            return None
        packages = []
        for line in output.splitlines():
            if "/" not in line or line.startswith("Listing"):
                continue
            packages.append(line.split("/", 1)[0])
        return packages

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def get_display_status(self) -> str | None:
        if not self.capabilities.display_status:
            return None
        if self.capabilities.session_type is SessionType.WAYLAND:
            output = shell.run_sync(["wlopm"])
            if output:
                status = output.splitlines()[0].split(" ")[-1].upper()
                return status if status in _STATUSES else None
            return None
        output = shell.run_sync(["xset", "q"])
        if output:
            if "Monitor is On" in output:
                return ON
            if "Monitor is" in output:
                return OFF
        return None

    def set_display_status(self, status: str, callback: CommandCallback | None = None):
        if status not in _STATUSES:
            return shell.reject("Invalid status", callback)
        if not self.capabilities.display_status:
            return shell.reject("Display status is not supported", callback)
        if self.capabilities.session_type is SessionType.WAYLAND:
            args = ["wlopm", f"--{status.lower()}", self.capabilities.display_name or "*"]
        else:
            args = ["xset", "dpms", "force", status.lower()]
        return shell.spawn(args, callback)

    def get_display_brightness_max(self) -> int | None:
        if self._brightness_max is None and self.capabilities.backlight_path is not None:
            raw = self._read_text(self.capabilities.backlight_path / "max_brightness")
            try:
                value = int(raw) if raw is not None else 0
            except ValueError:
                value = 0
            self._brightness_max = value if value > 0 else None
        return self._brightness_max

    def get_display_brightness(self) -> int | None:
        if not self.capabilities.display_brightness or self.capabilities.backlight_path is None:
            return None
        maximum = self.get_display_brightness_max()
        raw = self._read_text(self.capabilities.backlight_path / "brightness")
        if maximum is None or raw is None:
            return None
        try:
            return brightness_percent(int(raw), maximum)
        except ValueError:
            LOGGER.warning("[hardware] Unexpected brightness value '%s'", raw)
            return None

    def set_display_brightness(self, brightness: float, callback: CommandCallback | None = None):
        if not self.capabilities.display_brightness or self.capabilities.backlight_path is None:
            return shell.reject("Display brightness is not supported", callback)
        if isinstance(brightness, bool) or not isinstance(brightness, (int, float)) or not math.isfinite(brightness):
            return shell.reject("Invalid brightness", callback)
        maximum = self.get_display_brightness_max()
        if maximum is None:
            return shell.reject("Display brightness range is unknown", callback)
        value = native_brightness(brightness, maximum)
        target = self.capabilities.backlight_path / "brightness"
        return shell.spawn(shell.elevated(["tee", str(target)]), callback, input_text=str(value))

    # ------------------------------------------------------------------
    # On-screen keyboard
    # ------------------------------------------------------------------

    def _query_keyboard_visibility(self) -> str | None:
        output = shell.run_sync(
            ["busctl", "get-property", "--user", KEYBOARD_SERVICE, KEYBOARD_OBJECT, KEYBOARD_SERVICE, "Visible"]
        )
        if output is None:
            return None
        if output.endswith("true"):
            return ON
        if output.endswith("false"):
            return OFF
        return None

    def get_keyboard_visibility(self) -> str | None:
        if not self.capabilities.keyboard_visibility:
            return None
        return self._keyboard_visibility

    def update_keyboard_visibility(self, visible: bool) -> None:
        """Record a visibility change pushed by the D-Bus signal watcher."""
        self._keyboard_visibility = ON if visible else OFF

    def set_keyboard_visibility(self, status: str, callback: CommandCallback | None = None):
        if status not in _STATUSES:
            return shell.reject("Invalid status", callback)
        if not self.capabilities.keyboard_visibility:
            return shell.reject("Keyboard visibility is not supported", callback)
        visible = "true" if status == ON else "false"
        args = ["busctl", "call", "--user", KEYBOARD_SERVICE, KEYBOARD_OBJECT, KEYBOARD_SERVICE, "SetVisible", "b", visible]
        return shell.spawn(args, callback)

    # ------------------------------------------------------------------
    # Power
    # ------------------------------------------------------------------

    @staticmethod
    def shutdown_system(callback: CommandCallback | None = None):
        return shell.spawn(shell.elevated(["shutdown", "-h", "now"]), callback)

    @staticmethod
    def reboot_system(callback: CommandCallback | None = None):
        return shell.spawn(shell.elevated(["reboot"]), callback)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def snapshot(self) -> HardwareSnapshot:
        return HardwareSnapshot(
            display_status=self.get_display_status(),
            display_brightness=self.get_display_brightness(),
            keyboard_visibility=self.get_keyboard_visibility(),
            up_time=self.get_up_time(),
            memory_size=self.get_memory_size(),
            memory_usage=self.get_memory_usage(),
            processor_usage=self.get_processor_usage(),
            processor_temperature=self.get_processor_temperature(),
        )
