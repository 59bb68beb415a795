"""Host capability detection.

Runs once at startup, before anything touches the host probes, and decides
which hardware facilities exist on this device. The resulting
:class:`CapabilitySet` gates both the probe backends and the entities that
are announced to Home Assistant.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import psutil

from kiosk import shell

LOGGER = logging.getLogger("kiosk.capabilities")

REQUIRED_PATHS = ("sys/class/drm",)
BACKLIGHT_DIR = "sys/class/backlight"
THERMAL_DIR = "sys/class/thermal"
KNOWN_THERMAL_TYPES = (
    "cpu-thermal",
    "cpu_thermal",
    "soc_thermal",
    "x86_pkg_temp",
    "coretemp",
    "k10temp",
    "acpitz",
)
KEYBOARD_DAEMON = "squeekboard"


class UnsupportedHostError(RuntimeError):
    """The host lacks a subsystem the hardware integration cannot run without."""


class SessionType(str, Enum):
    WAYLAND = "wayland"
    X11 = "x11"
    TTY = "tty"


@dataclass(frozen=True)
class CapabilitySet:
    session_type: SessionType
    display_status: bool = False
    display_brightness: bool = False
    keyboard_visibility: bool = False
    package_upgrades: bool = False
    processor_temperature: bool = False
    power_control: bool = False
    display_name: str | None = None
    backlight_path: Path | None = None

    def supports(self, name: str) -> bool:
        value = getattr(self, name, None)
        return isinstance(value, bool) and value

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["session_type"] = self.session_type.value
        data["backlight_path"] = str(self.backlight_path) if self.backlight_path else None
        return data


def detect_session_type(env: Mapping[str, str]) -> SessionType:
    declared = (env.get("XDG_SESSION_TYPE") or "").strip().lower()
    if declared == SessionType.WAYLAND.value:
        return SessionType.WAYLAND
    if declared == SessionType.X11.value:
        return SessionType.X11
    if env.get("WAYLAND_DISPLAY"):
        return SessionType.WAYLAND
    if env.get("DISPLAY"):
        return SessionType.X11
    return SessionType.TTY


def detect_display_name(session_type: SessionType) -> str | None:
    """Name of the primary output, e.g. ``HDMI-A-1``."""
    if session_type is SessionType.WAYLAND:
        output = shell.run_sync(["wlopm"])
        if output:
            return output.splitlines()[0].split(" ")[0] or None
    elif session_type is SessionType.X11:
        output = shell.run_sync(["xrandr", "--query"])
        if output:
            for line in output.splitlines():
                if " connected" in line:
                    return line.split(" ")[0]
    return None


def find_backlight_device(root: Path, display_name: str | None = None) -> Path | None:
    """Find the backlight device directory.

    A device whose ``display_name`` mentions the active output wins; otherwise
    the first device exposing both ``brightness`` and ``max_brightness``.
    """
    backlight_dir = root / BACKLIGHT_DIR
    if not backlight_dir.is_dir():
        return None
    candidates: list[Path] = []
    for device in sorted(backlight_dir.iterdir()):
        if not ((device / "brightness").exists() and (device / "max_brightness").exists()):
            continue
        candidates.append(device)
        if display_name:
            try:
                name = (device / "display_name").read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if display_name in name:
                return device
    return candidates[0] if candidates else None


def find_thermal_zone(root: Path, known_types: Iterable[str] = KNOWN_THERMAL_TYPES) -> Path | None:
    """First thermal zone whose ``type`` matches a known CPU label."""
    thermal_dir = root / THERMAL_DIR
    if not thermal_dir.is_dir():
        return None
    zones: dict[str, Path] = {}
    for zone in sorted(thermal_dir.glob("thermal_zone*")):
        try:
            label = (zone / "type").read_text(encoding="utf-8").strip()
        except OSError:
            continue
        zones.setdefault(label, zone)
    for label in known_types:
        if label in zones:
            return zones[label]
    return None


def running_process_names() -> set[str]:
    names: set[str] = set()
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name")
        if name:
            names.add(name)
    return names


def resolve_capabilities(
    root: Path = Path("/"),
    env: Mapping[str, str] | None = None,
    which: Callable[[str], str | None] = shutil.which,
    platform: str | None = None,
    process_names: Callable[[], set[str]] = running_process_names,
) -> CapabilitySet:
    """Probe the host and return the supported capabilities.

    Raises:
        UnsupportedHostError: Not a Linux host, or a required path is missing.
    """
    platform = platform or sys.platform
    if not platform.startswith("linux"):
        raise UnsupportedHostError(f"Platform '{platform}' is not supported")
    for relative in REQUIRED_PATHS:
        if not (root / relative).exists():
            raise UnsupportedHostError(f"Required path /{relative} is missing")

    env = os.environ if env is None else env
    session_type = detect_session_type(env)

    display_name = detect_display_name(session_type)
    if session_type is SessionType.WAYLAND:
        display_status = which("wlopm") is not None and display_name is not None
    elif session_type is SessionType.X11:
        display_status = which("xset") is not None
    else:
        display_status = False

    backlight_path = find_backlight_device(root, display_name)

    keyboard_visibility = False
    if which("busctl") and which("dbus-monitor"):
        try:
            keyboard_visibility = KEYBOARD_DAEMON in process_names()
        except psutil.Error as exc:
            LOGGER.debug("[capabilities] Unable to list processes: %s", exc)

    capabilities = CapabilitySet(
        session_type=session_type,
        display_status=display_status,
        display_brightness=backlight_path is not None,
        keyboard_visibility=keyboard_visibility,
        package_upgrades=which("apt") is not None,
        processor_temperature=find_thermal_zone(root) is not None or which("vcgencmd") is not None,
        power_control=which("sudo") is not None,
        display_name=display_name,
        backlight_path=backlight_path,
    )
    LOGGER.info("[capabilities] Resolved %s", capabilities.as_dict())
    return capabilities
