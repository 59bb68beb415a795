"""Inbound MQTT command payloads.

Every command topic accepts exactly one closed set of payloads. Payloads are
validated here, before anything touches the hardware or the window, and
anything outside the set raises :class:`InvalidCommandError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from kiosk.window import WindowMode

BRIGHTNESS_MIN = 1
BRIGHTNESS_MAX = 100

_BRIGHTNESS_RE = re.compile(r"[0-9]{1,3}")


class InvalidCommandError(ValueError):
    """Payload outside the topic's accepted values."""


class PowerState(str, Enum):
    ON = "ON"
    OFF = "OFF"


class Button(str, Enum):
    SHUTDOWN = "shutdown"
    REBOOT = "reboot"
    REFRESH = "refresh"


@dataclass(frozen=True)
class PressButton:
    button: Button


@dataclass(frozen=True)
class SetWindowMode:
    mode: WindowMode


@dataclass(frozen=True)
class SetDisplayPower:
    state: PowerState


@dataclass(frozen=True)
class SetDisplayBrightness:
    percent: int


@dataclass(frozen=True)
class SetKeyboardVisibility:
    state: PowerState


Command = PressButton | SetWindowMode | SetDisplayPower | SetDisplayBrightness | SetKeyboardVisibility


def decode_payload(payload: bytes | str) -> str:
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidCommandError(f"Payload is not valid UTF-8: {payload!r}") from exc
    return payload.strip()


def parse_button(button: Button, _payload: bytes | str) -> PressButton:
    """Buttons ignore the payload; any message is a press."""
    return PressButton(button)


def parse_window_mode(payload: bytes | str) -> SetWindowMode:
    text = decode_payload(payload)
    try:
        return SetWindowMode(WindowMode(text))
    except ValueError:
        options = ", ".join(mode.value for mode in WindowMode)
        raise InvalidCommandError(f"Window mode must be one of {options}, got '{text}'") from None


def parse_power_state(payload: bytes | str) -> PowerState:
    text = decode_payload(payload)
    try:
        return PowerState(text)
    except ValueError:
        raise InvalidCommandError(f"Status must be 'ON' or 'OFF', got '{text}'") from None


def parse_display_power(payload: bytes | str) -> SetDisplayPower:
    return SetDisplayPower(parse_power_state(payload))


def parse_keyboard_visibility(payload: bytes | str) -> SetKeyboardVisibility:
    return SetKeyboardVisibility(parse_power_state(payload))


def parse_display_brightness(payload: bytes | str) -> SetDisplayBrightness:
    text = decode_payload(payload)
    if not _BRIGHTNESS_RE.fullmatch(text):
        raise InvalidCommandError(f"Brightness must be an integer, got '{text}'")
    percent = int(text)
    if not BRIGHTNESS_MIN <= percent <= BRIGHTNESS_MAX:
        raise InvalidCommandError(f"Brightness must be between {BRIGHTNESS_MIN} and {BRIGHTNESS_MAX}, got {percent}")
    return SetDisplayBrightness(percent)
