"""Named change channels between the poller and its consumers."""

from __future__ import annotations

import logging
from collections.abc import Callable

LOGGER = logging.getLogger("kiosk.events")

DISPLAY_CHANGED = "display_changed"
KEYBOARD_CHANGED = "keyboard_changed"
CHANNELS = (DISPLAY_CHANGED, KEYBOARD_CHANGED)

Listener = Callable[[], None]


class EventBus:
    """One-to-many notification per channel, in subscription order."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {channel: [] for channel in CHANNELS}

    def _channel(self, channel: str) -> list[Listener]:
        try:
            return self._listeners[channel]
        except KeyError:
            raise ValueError(f"Unknown channel '{channel}'") from None

    def subscribe(self, channel: str, listener: Listener) -> None:
        self._channel(channel).append(listener)

    def emit(self, channel: str) -> None:
        for listener in list(self._channel(channel)):
            try:
                listener()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("[events] Listener for '%s' failed: %s", channel, exc, exc_info=True)
