"""systemd ``sd_notify`` messages for the kiosk-bridge unit.

Every helper is a no-op unless the process was started by systemd with
``Type=notify`` (``$NOTIFY_SOCKET`` is set).
"""

from __future__ import annotations

import logging
import os
import socket

LOGGER = logging.getLogger("kiosk.systemd")


def _notify(message: str) -> bool:
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr.startswith("@"):
        addr = "\0" + addr[1:]  # abstract namespace
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.sendto(message.encode(), addr)
    except OSError as exc:
        LOGGER.debug("[systemd] Failed to send '%s': %s", message, exc)
        return False
    return True


def ready(status: str | None = None) -> bool:
    """Report that the browser is up and the bridge has started."""
    message = "READY=1"
    if status:
        message += f"\nSTATUS={status}"
    return _notify(message)


def stopping() -> bool:
    return _notify("STOPPING=1")
