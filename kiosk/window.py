"""Browser window control over the Chromium DevTools protocol.

The kiosk surface is a Chromium instance started in app mode with remote
debugging enabled. Window state, reloads, shutdown and input activity are all
driven through DevTools: targets are discovered over HTTP and commands are
sent over a short-lived websocket per call.

:class:`InputLock` keeps touches on a dark screen from reaching the page.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

import websocket

from kiosk import shell
from kiosk.config import KioskConfig
from kiosk.hardware import OFF, ON, HardwareSnapshot, HostProbe
from kiosk.shell import CommandResult

LOGGER = logging.getLogger("kiosk.window")

DEVTOOLS_TIMEOUT_SECONDS = 3.0
INPUT_LOCK_INTERVAL_SECONDS = 0.5

# Installs the input listeners on first use. While the page is locked every
# input event is swallowed, so a touch on a dark screen only wakes it.
_INPUT_TRACKER = """
  if (!window.__kioskInputTracker) {
    const mark = (event) => {
      window.__kioskLastInput = Date.now();
      if (window.__kioskLocked) {
        event.preventDefault();
        event.stopImmediatePropagation();
      }
    };
    const types = ["pointerdown", "pointerup", "mousedown", "mouseup", "click", "touchstart", "touchend", "keydown", "wheel"];
    for (const type of types) {
      window.addEventListener(type, mark, { capture: true, passive: false });
    }
    window.__kioskInputTracker = true;
  }
"""

# Last input time (falling back to the page load time) in epoch milliseconds.
LAST_INPUT_EXPRESSION = (
    "(() => {" + _INPUT_TRACKER + "  return window.__kioskLastInput || Math.round(performance.timeOrigin);\n})()"
)


def input_lock_expression(locked: bool) -> str:
    flag = "true" if locked else "false"
    return "(() => {" + _INPUT_TRACKER + f"  window.__kioskLocked = {flag};\n  return window.__kioskLocked;\n}})()"


class WindowMode(str, Enum):
    FRAMED = "Framed"
    FULLSCREEN = "Fullscreen"
    MAXIMIZED = "Maximized"
    MINIMIZED = "Minimized"
    TERMINATED = "Terminated"


_WINDOW_STATES = {
    "normal": WindowMode.FRAMED,
    "fullscreen": WindowMode.FULLSCREEN,
    "maximized": WindowMode.MAXIMIZED,
    "minimized": WindowMode.MINIMIZED,
}
_MODE_STATES = {mode: state for state, mode in _WINDOW_STATES.items()}


class WindowControl(Protocol):
    def get_window_mode(self) -> WindowMode | None: ...

    def set_window_mode(self, mode: WindowMode) -> bool: ...

    def reload_content(self) -> bool: ...

    def terminate_application(self) -> None: ...

    def get_last_input_timestamp(self) -> float | None: ...

    def set_input_lock(self, locked: bool) -> bool: ...


class DevToolsError(RuntimeError):
    """DevTools endpoint unreachable or returned an error."""


class ChromiumWindow:
    def __init__(
        self,
        devtools_url: str,
        timeout: float = DEVTOOLS_TIMEOUT_SECONDS,
        on_terminate: Callable[[], None] | None = None,
    ) -> None:
        self.devtools_url = devtools_url.rstrip("/")
        self.timeout = timeout
        self._on_terminate = on_terminate
        self._terminated = False
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # DevTools plumbing
    # ------------------------------------------------------------------

    def _fetch_json(self, path: str) -> Any:
        url = f"{self.devtools_url}{path}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:  # nosec B310 - local DevTools endpoint
                return json.load(resp)
        except (urllib.error.URLError, OSError) as exc:
            raise DevToolsError(f"cannot reach DevTools endpoint {url}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise DevToolsError(f"invalid JSON from DevTools endpoint {url}: {exc}") from exc

    def fetch_page_targets(self) -> list[dict[str, Any]]:
        payload = self._fetch_json("/json")
        return [item for item in payload if item.get("type") == "page"]

    @staticmethod
    def pick_primary_target(pages: list[dict[str, Any]]) -> dict[str, Any] | None:
        for page in pages:
            url = page.get("url") or ""
            if url not in ("", "about:blank", "chrome://newtab/"):
                return page
        return pages[0] if pages else None

    def _page_target(self) -> dict[str, Any]:
        target = self.pick_primary_target(self.fetch_page_targets())
        if not target:
            raise DevToolsError("no Chromium page targets available")
        return target

    def _browser_ws_url(self) -> str:
        info = self._fetch_json("/json/version")
        ws_url = info.get("webSocketDebuggerUrl") if isinstance(info, dict) else None
        if not ws_url:
            raise DevToolsError("browser endpoint is missing webSocketDebuggerUrl")
        return ws_url

    def _call(self, ws_url: str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        message_id = next(self._ids)
        try:
            ws = websocket.create_connection(ws_url, timeout=self.timeout)
        except Exception as exc:
            raise DevToolsError(f"failed to open DevTools websocket: {exc}") from exc
        try:
            ws.send(json.dumps({"id": message_id, "method": method, "params": params or {}}))
            while True:
                reply = json.loads(ws.recv())
                if reply.get("id") != message_id:
                    continue
                if "error" in reply:
                    raise DevToolsError(f"{method} failed: {reply['error']}")
                return reply.get("result") or {}
        except (websocket.WebSocketException, OSError, json.JSONDecodeError) as exc:
            raise DevToolsError(f"{method} failed: {exc}") from exc
        finally:
            ws.close()

    def _page_call(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        target = self._page_target()
        ws_url = target.get("webSocketDebuggerUrl")
        if not ws_url:
            raise DevToolsError("selected target is missing webSocketDebuggerUrl")
        return self._call(ws_url, method, params)

    def _window_for_target(self) -> tuple[str, int, str]:
        target = self._page_target()
        browser_ws = self._browser_ws_url()
        result = self._call(browser_ws, "Browser.getWindowForTarget", {"targetId": target.get("id")})
        return browser_ws, result["windowId"], (result.get("bounds") or {}).get("windowState", "normal")

    def _set_window_state(self, browser_ws: str, window_id: int, state: str) -> None:
        self._call(browser_ws, "Browser.setWindowBounds", {"windowId": window_id, "bounds": {"windowState": state}})

    # ------------------------------------------------------------------
    # WindowControl
    # ------------------------------------------------------------------

    def get_window_mode(self) -> WindowMode | None:
        if self._terminated:
            return WindowMode.TERMINATED
        try:
            _, _, state = self._window_for_target()
        except (DevToolsError, KeyError) as exc:
            LOGGER.warning("[window] Unable to read window mode: %s", exc)
            return None
        return _WINDOW_STATES.get(state)

    def set_window_mode(self, mode: WindowMode) -> bool:
        if mode is WindowMode.TERMINATED:
            self.terminate_application()
            return True
        try:
            browser_ws, window_id, state = self._window_for_target()
            target_state = _MODE_STATES[mode]
            if state != target_state:
                # Chromium only leaves minimized/maximized/fullscreen through "normal".
                if state != "normal" and target_state != "normal":
                    self._set_window_state(browser_ws, window_id, "normal")
                self._set_window_state(browser_ws, window_id, target_state)
        except (DevToolsError, KeyError) as exc:
            LOGGER.warning("[window] Unable to set window mode %s: %s", mode.value, exc)
            return False
        LOGGER.info("[window] Window mode set to %s", mode.value)
        return True

    def reload_content(self) -> bool:
        try:
            self._page_call("Page.reload", {"ignoreCache": True})
        except DevToolsError as exc:
            LOGGER.warning("[window] Reload failed: %s", exc)
            return False
        LOGGER.info("[window] Reloaded page ignoring cache")
        return True

    def terminate_application(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        try:
            self._call(self._browser_ws_url(), "Browser.close")
        except DevToolsError as exc:
            LOGGER.warning("[window] Browser.close failed: %s", exc)
        if self._on_terminate is not None:
            self._on_terminate()

    def get_last_input_timestamp(self) -> float | None:
        """Epoch seconds of the last pointer/key input on the page."""
        try:
            result = self._page_call("Runtime.evaluate", {"expression": LAST_INPUT_EXPRESSION, "returnByValue": True})
        except DevToolsError as exc:
            LOGGER.debug("[window] Unable to read last input time: %s", exc)
            return None
        value = (result.get("result") or {}).get("value")
        if not isinstance(value, (int, float)) or value <= 0:
            return None
        return value / 1000

    def set_input_lock(self, locked: bool) -> bool:
        """Swallow page input while ``locked``; input timestamps keep updating."""
        try:
            self._page_call("Runtime.evaluate", {"expression": input_lock_expression(locked), "returnByValue": True})
        except DevToolsError as exc:
            LOGGER.warning("[window] Unable to %s page input: %s", "lock" if locked else "unlock", exc)
            return False
        return True


class InputLock:
    """Locks the page while the display is off so the first touch only wakes it.

    Subscribed to ``display_changed``. While locked, page input is swallowed and
    the last input time is checked on a short interval; newer input switches the
    display back on and the notification that follows releases the lock.
    """

    def __init__(self, window: WindowControl, probe: HostProbe, snapshot: HardwareSnapshot) -> None:
        self.window = window
        self.probe = probe
        self.snapshot = snapshot
        self.locked = False
        self._since: float | None = None

    def on_display_changed(self) -> None:
        status = self.snapshot.display_status
        if status is None or (status == OFF) == self.locked:
            return
        self.locked = status == OFF
        if self.locked:
            self._since = self.window.get_last_input_timestamp() or time.time()
        self.window.set_input_lock(self.locked)
        LOGGER.info("[window] Page input %s", "locked" if self.locked else "unlocked")

    def check_input(self) -> bool:
        if not self.locked:
            return False
        last_input = self.window.get_last_input_timestamp()
        if last_input is None or (self._since is not None and last_input <= self._since):
            return False
        self._since = last_input
        LOGGER.info("[window] Input while the display is off, waking it")
        self.probe.set_display_status(ON, self._on_wake)
        return True

    @staticmethod
    def _on_wake(result: CommandResult) -> None:
        if not result.ok:
            LOGGER.error("[window] Unable to wake the display: %s", result.error)

    async def run(self) -> None:
        while True:
            await asyncio.sleep(INPUT_LOCK_INTERVAL_SECONDS)
            try:
                self.check_input()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("[window] Input lock check failed: %s", exc, exc_info=True)


def _devtools_port(devtools_url: str) -> int:
    return urllib.parse.urlparse(devtools_url).port or 9222


def build_browser_command(config: KioskConfig) -> list[str]:
    command = [
        config.browser_command,
        f"--app={config.web_url}",
        "--start-fullscreen",
        f"--remote-debugging-port={_devtools_port(config.devtools_url)}",
        f"--force-device-scale-factor={config.web_zoom}",
        "--touch-events=enabled",
        "--noerrdialogs",
        "--disable-infobars",
        "--no-first-run",
    ]
    if config.web_theme == "dark":
        command.append("--force-dark-mode")
    return command


async def launch_browser(config: KioskConfig) -> asyncio.subprocess.Process:
    command = build_browser_command(config)
    LOGGER.info("[window] Launching %s", " ".join(command))
    return await asyncio.create_subprocess_exec(*command, env=shell.runtime_env())


async def wait_for_devtools(window: ChromiumWindow, attempts: int = 20, delay: float = 0.5) -> bool:
    """Poll until the browser exposes a page target."""
    for _ in range(attempts):
        try:
            if window.fetch_page_targets():
                return True
        except DevToolsError:
            pass
        await asyncio.sleep(delay)
    LOGGER.warning("[window] DevTools endpoint %s did not come up", window.devtools_url)
    return False


def minutes_since(timestamp: float | None, now: float | None = None) -> float | None:
    if timestamp is None:
        return None
    return max(0.0, ((now if now is not None else time.time()) - timestamp) / 60)
