"""Home Assistant MQTT integration for the kiosk.

Announces the device entities through MQTT discovery, keeps their retained
state current and routes inbound command topics back to the hardware probes
and the browser window.

paho-mqtt runs its network loop on its own thread; every paho callback is
handed to the asyncio loop with ``call_soon_threadsafe`` so connection
events, timers and change notifications are all handled on one loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

import paho.mqtt.client as mqtt

from kiosk.capabilities import CapabilitySet
from kiosk.commands import (
    Button,
    Command,
    InvalidCommandError,
    PowerState,
    PressButton,
    SetDisplayBrightness,
    SetDisplayPower,
    SetKeyboardVisibility,
    SetWindowMode,
    parse_button,
    parse_display_brightness,
    parse_display_power,
    parse_keyboard_visibility,
    parse_window_mode,
)
from kiosk.config import KioskConfig, parse_mqtt_url
from kiosk.events import DISPLAY_CHANGED, KEYBOARD_CHANGED, EventBus
from kiosk.hardware import HardwareSnapshot, HostProbe
from kiosk.identity import DeviceIdentity
from kiosk.mqtt_discovery import EntityDescriptor, build_entities
from kiosk.shell import CommandCallback, CommandResult
from kiosk.utils import mask_secret
from kiosk.window import WindowControl, WindowMode, minutes_since

LOGGER = logging.getLogger("kiosk.integration")

QOS = 1
KEEPALIVE_SECONDS = 60
HEARTBEAT_INTERVAL_SECONDS = 30
METRICS_INTERVAL_SECONDS = 60
PACKAGE_UPGRADES_INTERVAL_SECONDS = 3600
WINDOW_MODE_INTERVAL_SECONDS = 2


class ConnectionState(str, Enum):
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"


def _is_mqtt_success(reason_code: Any) -> bool:
    if hasattr(reason_code, "is_failure"):
        return not reason_code.is_failure
    if hasattr(reason_code, "value"):
        reason_code = reason_code.value
    try:
        return int(reason_code) == 0
    except (TypeError, ValueError):
        return False


def format_state(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple, set)):
        return str(len(value))
    return str(value)


def default_client_factory(client_id: str) -> mqtt.Client:
    callback_kwargs: dict[str, object] = {}
    if hasattr(mqtt, "CallbackAPIVersion"):
        callback_kwargs["callback_api_version"] = mqtt.CallbackAPIVersion.VERSION2
    return mqtt.Client(client_id=client_id, **callback_kwargs)


class DiscoveryPublisher:
    def __init__(
        self,
        config: KioskConfig,
        identity: DeviceIdentity,
        capabilities: CapabilitySet,
        probe: HostProbe,
        snapshot: HardwareSnapshot,
        bus: EventBus,
        window: WindowControl,
        client_factory: Callable[[str], mqtt.Client] = default_client_factory,
    ) -> None:
        self.config = config
        self.identity = identity
        self.capabilities = capabilities
        self.probe = probe
        self.snapshot = snapshot
        self.window = window
        self.state = ConnectionState.OFFLINE
        self.entities: dict[str, EntityDescriptor] = build_entities(
            config.mqtt_discovery_prefix, identity.node_id, capabilities
        )
        self._client_factory = client_factory
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: list[asyncio.Task] = []
        self._terminated = False
        self._package_upgrades: list[str] | None = None
        self._upgrades_task: asyncio.Task | None = None
        self._window_mode: WindowMode | None = None
        self._handlers = self._build_handlers()
        bus.subscribe(DISPLAY_CHANGED, self.publish_display)
        bus.subscribe(KEYBOARD_CHANGED, self.publish_keyboard)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        url = self.config.mqtt_url or ""
        target = parse_mqtt_url(url)
        client = self._client_factory(f"kiosk-{self.identity.node_id}")
        if self.config.mqtt_user and self.config.mqtt_password is not None:
            client.username_pw_set(self.config.mqtt_user, self.config.mqtt_password)
        if target.tls:
            client.tls_set(tls_version=getattr(ssl, "PROTOCOL_TLS_CLIENT", ssl.PROTOCOL_TLS))
        client.on_pre_connect = self._on_pre_connect
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._client = client

        self.state = ConnectionState.CONNECTING
        LOGGER.info(
            "[mqtt] Connecting: %s:%s@%s:%s",
            self.config.mqtt_user,
            mask_secret(self.config.mqtt_password),
            target.host,
            target.port,
        )
        client.connect_async(target.host, target.port, keepalive=KEEPALIVE_SECONDS)
        client.loop_start()
        self._start_timers()

    def stop(self) -> None:
        self._cancel_timers()
        client = self._client
        self._client = None
        if client is not None:
            client.disconnect()
            client.loop_stop()
        self.state = ConnectionState.OFFLINE

    def _dispatch(self, handler: Callable[..., None], *args: Any) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(handler, *args)

    # paho callbacks, called on the network thread

    def _on_pre_connect(self, _client, _userdata) -> None:
        self._dispatch(self.handle_connecting)

    def _on_connect(self, _client, _userdata, _flags, reason_code, _properties=None) -> None:
        self._dispatch(self.handle_connect, reason_code)

    def _on_connect_fail(self, _client, _userdata) -> None:
        self._dispatch(self.handle_disconnect, "connection failed")

    def _on_disconnect(self, _client, _userdata, _flags, reason_code, _properties=None) -> None:
        self._dispatch(self.handle_disconnect, reason_code)

    def _on_message(self, _client, _userdata, msg) -> None:
        self._dispatch(self.handle_message, msg.topic, msg.payload)

    # loop-side handlers

    def handle_connecting(self) -> None:
        self.state = ConnectionState.CONNECTING

    def handle_connect(self, reason_code: Any) -> None:
        if not _is_mqtt_success(reason_code):
            LOGGER.error("[mqtt] Connection refused (reason=%s)", reason_code)
            self.state = ConnectionState.OFFLINE
            return
        self.state = ConnectionState.ONLINE
        LOGGER.info("[mqtt] Connected to %s", self.config.mqtt_url)
        self.publish_discovery()
        self.subscribe_commands()
        self.publish_all()

    def handle_disconnect(self, reason_code: Any) -> None:
        if self.state is not ConnectionState.OFFLINE:
            LOGGER.warning("[mqtt] Disconnected (reason=%s); state updates paused", reason_code)
        self.state = ConnectionState.OFFLINE

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def publish_discovery(self) -> None:
        for entity in self.entities.values():
            self._publish(entity.config_topic, json.dumps(entity.config_payload(self.identity)))

    def subscribe_commands(self) -> None:
        client = self._client
        if client is None:
            return
        for topic in self._handlers:
            result, _mid = client.subscribe(topic, qos=QOS)
            if result != mqtt.MQTT_ERR_SUCCESS:
                LOGGER.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)

    # ------------------------------------------------------------------
    # State publishing
    # ------------------------------------------------------------------

    def _publish(self, topic: str, payload: str) -> bool:
        client = self._client
        if self._terminated or client is None or self.state is not ConnectionState.ONLINE:
            return False
        result = client.publish(topic, payload=payload, qos=QOS, retain=True)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.warning("[mqtt] Failed to publish topic '%s' payload '%s' (rc=%s)", topic, payload, result.rc)
            return False
        return True

    def _publish_state(self, object_id: str, value: Any, suffix: str = "status") -> None:
        entity = self.entities.get(object_id)
        if entity is None or value is None:
            return
        self._publish(entity.topic(suffix), format_state(value))

    def publish_all(self) -> None:
        self.publish_identity()
        self.publish_display()
        self.publish_keyboard()
        self.publish_metrics()
        self.publish_heartbeat()
        if self._package_upgrades is None:
            if self._upgrades_task is None or self._upgrades_task.done():
                self._upgrades_task = asyncio.ensure_future(self.refresh_package_upgrades())
        else:
            self.publish_package_upgrades()

    def publish_identity(self) -> None:
        self._publish_state("model", self.identity.model)
        self._publish_state("serial_number", self.identity.serial_number)
        self._publish_state("host_name", self.probe.get_host_name())
        self._publish_state("memory_size", self.snapshot.memory_size)

    def publish_display(self) -> None:
        self._publish_state("display", self.snapshot.display_status)
        if self.capabilities.display_brightness:
            self._publish_state("display", self.snapshot.display_brightness, suffix="brightness/status")

    def publish_keyboard(self) -> None:
        self._publish_state("keyboard", self.snapshot.keyboard_visibility)

    def publish_window_mode(self, mode: WindowMode | None = None) -> None:
        mode = mode or self.window.get_window_mode()
        if mode is not None:
            self._window_mode = mode
        self._publish_state("kiosk", mode)

    def poll_window_mode(self) -> None:
        """Publish window changes made outside MQTT, e.g. from the window manager."""
        mode = self.window.get_window_mode()
        if mode is not None and mode is not self._window_mode:
            LOGGER.info("[mqtt] Window mode changed: %s", mode.value)
            self.publish_window_mode(mode)

    def publish_metrics(self) -> None:
        self.publish_window_mode()
        self._publish_state("up_time", self.snapshot.up_time)
        self._publish_state("memory_usage", self.snapshot.memory_usage)
        self._publish_state("processor_usage", self.snapshot.processor_usage)
        self._publish_state("processor_temperature", self.snapshot.processor_temperature)

    def publish_heartbeat(self) -> None:
        self._publish_state("heartbeat", datetime.now().replace(microsecond=0).isoformat())
        self._publish_state("last_active", minutes_since(self.window.get_last_input_timestamp()))

    async def refresh_package_upgrades(self) -> None:
        if "package_upgrades" not in self.entities:
            return
        packages = await asyncio.to_thread(self.probe.get_package_upgrades)
        if packages is not None:
            self._package_upgrades = packages
        self.publish_package_upgrades()

    def publish_package_upgrades(self) -> None:
        packages = self._package_upgrades
        if packages is None:
            return
        self._publish_state("package_upgrades", packages)
        self._publish_state("package_upgrades", json.dumps({"packages": packages}), suffix="attributes")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _start_timers(self) -> None:
        self._cancel_timers()
        self._timers = [
            asyncio.ensure_future(self._every(HEARTBEAT_INTERVAL_SECONDS, self.publish_heartbeat)),
            asyncio.ensure_future(self._every(METRICS_INTERVAL_SECONDS, self.publish_metrics)),
            asyncio.ensure_future(self._every(PACKAGE_UPGRADES_INTERVAL_SECONDS, self.refresh_package_upgrades)),
            asyncio.ensure_future(self._every(WINDOW_MODE_INTERVAL_SECONDS, self.poll_window_mode)),
        ]

    def _cancel_timers(self) -> None:
        for task in self._timers:
            task.cancel()
        self._timers = []
        if self._upgrades_task is not None:
            self._upgrades_task.cancel()
            self._upgrades_task = None

    async def _every(self, interval: float, action: Callable[[], Awaitable[None] | None]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = action()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("[mqtt] Periodic update failed: %s", exc, exc_info=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _build_handlers(self) -> dict[str, Callable[[bytes], Command]]:
        handlers: dict[str, Callable[[bytes], Command]] = {}
        for button in Button:
            entity = self.entities.get(button.value)
            if entity is not None and entity.command_topic:
                handlers[entity.command_topic] = lambda payload, button=button: parse_button(button, payload)
        parsers = {
            "kiosk": parse_window_mode,
            "display": parse_display_power,
            "keyboard": parse_keyboard_visibility,
        }
        for object_id, parser in parsers.items():
            entity = self.entities.get(object_id)
            if entity is not None and entity.command_topic:
                handlers[entity.command_topic] = parser
        display = self.entities.get("display")
        if display is not None and display.extra.get("brightness_command_topic"):
            handlers[display.extra["brightness_command_topic"]] = parse_display_brightness
        return handlers

    def handle_message(self, topic: str, payload: bytes) -> None:
        if self._terminated:
            return
        parser = self._handlers.get(topic)
        if parser is None:
            LOGGER.debug("[mqtt] Received message on unexpected topic %s", topic)
            return
        try:
            command = parser(payload)
        except InvalidCommandError as exc:
            LOGGER.warning("[mqtt] Rejected command on %s: %s", topic, exc)
            return
        self.execute(command)

    def execute(self, command: Command) -> None:
        match command:
            case PressButton(button=Button.SHUTDOWN):
                LOGGER.info("[mqtt] Shutdown system...")
                self._wake_display()
                self.probe.shutdown_system(self._report("shutdown"))
            case PressButton(button=Button.REBOOT):
                LOGGER.info("[mqtt] Rebooting system...")
                self._wake_display()
                self.probe.reboot_system(self._report("reboot"))
            case PressButton(button=Button.REFRESH):
                LOGGER.info("[mqtt] Refreshing webview...")
                self._wake_display()
                self.window.reload_content()
            case SetWindowMode(mode=WindowMode.TERMINATED):
                LOGGER.info("[mqtt] Set Kiosk Status: %s", WindowMode.TERMINATED.value)
                self.terminate()
            case SetWindowMode(mode=mode):
                LOGGER.info("[mqtt] Set Kiosk Status: %s", mode.value)
                self._wake_display()
                self.window.set_window_mode(mode)
                self.publish_window_mode()
            case SetDisplayPower(state=state):
                LOGGER.info("[mqtt] Set Display Status: %s", state.value)
                self.probe.set_display_status(state.value, self._report("display status"))
            case SetDisplayBrightness(percent=percent):
                LOGGER.info("[mqtt] Set Display Brightness: %s", percent)
                self.probe.set_display_brightness(percent, self._report("display brightness"))
            case SetKeyboardVisibility(state=state):
                LOGGER.info("[mqtt] Set Keyboard Visibility: %s", state.value)
                self.probe.set_keyboard_visibility(state.value, self._report("keyboard visibility"))
                self._couple_window_to_keyboard(state)

    def _wake_display(self) -> None:
        if self.capabilities.display_status:
            self.probe.set_display_status(PowerState.ON.value, self._report("display wake"))

    def _couple_window_to_keyboard(self, state: PowerState) -> None:
        """Keyboard ON: Fullscreen -> Maximized. Keyboard OFF: Maximized -> Fullscreen."""
        mode = self.window.get_window_mode()
        if state is PowerState.ON and mode is WindowMode.FULLSCREEN:
            target = WindowMode.MAXIMIZED
        elif state is PowerState.OFF and mode is WindowMode.MAXIMIZED:
            target = WindowMode.FULLSCREEN
        else:
            return
        self.window.set_window_mode(target)
        self.publish_window_mode()

    @staticmethod
    def _report(action: str) -> CommandCallback:
        def _callback(result: CommandResult) -> None:
            if result.ok:
                LOGGER.debug("[mqtt] %s finished: %s", action, result.output)
            else:
                LOGGER.error("[mqtt] %s failed: %s", action, result.error)

        return _callback

    def mark_terminated(self) -> None:
        """Publish the final window status and stop publishing."""
        if self._terminated:
            return
        self._publish_state("kiosk", WindowMode.TERMINATED)
        self._terminated = True
        self._cancel_timers()

    def terminate(self) -> None:
        if self._terminated:
            return
        self.mark_terminated()
        self.window.terminate_application()
