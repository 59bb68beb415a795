"""MQTT discovery message builders for Home Assistant."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from kiosk.capabilities import CapabilitySet
from kiosk.identity import DeviceIdentity
from kiosk.window import WindowMode

VALUE_TEMPLATE = "{{ value }}"


def rounded_template(precision: int) -> str:
    return f"{{{{ (value | float) | round({precision}) }}}}"


@dataclass(frozen=True)
class EntityDescriptor:
    """One Home Assistant entity: topic layout plus display metadata."""

    domain: str
    object_id: str
    name: str
    icon: str
    root: str
    state_topic: str | None = None
    command_topic: str | None = None
    value_template: str | None = None
    unit: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def config_topic(self) -> str:
        return f"{self.root}/config"

    def topic(self, suffix: str) -> str:
        return f"{self.root}/{suffix}"

    def command_topics(self) -> list[str]:
        topics = [self.command_topic] if self.command_topic else []
        brightness_topic = self.extra.get("brightness_command_topic")
        if brightness_topic:
            topics.append(brightness_topic)
        return topics

    def config_payload(self, identity: DeviceIdentity) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "unique_id": f"{identity.node_id}_{self.object_id}",
        }
        if self.command_topic:
            payload["command_topic"] = self.command_topic
        if self.state_topic:
            payload["state_topic"] = self.state_topic
        if self.value_template:
            payload["value_template"] = self.value_template
        if self.unit:
            payload["unit_of_measurement"] = self.unit
        payload.update(self.extra)
        payload["icon"] = self.icon
        payload["device"] = identity.device_block()
        return payload


def entity_root(prefix: str, domain: str, node_id: str, object_id: str) -> str:
    return f"{prefix}/{domain}/{node_id}/{object_id}"


def build_button_entity(prefix: str, node_id: str, object_id: str, name: str, icon: str) -> EntityDescriptor:
    root = entity_root(prefix, "button", node_id, object_id)
    return EntityDescriptor(
        domain="button",
        object_id=object_id,
        name=name,
        icon=icon,
        root=root,
        command_topic=f"{root}/execute",
    )


def build_select_entity(
    prefix: str,
    node_id: str,
    object_id: str,
    name: str,
    icon: str,
    options: list[str],
) -> EntityDescriptor:
    root = entity_root(prefix, "select", node_id, object_id)
    return EntityDescriptor(
        domain="select",
        object_id=object_id,
        name=name,
        icon=icon,
        root=root,
        command_topic=f"{root}/set",
        state_topic=f"{root}/status",
        value_template=VALUE_TEMPLATE,
        extra={"options": list(options)},
    )


def build_light_entity(
    prefix: str,
    node_id: str,
    object_id: str,
    name: str,
    icon: str,
    brightness: bool = True,
) -> EntityDescriptor:
    """Build a light entity; brightness topics are only added when supported."""
    root = entity_root(prefix, "light", node_id, object_id)
    extra: dict[str, Any] = {"payload_on": "ON", "payload_off": "OFF"}
    if brightness:
        extra.update(
            {
                "brightness_command_topic": f"{root}/brightness/set",
                "brightness_state_topic": f"{root}/brightness/status",
                "brightness_scale": 100,
            }
        )
    return EntityDescriptor(
        domain="light",
        object_id=object_id,
        name=name,
        icon=icon,
        root=root,
        command_topic=f"{root}/set",
        state_topic=f"{root}/status",
        extra=extra,
    )


def build_switch_entity(prefix: str, node_id: str, object_id: str, name: str, icon: str) -> EntityDescriptor:
    root = entity_root(prefix, "switch", node_id, object_id)
    return EntityDescriptor(
        domain="switch",
        object_id=object_id,
        name=name,
        icon=icon,
        root=root,
        command_topic=f"{root}/set",
        state_topic=f"{root}/status",
        value_template=VALUE_TEMPLATE,
        extra={"payload_on": "ON", "payload_off": "OFF"},
    )


def build_sensor_entity(
    prefix: str,
    node_id: str,
    object_id: str,
    name: str,
    icon: str,
    unit: str | None = None,
    precision: int | None = None,
    attributes: bool = False,
) -> EntityDescriptor:
    """Build a sensor entity.

    Args:
        precision: Rounding applied by Home Assistant when displaying the value.
        attributes: Publish a JSON attributes topic next to the state topic.
    """
    root = entity_root(prefix, "sensor", node_id, object_id)
    extra: dict[str, Any] = {}
    if attributes:
        extra["json_attributes_topic"] = f"{root}/attributes"
    return EntityDescriptor(
        domain="sensor",
        object_id=object_id,
        name=name,
        icon=icon,
        root=root,
        state_topic=f"{root}/status",
        value_template=rounded_template(precision) if precision is not None else VALUE_TEMPLATE,
        unit=unit,
        extra=extra,
    )


@dataclass(frozen=True)
class SensorDescriptor:
    key: str
    name: str
    icon: str
    unit: str | None = None
    precision: int | None = None
    capability: str | None = None
    attributes: bool = False


SENSORS: list[SensorDescriptor] = [
    SensorDescriptor(key="model", name="Model", icon="mdi:raspberry-pi"),
    SensorDescriptor(key="serial_number", name="Serial Number", icon="mdi:hexadecimal"),
    SensorDescriptor(key="host_name", name="Host Name", icon="mdi:console-network"),
    SensorDescriptor(key="up_time", name="Up Time", icon="mdi:timeline-clock", unit="min", precision=0),
    SensorDescriptor(key="memory_size", name="Memory Size", icon="mdi:memory", unit="GiB", precision=2),
    SensorDescriptor(key="memory_usage", name="Memory Usage", icon="mdi:memory-arrow-down", unit="%", precision=0),
    SensorDescriptor(key="processor_usage", name="Processor Usage", icon="mdi:cpu-64-bit", unit="%", precision=0),
    SensorDescriptor(
        key="processor_temperature",
        name="Processor Temperature",
        icon="mdi:radiator",
        unit="°C",
        precision=0,
        capability="processor_temperature",
    ),
    SensorDescriptor(
        key="package_upgrades",
        name="Package Upgrades",
        icon="mdi:package-up",
        capability="package_upgrades",
        attributes=True,
    ),
    SensorDescriptor(key="heartbeat", name="Heartbeat", icon="mdi:heart-flash"),
    SensorDescriptor(key="last_active", name="Last Active", icon="mdi:gesture-tap-hold", unit="min", precision=0),
]


def build_entities(prefix: str, node_id: str, capabilities: CapabilitySet) -> dict[str, EntityDescriptor]:
    """Every entity this host supports, keyed by object id."""
    entities: list[EntityDescriptor] = []
    if capabilities.power_control:
        entities.append(build_button_entity(prefix, node_id, "shutdown", "Shutdown", "mdi:power"))
        entities.append(build_button_entity(prefix, node_id, "reboot", "Reboot", "mdi:restart"))
    entities.append(build_button_entity(prefix, node_id, "refresh", "Refresh", "mdi:web-refresh"))
    entities.append(
        build_select_entity(prefix, node_id, "kiosk", "Kiosk", "mdi:overscan", [mode.value for mode in WindowMode])
    )
    if capabilities.display_status or capabilities.display_brightness:
        entities.append(
            build_light_entity(
                prefix, node_id, "display", "Display", "mdi:monitor-shimmer", brightness=capabilities.display_brightness
            )
        )
    if capabilities.keyboard_visibility:
        entities.append(build_switch_entity(prefix, node_id, "keyboard", "Keyboard", "mdi:keyboard-close-outline"))
    for descriptor in SENSORS:
        if descriptor.capability and not capabilities.supports(descriptor.capability):
            continue
        entities.append(
            build_sensor_entity(
                prefix,
                node_id,
                descriptor.key,
                descriptor.name,
                descriptor.icon,
                unit=descriptor.unit,
                precision=descriptor.precision,
                attributes=descriptor.attributes,
            )
        )
    return {entity.object_id: entity for entity in entities}
