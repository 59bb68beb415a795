"""Tests for kiosk/mqtt_discovery.py."""

from __future__ import annotations

from kiosk.capabilities import CapabilitySet, SessionType
from kiosk.mqtt_discovery import (
    build_button_entity,
    build_entities,
    build_light_entity,
    build_select_entity,
    build_sensor_entity,
    rounded_template,
)


def test_button_entity_layout(identity):
    entity = build_button_entity("homeassistant", "rpi_AB12CD", "refresh", "Refresh", "mdi:web-refresh")
    assert entity.config_topic == "homeassistant/button/rpi_AB12CD/refresh/config"
    assert entity.command_topic == "homeassistant/button/rpi_AB12CD/refresh/execute"
    payload = entity.config_payload(identity)
    assert payload["unique_id"] == "rpi_AB12CD_refresh"
    assert "state_topic" not in payload
    assert payload["device"]["identifiers"] == ["rpi_AB12CD"]


def test_select_entity_lists_options(identity):
    entity = build_select_entity("ha", "rpi_1", "kiosk", "Kiosk", "mdi:overscan", ["A", "B"])
    payload = entity.config_payload(identity)
    assert payload["options"] == ["A", "B"]
    assert payload["command_topic"] == "ha/select/rpi_1/kiosk/set"
    assert payload["state_topic"] == "ha/select/rpi_1/kiosk/status"


def test_light_entity_brightness_topics():
    entity = build_light_entity("ha", "rpi_1", "display", "Display", "mdi:monitor")
    assert entity.command_topics() == ["ha/light/rpi_1/display/set", "ha/light/rpi_1/display/brightness/set"]
    assert entity.extra["brightness_scale"] == 100

    no_brightness = build_light_entity("ha", "rpi_1", "display", "Display", "mdi:monitor", brightness=False)
    assert no_brightness.command_topics() == ["ha/light/rpi_1/display/set"]
    assert "brightness_state_topic" not in no_brightness.extra


def test_sensor_entity_rounding_and_attributes(identity):
    entity = build_sensor_entity("ha", "rpi_1", "memory_size", "Memory Size", "mdi:memory", unit="GiB", precision=2)
    payload = entity.config_payload(identity)
    assert payload["value_template"] == "{{ (value | float) | round(2) }}"
    assert payload["unit_of_measurement"] == "GiB"
    assert "json_attributes_topic" not in payload

    upgrades = build_sensor_entity("ha", "rpi_1", "package_upgrades", "Package Upgrades", "mdi:package-up", attributes=True)
    assert upgrades.config_payload(identity)["json_attributes_topic"] == "ha/sensor/rpi_1/package_upgrades/attributes"
    assert upgrades.config_payload(identity)["value_template"] == "{{ value }}"


def test_rounded_template():
    assert rounded_template(0) == "{{ (value | float) | round(0) }}"


def test_build_entities_full_host(full_capabilities):
    entities = build_entities("homeassistant", "rpi_AB12CD", full_capabilities)
    assert {"shutdown", "reboot", "refresh", "kiosk", "display", "keyboard"} <= set(entities)
    assert {"processor_temperature", "package_upgrades", "heartbeat", "last_active"} <= set(entities)
    assert entities["kiosk"].extra["options"] == ["Framed", "Fullscreen", "Maximized", "Minimized", "Terminated"]


def test_build_entities_gates_on_capabilities():
    entities = build_entities("homeassistant", "rpi_AB12CD", CapabilitySet(session_type=SessionType.TTY))
    for object_id in ("shutdown", "reboot", "display", "keyboard", "processor_temperature", "package_upgrades"):
        assert object_id not in entities
    assert {"refresh", "kiosk", "model", "up_time", "memory_usage"} <= set(entities)


def test_unique_ids_are_distinct(full_capabilities, identity):
    entities = build_entities("homeassistant", identity.node_id, full_capabilities)
    unique_ids = [entity.config_payload(identity)["unique_id"] for entity in entities.values()]
    assert len(unique_ids) == len(set(unique_ids))
