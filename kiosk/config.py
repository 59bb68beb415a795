"""Configuration for kiosk-bridge.

Each setting is resolved from, in order: the command line (``--web-url=...``),
the environment (``KIOSK_WEB_URL``), the persisted arguments file written by
``--setup`` and finally the built-in default.

``--setup`` asks for every stored setting on the terminal and saves the
answers once they are confirmed. The MQTT password is kept encrypted with a
key bound to the machine id (see :mod:`kiosk.crypto`).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from kiosk.crypto import SecretError, decrypt_secret, encrypt_secret
from kiosk.hardware import read_machine_id
from kiosk.utils import mask_secret, parse_float, strip_or_none

LOGGER = logging.getLogger("kiosk.config")

DEFAULT_WEB_THEME = "dark"
DEFAULT_WEB_ZOOM = 1.25
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_DEVTOOLS_URL = "http://localhost:9222"
DEFAULT_BROWSER_COMMAND = "chromium"
WEB_THEMES = {"dark", "light"}
ARGS_FILENAME = "Arguments.json"
SECRET_KEY = "mqtt_password"

# setting -> key used on the command line / in the arguments file
_SETTING_KEYS = {
    "web_url": "web_url",
    "web_theme": "web_theme",
    "web_zoom": "web_zoom",
    "mqtt_url": "mqtt_url",
    "mqtt_user": "mqtt_user",
    "mqtt_password": SECRET_KEY,
    "mqtt_discovery_prefix": "mqtt_discovery",
    "devtools_url": "devtools_url",
    "browser_command": "browser",
}

# (key, question, example answer) asked by --setup
_WEB_PROMPTS = (
    ("web_url", "Enter WEB url", "http://192.168.1.42:8123"),
    ("web_theme", "Enter WEB theme", DEFAULT_WEB_THEME),
    ("web_zoom", "Enter WEB zoom level", str(DEFAULT_WEB_ZOOM)),
)
_MQTT_PROMPTS = (
    ("mqtt_url", "Enter MQTT url", "mqtt://192.168.1.42:1883"),
    ("mqtt_user", "Enter MQTT username", "kiosk"),
    (SECRET_KEY, "Enter MQTT password", "password"),
    ("mqtt_discovery", "Enter MQTT discovery prefix", DEFAULT_DISCOVERY_PREFIX),
)
_UNPROMPTED_KEYS = ("devtools_url", "browser")

Ask = Callable[[str], str]


class ConfigError(ValueError):
    """The configuration cannot start a kiosk."""


@dataclass(frozen=True)
class MqttTarget:
    host: str
    port: int
    tls: bool


@dataclass(frozen=True)
class KioskConfig:
    web_url: str
    web_theme: str = DEFAULT_WEB_THEME
    web_zoom: float = DEFAULT_WEB_ZOOM
    mqtt_url: str | None = None
    mqtt_user: str | None = None
    mqtt_password: str | None = None
    mqtt_discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX
    devtools_url: str = DEFAULT_DEVTOOLS_URL
    browser_command: str = DEFAULT_BROWSER_COMMAND
    log_level: str = "INFO"

    @property
    def mqtt_enabled(self) -> bool:
        return bool(self.mqtt_url)

    @classmethod
    def from_sources(
        cls,
        argv: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        args_file: Path | None = None,
        machine_id: str | None = None,
        ask: Ask | None = None,
    ) -> KioskConfig:
        env = os.environ if env is None else env
        parser = build_parser()
        args = parser.parse_args(argv)
        args_file = Path(args.args_file) if args.args_file else (args_file or default_args_file(env))
        if args.setup:
            cli_values = {key: getattr(args, key) for key in _SETTING_KEYS.values() if getattr(args, key) is not None}
            stored = prompt_arguments(cli_values, ask) or {}
        else:
            stored = read_arguments(args_file, machine_id)

        def pick(name: str) -> str | None:
            key = _SETTING_KEYS[name]
            cli_value = getattr(args, key, None)
            if cli_value is not None:
                return strip_or_none(str(cli_value))
            env_value = strip_or_none(env.get(f"KIOSK_{name.upper()}"))
            if env_value is not None:
                return env_value
            stored_value = stored.get(key)
            return strip_or_none(str(stored_value)) if stored_value is not None else None

        web_url = pick("web_url")
        if not web_url:
            raise ConfigError("Please provide the '--web-url' parameter")

        web_theme = (pick("web_theme") or DEFAULT_WEB_THEME).lower()
        if web_theme not in WEB_THEMES:
            LOGGER.warning("[config] Unknown web theme '%s', using '%s'", web_theme, DEFAULT_WEB_THEME)
            web_theme = DEFAULT_WEB_THEME

        config = cls(
            web_url=web_url,
            web_theme=web_theme,
            web_zoom=parse_float(pick("web_zoom"), DEFAULT_WEB_ZOOM),
            mqtt_url=pick("mqtt_url"),
            mqtt_user=pick("mqtt_user"),
            mqtt_password=pick("mqtt_password"),
            mqtt_discovery_prefix=pick("mqtt_discovery_prefix") or DEFAULT_DISCOVERY_PREFIX,
            devtools_url=pick("devtools_url") or DEFAULT_DEVTOOLS_URL,
            browser_command=pick("browser_command") or DEFAULT_BROWSER_COMMAND,
            log_level=args.log_level,
        )
        if config.mqtt_url:
            parse_mqtt_url(config.mqtt_url)
        if args.setup and stored:
            write_arguments(args_file, stored, machine_id)
        return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kiosk-bridge", description="Kiosk display shell with MQTT integration")
    parser.add_argument("--web-url", dest="web_url")
    parser.add_argument("--web-theme", dest="web_theme")
    parser.add_argument("--web-zoom", dest="web_zoom")
    parser.add_argument("--mqtt-url", dest="mqtt_url")
    parser.add_argument("--mqtt-user", dest="mqtt_user")
    parser.add_argument("--mqtt-password", dest="mqtt_password")
    parser.add_argument("--mqtt-discovery", dest="mqtt_discovery")
    parser.add_argument("--devtools-url", dest="devtools_url")
    parser.add_argument("--browser", dest="browser")
    parser.add_argument("--args-file", dest="args_file")
    parser.add_argument("--setup", action="store_true", help="ask for the settings and save them for later starts")
    parser.add_argument("--log-level", default="INFO")
    return parser


def default_args_file(env: Mapping[str, str]) -> Path:
    base = env.get("XDG_CONFIG_HOME") or str(Path(env.get("HOME") or Path.home()) / ".config")
    return Path(base) / "kiosk-bridge" / ARGS_FILENAME


# ---------------------------------------------------------------------------
# Interactive setup
# ---------------------------------------------------------------------------


def _ask(ask: Ask, prompt: str) -> str | None:
    try:
        return ask(prompt).strip()
    except EOFError:
        return None


def _confirm(ask: Ask, question: str, default: bool) -> bool:
    answer = _ask(ask, f"{question} ({'Y/n' if default else 'y/N'}): ")
    if answer is None:
        return False
    if not answer:
        return default
    return answer.lower() in {"y", "yes"}


def prompt_arguments(defaults: Mapping[str, Any] | None = None, ask: Ask | None = None) -> dict[str, str] | None:
    """Ask for each stored setting; returns ``None`` when the summary is declined.

    An empty answer keeps the value shown in parentheses: the command-line
    value when one was given, otherwise an example. Answering no to the MQTT
    question skips the broker settings entirely.
    """
    defaults = defaults or {}
    ask = ask or input

    def answer(key: str, question: str, example: str) -> str:
        fallback = str(defaults.get(key, example))
        shown = mask_secret(fallback) if key == SECRET_KEY else fallback
        return _ask(ask, f"{question} ({shown}): ") or fallback

    arguments = {key: answer(key, question, example) for key, question, example in _WEB_PROMPTS}
    if _confirm(ask, "Connect to MQTT Broker?", default=bool(defaults.get("mqtt_url"))):
        arguments.update({key: answer(key, question, example) for key, question, example in _MQTT_PROMPTS})
    arguments.update({key: str(defaults[key]) for key in _UNPROMPTED_KEYS if key in defaults})

    summary = dict(arguments)
    if SECRET_KEY in summary:
        summary[SECRET_KEY] = mask_secret(summary[SECRET_KEY])
    if not _confirm(ask, f"Everything looks good?\n{json.dumps(summary, indent=2)}\n", default=True):
        LOGGER.warning("[config] Setup cancelled, nothing saved")
        return None
    return arguments


# ---------------------------------------------------------------------------
# Arguments file
# ---------------------------------------------------------------------------


def read_arguments(path: Path, machine_id: str | None = None) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("[config] Ignoring unreadable arguments file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        LOGGER.warning("[config] Ignoring malformed arguments file %s", path)
        return {}
    if SECRET_KEY in data:
        machine_id = machine_id or read_machine_id()
        try:
            if machine_id is None:
                raise SecretError("no machine id available")
            data[SECRET_KEY] = decrypt_secret(str(data[SECRET_KEY]), machine_id)
        except SecretError as exc:
            LOGGER.warning("[config] Ignoring stored MQTT password in %s: %s", path, exc)
            del data[SECRET_KEY]
    return data


def write_arguments(path: Path, arguments: Mapping[str, Any], machine_id: str | None = None) -> None:
    data = dict(arguments)
    if data.get(SECRET_KEY) is not None:
        machine_id = machine_id or read_machine_id()
        if machine_id is None:
            raise ConfigError("Cannot store the MQTT password: the machine id is unavailable")
        data[SECRET_KEY] = encrypt_secret(str(data[SECRET_KEY]), machine_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.debug("[config] Unable to restrict permissions on %s: %s", path, exc)
    LOGGER.info("[config] Arguments saved to %s", path)


def parse_mqtt_url(url: str) -> MqttTarget:
    """Split ``mqtt://host:1883`` style URLs; ``mqtts``/``ssl`` enable TLS."""
    if "://" not in url:
        url = f"mqtt://{url}"
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ConfigError(f"Invalid MQTT url '{url}'")
    tls = parsed.scheme in {"mqtts", "ssl", "tls"}
    return MqttTarget(host=parsed.hostname, port=parsed.port or (8883 if tls else 1883), tls=tls)
