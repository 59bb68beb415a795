"""Tests for configuration loading (kiosk/config.py)."""

from __future__ import annotations

import json

import pytest
from kiosk.config import (
    DEFAULT_DISCOVERY_PREFIX,
    ConfigError,
    KioskConfig,
    default_args_file,
    parse_mqtt_url,
    prompt_arguments,
    read_arguments,
    write_arguments,
)
from kiosk.crypto import decrypt_secret

MACHINE_ID = "3f9a1c0d5e7b4a2f8c6d0e1f2a3b4c5d"


@pytest.fixture
def args_file(tmp_path):
    return tmp_path / "kiosk-bridge" / "Arguments.json"


def _load(argv, env=None, args_file=None):
    return KioskConfig.from_sources(argv, env=env or {}, args_file=args_file, machine_id=MACHINE_ID)


def _answers(monkeypatch, *answers):
    """Feed terminal answers to ``input()`` and record the prompts shown."""
    replies = iter(answers)
    prompts = []

    def _input(prompt=""):
        prompts.append(prompt)
        return next(replies)

    monkeypatch.setattr("builtins.input", _input)
    return prompts


class TestPrecedence:
    def test_defaults(self, args_file):
        config = _load(["--web-url=http://ha.local:8123"], args_file=args_file)
        assert config.web_url == "http://ha.local:8123"
        assert config.web_theme == "dark"
        assert config.web_zoom == 1.25
        assert config.mqtt_discovery_prefix == DEFAULT_DISCOVERY_PREFIX
        assert config.mqtt_enabled is False

    def test_missing_web_url_is_fatal(self, args_file):
        with pytest.raises(ConfigError):
            _load([], args_file=args_file)

    def test_cli_beats_env_beats_file(self, args_file):
        args_file.parent.mkdir(parents=True)
        args_file.write_text(
            json.dumps({"web_url": "http://file", "mqtt_url": "mqtt://file", "web_zoom": 2.0}), encoding="utf-8"
        )
        env = {"KIOSK_WEB_URL": "http://env", "KIOSK_MQTT_URL": "mqtt://env"}
        config = _load(["--web-url", "http://cli"], env=env, args_file=args_file)
        assert config.web_url == "http://cli"
        assert config.mqtt_url == "mqtt://env"
        assert config.web_zoom == 2.0

    def test_discovery_prefix_flag(self, args_file):
        config = _load(["--web-url=http://ha", "--mqtt-discovery=kiosks"], args_file=args_file)
        assert config.mqtt_discovery_prefix == "kiosks"

    def test_unknown_theme_falls_back(self, args_file, caplog):
        config = _load(["--web-url=http://ha", "--web-theme=neon"], args_file=args_file)
        assert config.web_theme == "dark"
        assert "Unknown web theme" in caplog.text

    def test_bad_zoom_falls_back(self, args_file):
        config = _load(["--web-url=http://ha", "--web-zoom=big"], args_file=args_file)
        assert config.web_zoom == 1.25

    def test_invalid_mqtt_url_is_fatal(self, args_file):
        with pytest.raises(ConfigError):
            _load(["--web-url=http://ha", "--mqtt-url=mqtt://"], args_file=args_file)


class TestArgumentsFile:
    def test_args_file_flag(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"web_url": "http://custom"}), encoding="utf-8")
        assert _load([f"--args-file={path}"]).web_url == "http://custom"

    def test_malformed_file_is_ignored(self, args_file, caplog):
        args_file.parent.mkdir(parents=True)
        args_file.write_text("[1, 2", encoding="utf-8")
        assert read_arguments(args_file) == {}
        args_file.write_text("[1, 2]", encoding="utf-8")
        assert read_arguments(args_file) == {}
        assert "arguments file" in caplog.text

    def test_default_location(self):
        assert str(default_args_file({"XDG_CONFIG_HOME": "/cfg"})) == "/cfg/kiosk-bridge/Arguments.json"
        assert str(default_args_file({"HOME": "/home/pi"})) == "/home/pi/.config/kiosk-bridge/Arguments.json"

    def test_password_is_stored_encrypted(self, args_file):
        write_arguments(args_file, {"web_url": "http://ha", "mqtt_password": "pw"}, MACHINE_ID)
        stored = json.loads(args_file.read_text(encoding="utf-8"))
        assert stored["mqtt_password"] != "pw"
        assert decrypt_secret(stored["mqtt_password"], MACHINE_ID) == "pw"
        assert args_file.stat().st_mode & 0o777 == 0o600
        assert read_arguments(args_file, MACHINE_ID)["mqtt_password"] == "pw"

    def test_password_for_another_machine_is_dropped(self, args_file, monkeypatch, caplog):
        args_file.parent.mkdir(parents=True)
        args_file.write_text(json.dumps({"web_url": "http://ha", "mqtt_password": "not-encrypted"}), encoding="utf-8")
        assert read_arguments(args_file, MACHINE_ID) == {"web_url": "http://ha"}
        monkeypatch.setattr("kiosk.config.read_machine_id", lambda: None)
        assert read_arguments(args_file) == {"web_url": "http://ha"}
        assert "Ignoring stored MQTT password" in caplog.text

    def test_password_needs_machine_id(self, args_file, monkeypatch):
        monkeypatch.setattr("kiosk.config.read_machine_id", lambda: None)
        with pytest.raises(ConfigError):
            write_arguments(args_file, {"web_url": "http://ha", "mqtt_password": "pw"})
        assert not args_file.exists()


class TestSetup:
    def test_setup_prompts_and_persists(self, args_file, monkeypatch):
        prompts = _answers(monkeypatch, "", "light", "", "y", "", "kiosk", "", "", "")
        config = _load(
            ["--web-url=http://ha", "--mqtt-url=mqtt://broker", "--mqtt-password=pw", "--setup"],
            args_file=args_file,
        )
        assert config.web_theme == "light"
        assert config.mqtt_user == "kiosk"

        assert prompts[0] == "Enter WEB url (http://ha): "
        assert prompts[3] == "Connect to MQTT Broker? (Y/n): "
        assert prompts[6] == "Enter MQTT password (**): "
        assert '"mqtt_password": "**"' in prompts[-1]

        stored = json.loads(args_file.read_text(encoding="utf-8"))
        assert stored["web_zoom"] == "1.25"
        assert stored["mqtt_discovery"] == DEFAULT_DISCOVERY_PREFIX
        assert decrypt_secret(stored["mqtt_password"], MACHINE_ID) == "pw"

        reloaded = _load([], args_file=args_file)
        assert reloaded.mqtt_url == "mqtt://broker"
        assert reloaded.mqtt_password == "pw"
        assert reloaded.web_theme == "light"

    def test_declining_mqtt_skips_broker_settings(self, args_file, monkeypatch):
        prompts = _answers(monkeypatch, "", "", "", "", "y")
        config = _load(["--web-url=http://ha", "--setup"], args_file=args_file)
        assert prompts[3] == "Connect to MQTT Broker? (y/N): "
        assert len(prompts) == 5
        assert config.mqtt_enabled is False
        stored = json.loads(args_file.read_text(encoding="utf-8"))
        assert set(stored) == {"web_url", "web_theme", "web_zoom"}

    def test_declined_summary_saves_nothing(self, args_file, monkeypatch):
        _answers(monkeypatch, "http://typed", "", "", "n", "no")
        config = _load(["--web-url=http://ha", "--setup"], args_file=args_file)
        assert config.web_url == "http://ha"
        assert not args_file.exists()

    def test_end_of_input_saves_nothing(self, monkeypatch):
        def _closed(prompt=""):
            raise EOFError

        monkeypatch.setattr("builtins.input", _closed)
        assert prompt_arguments({"web_url": "http://ha"}) is None

    def test_unprompted_cli_values_are_kept(self, monkeypatch):
        _answers(monkeypatch, "", "", "", "n", "")
        arguments = prompt_arguments({"web_url": "http://ha", "browser": "chromium-browser"})
        assert arguments == {
            "web_url": "http://ha",
            "web_theme": "dark",
            "web_zoom": "1.25",
            "browser": "chromium-browser",
        }

    def test_invalid_mqtt_url_is_not_saved(self, args_file, monkeypatch):
        _answers(monkeypatch, "", "", "", "y", "mqtt://", "", "", "", "")
        with pytest.raises(ConfigError):
            _load(["--web-url=http://ha", "--setup"], args_file=args_file)
        assert not args_file.exists()


class TestMqttUrl:
    @pytest.mark.parametrize(
        "url, host, port, tls",
        [
            ("mqtt://broker.local", "broker.local", 1883, False),
            ("mqtt://broker.local:1884", "broker.local", 1884, False),
            ("mqtts://broker.local", "broker.local", 8883, True),
            ("ssl://10.0.0.5:8884", "10.0.0.5", 8884, True),
            ("broker.local", "broker.local", 1883, False),
        ],
    )
    def test_parse(self, url, host, port, tls):
        target = parse_mqtt_url(url)
        assert (target.host, target.port, target.tls) == (host, port, tls)

    def test_missing_host(self):
        with pytest.raises(ConfigError):
            parse_mqtt_url("mqtt://:1883")
