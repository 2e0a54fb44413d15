"""Tests for runtime configuration loading and validation."""

from __future__ import annotations

import dataclasses

import pytest

from euibridge.config.settings import ConfigError, RuntimeConfig, get_default_config, load_runtime_config
from euibridge.daemon import parse_config
from euibridge.protocol import protocol


def test_defaults_cover_every_field() -> None:
    defaults = get_default_config()

    assert set(defaults) == {field.name for field in dataclasses.fields(RuntimeConfig)}
    assert defaults["board_id"] == protocol.DEFAULT_BOARD_ID


def test_load_defaults() -> None:
    config = load_runtime_config()

    assert config == RuntimeConfig()
    assert config.serial_baud == 115200
    assert config.device_name == b"euibridge"


def test_overrides_are_applied_and_none_is_ignored() -> None:
    config = load_runtime_config(
        {"serial_port": "/dev/ttyUSB1", "device_name": "blinky", "board_id": None, "inbox_limit": 2}
    )

    assert config.serial_port == "/dev/ttyUSB1"
    assert config.device_name == b"blinky"
    assert config.board_id == protocol.DEFAULT_BOARD_ID
    assert config.inbox_limit == 2


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"board_id": 0x10000}, "board_id"),
        ({"board_id": -1}, "board_id"),
        ({"library_version": 256}, "library_version"),
        ({"serial_baud": 300}, "serial_baud"),
        ({"retry_attempts": 0}, "retry_attempts"),
        ({"response_timeout": 0}, "response_timeout"),
        ({"inbox_limit": 0}, "inbox_limit"),
        ({"serial_port": ""}, "serial_port"),
        ({"device_name": ""}, "device_name"),
        ({"device_name": "x" * 1024}, "device_name"),
    ],
)
def test_invalid_values(overrides: dict[str, object], field: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_runtime_config(overrides)

    assert field in excinfo.value.messages


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_runtime_config({"mqtt_host": "localhost"})

    assert "mqtt_host" in excinfo.value.messages
    assert "mqtt_host" in str(excinfo.value)


def test_command_line_overrides() -> None:
    config = parse_config(
        ["--port", "/dev/ttyS1", "--baud", "57600", "--board-id", "0x1234", "--name", "blinky", "--debug"]
    )

    assert config.serial_port == "/dev/ttyS1"
    assert config.serial_baud == 57600
    assert config.board_id == 0x1234
    assert config.device_name == b"blinky"
    assert config.debug_logging is True


def test_command_line_defaults() -> None:
    assert parse_config([]) == RuntimeConfig()
