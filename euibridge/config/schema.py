"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

from typing import Any, Dict

from marshmallow import Schema, ValidationError, fields, post_load, pre_load, validate, validates_schema

from ..protocol import protocol
from .model import RuntimeConfig


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for euibridge configuration."""

    # Serial
    serial_port = fields.Str(required=True, validate=validate.Length(min=1))
    serial_baud = fields.Int(required=True, validate=validate.Range(min=1200))

    # Device identity
    board_id = fields.Int(required=True, validate=validate.Range(min=0, max=protocol.UINT16_MAX))
    device_name = fields.Raw(required=True)
    library_version = fields.Int(required=True, validate=validate.Range(min=0, max=protocol.UINT8_MAX))

    # Host policy
    response_timeout = fields.Float(required=True, validate=validate.Range(min=0.01))
    retry_attempts = fields.Int(required=True, validate=validate.Range(min=1))

    # Engine
    inbox_limit = fields.Int(required=True, validate=validate.Range(min=1))

    # System
    debug_logging = fields.Bool(load_default=False)

    @pre_load
    def encode_device_name(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        name = data.get("device_name")
        if isinstance(name, str):
            data = dict(data)
            data["device_name"] = name.encode("utf-8")
        return data

    @validates_schema
    def validate_device_name(self, data: Dict[str, Any], **kwargs: Any) -> None:
        name = data.get("device_name")
        if not isinstance(name, (bytes, bytearray)) or not name:
            raise ValidationError("device_name must be a non-empty string", field_name="device_name")
        if len(name) > protocol.MAX_PAYLOAD_SIZE:
            raise ValidationError(
                f"device_name must be at most {protocol.MAX_PAYLOAD_SIZE} bytes",
                field_name="device_name",
            )

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        data["device_name"] = bytes(data["device_name"])
        return RuntimeConfig(**data)
