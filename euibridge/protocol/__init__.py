"""ElectricUI binary protocol: framing, header, values and messages."""

from . import errors, framing, header, message, protocol, values
from .framing import FrameDecoder, encode_frame
from .header import Header
from .message import Message, decode_message, encode_message, parse_message, serialize_message
from .protocol import MessageId, MessageType
from .values import TypedValue

__all__ = [
    "FrameDecoder",
    "Header",
    "Message",
    "MessageId",
    "MessageType",
    "TypedValue",
    "decode_message",
    "encode_frame",
    "encode_message",
    "parse_message",
    "serialize_message",
    "errors",
    "framing",
    "header",
    "message",
    "protocol",
    "values",
]
