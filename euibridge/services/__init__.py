"""Protocol exchanges: target responder, target engine and host client."""

from .engine import EngineStats, TargetEngine
from .host import AnnounceCountMismatch, HandshakeResult, HostClient, ResponseTimeout, UnexpectedResponse
from .responder import AnnounceCursor, AnnounceExchange, ReplyExchange, TargetResponder, VariableDumpExchange

__all__ = [
    "AnnounceCountMismatch",
    "AnnounceCursor",
    "AnnounceExchange",
    "EngineStats",
    "HandshakeResult",
    "HostClient",
    "ReplyExchange",
    "ResponseTimeout",
    "TargetEngine",
    "TargetResponder",
    "UnexpectedResponse",
    "VariableDumpExchange",
]
