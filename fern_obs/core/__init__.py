"""core — obs-websocket protocol plumbing."""
from .client import ClientPhase, ProtocolClient
from .errors import (
    AuthError,
    CommandError,
    FernObsError,
    NotConnectedError,
    OBSConnectionError,
    ProtocolError,
    RequestError,
    RequestFailed,
    RequestTimeout,
    StateWriteError,
    TransportError,
)
from .protocol import Event, RequestSpec, Response
from .transport import Transport

__all__ = [
    "ClientPhase", "ProtocolClient", "Transport", "Event", "Response", "RequestSpec",
    "FernObsError", "OBSConnectionError", "AuthError", "ProtocolError", "TransportError",
    "RequestError", "RequestTimeout", "NotConnectedError", "RequestFailed",
    "StateWriteError", "CommandError",
]
