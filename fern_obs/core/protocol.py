"""
core/protocol.py — obs-websocket 5.x wire constants, frame builders and auth.

Frames are JSON objects of the form {"op": <int>, "d": {...}}.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Any, Optional

RPC_VERSION = 1
SUBPROTOCOL = "obswebsocket.json"


class OpCode(IntEnum):
    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    REIDENTIFY = 3
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7
    REQUEST_BATCH = 8
    REQUEST_BATCH_RESPONSE = 9


class CloseCode(IntEnum):
    UNKNOWN_REASON = 4000
    MESSAGE_DECODE_ERROR = 4002
    MISSING_DATA_FIELD = 4003
    NOT_IDENTIFIED = 4007
    ALREADY_IDENTIFIED = 4008
    AUTHENTICATION_FAILED = 4009
    UNSUPPORTED_RPC_VERSION = 4010
    SESSION_INVALIDATED = 4011


class EventSubscription(IntFlag):
    NONE = 0
    GENERAL = 1 << 0
    CONFIG = 1 << 1
    SCENES = 1 << 2
    INPUTS = 1 << 3
    TRANSITIONS = 1 << 4
    FILTERS = 1 << 5
    OUTPUTS = 1 << 6
    SCENE_ITEMS = 1 << 7
    MEDIA_INPUTS = 1 << 8
    VENDORS = 1 << 9
    UI = 1 << 10


# What the daemon needs to keep the snapshot current.
DAEMON_SUBSCRIPTIONS = EventSubscription.GENERAL | EventSubscription.SCENES | EventSubscription.OUTPUTS


class RequestStatusCode(IntEnum):
    SUCCESS = 100
    OUTPUT_RUNNING = 500
    OUTPUT_NOT_RUNNING = 501
    OUTPUT_PAUSED = 502
    OUTPUT_NOT_PAUSED = 503
    RESOURCE_NOT_FOUND = 600


class OutputState:
    STARTING = "OBS_WEBSOCKET_OUTPUT_STARTING"
    STARTED = "OBS_WEBSOCKET_OUTPUT_STARTED"
    STOPPING = "OBS_WEBSOCKET_OUTPUT_STOPPING"
    STOPPED = "OBS_WEBSOCKET_OUTPUT_STOPPED"
    RECONNECTING = "OBS_WEBSOCKET_OUTPUT_RECONNECTING"
    RECONNECTED = "OBS_WEBSOCKET_OUTPUT_RECONNECTED"
    PAUSED = "OBS_WEBSOCKET_OUTPUT_PAUSED"
    RESUMED = "OBS_WEBSOCKET_OUTPUT_RESUMED"


@dataclass(frozen=True)
class Event:
    """An unsolicited event frame (op 5)."""
    type: str
    data: dict = field(default_factory=dict)
    intent: int = 0


@dataclass(frozen=True)
class Response:
    """A request response (op 7, or one entry of an op 9 batch)."""
    request_type: str
    request_id: str
    data: dict = field(default_factory=dict)
    status_code: int = RequestStatusCode.SUCCESS
    comment: str = ""
    ok: bool = True


@dataclass(frozen=True)
class RequestSpec:
    """One entry of a request batch."""
    request_type: str
    data: Optional[dict] = None


def auth_string(password: str, salt: str, challenge: str) -> str:
    """
    Compute the Identify authentication string:
      secret = base64(sha256(password + salt))
      auth   = base64(sha256(secret + challenge))
    """
    secret = base64.b64encode(hashlib.sha256((password + salt).encode()).digest()).decode()
    return base64.b64encode(hashlib.sha256((secret + challenge).encode()).digest()).decode()


def identify_frame(authentication: Optional[str], subscriptions: int) -> dict:
    d: dict[str, Any] = {"rpcVersion": RPC_VERSION, "eventSubscriptions": int(subscriptions)}
    if authentication is not None:
        d["authentication"] = authentication
    return {"op": OpCode.IDENTIFY, "d": d}


def request_frame(request_type: str, request_id: str, data: Optional[dict] = None) -> dict:
    d: dict[str, Any] = {"requestType": request_type, "requestId": request_id}
    if data:
        d["requestData"] = data
    return {"op": OpCode.REQUEST, "d": d}


def batch_frame(request_id: str, requests: list[RequestSpec], halt_on_failure: bool = False) -> dict:
    entries = []
    for i, spec in enumerate(requests):
        entry: dict[str, Any] = {"requestType": spec.request_type, "requestId": str(i)}
        if spec.data:
            entry["requestData"] = spec.data
        entries.append(entry)
    return {
        "op": OpCode.REQUEST_BATCH,
        "d": {"requestId": request_id, "haltOnFailure": halt_on_failure, "requests": entries},
    }
