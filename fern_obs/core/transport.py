"""
core/transport.py — WebSocket connection to the OBS control endpoint.

Owns the socket only: connect, send a frame, receive a frame, close.
Frames are decoded from / encoded to JSON here; everything above this
layer deals in dicts.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import OBSConnectionError, ProtocolError, TransportError
from .protocol import SUBPROTOCOL

log = logging.getLogger(__name__)


class Transport:
    def __init__(self, host: str = "localhost", port: int = 4455, open_timeout: float = 5.0):
        self.host = host
        self.port = port
        self.open_timeout = open_timeout
        self._ws: Optional[Any] = None

    @property
    def uri(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        log.debug(f"Connecting to {self.uri}")
        try:
            self._ws = await websockets.connect(
                self.uri,
                open_timeout=self.open_timeout,
                subprotocols=[SUBPROTOCOL],
                max_size=None,
            )
        except asyncio.TimeoutError:
            raise OBSConnectionError(self.host, self.port, f"timed out after {self.open_timeout:.1f}s")
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise OBSConnectionError(self.host, self.port, str(e) or type(e).__name__)

    async def send(self, frame: dict) -> None:
        if self._ws is None:
            raise TransportError("transport is not open")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise _closed_error(e)
        except OSError as e:
            raise TransportError(f"send failed: {e}")

    async def recv(self) -> dict:
        """Wait for the next frame. Raises TransportError once the socket closes."""
        if self._ws is None:
            raise TransportError("transport is not open")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed_error(e)
        except OSError as e:
            raise TransportError(f"receive failed: {e}")
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"undecodable frame: {e}")
        if not isinstance(frame, dict) or "op" not in frame:
            raise ProtocolError(f"frame without opcode: {raw!r:.200}")
        return frame

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, ConnectionClosed) as e:
            log.debug(f"Close handshake failed: {e}")


def _closed_error(exc: ConnectionClosed) -> TransportError:
    close = exc.rcvd
    if close is None:
        return TransportError("connection lost without a close frame")
    reason = f" ({close.reason})" if close.reason else ""
    return TransportError(f"connection closed with code {close.code}{reason}", code=close.code)
