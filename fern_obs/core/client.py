"""
core/client.py — obs-websocket 5.x protocol client.

Handles the Hello/Identify handshake, correlates request responses with
their callers, and demultiplexes unsolicited events into an ordered stream.

A single reader task owns the socket once identified. Responses resolve the
waiting caller; events (and the responses of requests issued with
track=True) are queued in network-arrival order for whoever consumes
events() / next_event(). Nothing is queued while not connected: requests
fail fast with NotConnectedError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import AsyncIterator, Optional, Union

from .errors import (
    AuthError,
    NotConnectedError,
    ProtocolError,
    RequestFailed,
    RequestTimeout,
    TransportError,
)
from .protocol import (
    CloseCode,
    Event,
    EventSubscription,
    OpCode,
    RequestSpec,
    RequestStatusCode,
    Response,
    auth_string,
    batch_frame,
    identify_frame,
    request_frame,
)
from .transport import Transport

log = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 5.0

Inbound = Union[Event, Response]
_END = object()


class ClientPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    CONNECTED = "connected"


class ProtocolClient:
    def __init__(
        self,
        transport: Transport,
        password: Optional[str] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        subscriptions: int = EventSubscription.NONE,
    ):
        self.transport = transport
        self.password = password or None
        self.request_timeout = request_timeout
        self.subscriptions = subscriptions

        self.phase = ClientPhase.DISCONNECTED
        self.negotiated_rpc_version: Optional[int] = None
        self._pending: dict[str, tuple[str, asyncio.Future]] = {}
        self._tracked: set[str] = set()
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None
        self._failure: Optional[Exception] = None

    def is_connected(self) -> bool:
        return self.phase is ClientPhase.CONNECTED

    # ── Connection ────────────────────────────────────────────────────

    async def connect(self) -> None:
        self.phase = ClientPhase.CONNECTING
        try:
            await self.transport.connect()
        except Exception:
            self.phase = ClientPhase.DISCONNECTED
            raise
        self.phase = ClientPhase.IDENTIFYING

    async def identify(self) -> None:
        """Run the Hello → Identify → Identified exchange on an open transport."""
        if self.phase is not ClientPhase.IDENTIFYING:
            raise NotConnectedError("identify() requires an open, unidentified connection")
        try:
            hello = await self._handshake_recv("Hello")
            if hello.get("op") != OpCode.HELLO:
                raise ProtocolError(f"expected Hello (op 0), got op {hello.get('op')}")
            hello_d = _object(hello.get("d") or {}, "Hello payload")

            authentication = None
            challenge = hello_d.get("authentication")
            if challenge:
                if not self.password:
                    raise AuthError("OBS requires a password but none was configured")
                try:
                    authentication = auth_string(self.password, challenge["salt"], challenge["challenge"])
                except (KeyError, TypeError):
                    raise ProtocolError(f"malformed authentication challenge: {challenge!r}")

            await self.transport.send(identify_frame(authentication, self.subscriptions))

            identified = await self._handshake_recv("Identified")
            if identified.get("op") != OpCode.IDENTIFIED:
                raise ProtocolError(f"expected Identified (op 2), got op {identified.get('op')}")
            self.negotiated_rpc_version = _object(identified.get("d") or {}, "Identified payload").get("negotiatedRpcVersion")
        except TransportError as e:
            self.phase = ClientPhase.DISCONNECTED
            if e.code == CloseCode.AUTHENTICATION_FAILED:
                raise AuthError("authentication failed: OBS rejected the password")
            if e.code == CloseCode.UNSUPPORTED_RPC_VERSION:
                raise ProtocolError("OBS does not support RPC version 1")
            raise
        except (AuthError, ProtocolError):
            self.phase = ClientPhase.DISCONNECTED
            raise

        self._failure = None
        self._inbox = asyncio.Queue()
        self.phase = ClientPhase.CONNECTED
        self._reader = asyncio.create_task(self._read_loop())
        log.info(f"Identified with OBS at {self.transport.host}:{self.transport.port} (rpc v{self.negotiated_rpc_version})")

    async def open(self) -> None:
        """connect() followed by identify(); closes the transport if the handshake fails."""
        await self.connect()
        try:
            await self.identify()
        except BaseException:
            await self.transport.close()
            raise

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        if reader and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await self.transport.close()
        self._shutdown(None)

    async def _handshake_recv(self, expected: str) -> dict:
        try:
            return await asyncio.wait_for(self.transport.recv(), self.request_timeout)
        except asyncio.TimeoutError:
            raise ProtocolError(f"no {expected} from OBS within {self.request_timeout:.1f}s")

    # ── Requests ──────────────────────────────────────────────────────

    async def request(
        self,
        request_type: str,
        data: Optional[dict] = None,
        *,
        timeout: Optional[float] = None,
        track: bool = False,
    ) -> Response:
        """
        Send one request and wait for its response.

        Raises NotConnectedError when not identified, RequestTimeout when no
        response arrives in time, RequestFailed when OBS rejects the request.
        With track=True the response is also delivered on the event stream,
        in arrival order relative to events.
        """
        d = await self._roundtrip(
            request_type,
            lambda request_id: request_frame(request_type, request_id, data),
            timeout,
            track,
        )
        return _response(request_type, d, raise_on_failure=True)

    async def request_batch(
        self,
        requests: list[RequestSpec],
        *,
        timeout: Optional[float] = None,
        track: bool = False,
    ) -> list[Response]:
        """
        Send several requests as one RequestBatch under a single correlation id.

        Returns one Response per request; failed entries have ok == False.
        """
        d = await self._roundtrip(
            "RequestBatch",
            lambda request_id: batch_frame(request_id, requests),
            timeout,
            track,
        )
        return _batch_results(d)

    async def _roundtrip(self, request_type: str, build, timeout: Optional[float], track: bool) -> dict:
        if not self.is_connected():
            raise NotConnectedError()
        timeout = self.request_timeout if timeout is None else timeout
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (request_type, future)
        if track:
            self._tracked.add(request_id)
        try:
            await self.transport.send(build(request_id))
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(request_type, timeout)
        except TransportError as e:
            raise NotConnectedError(f"connection lost while sending {request_type}: {e}")
        finally:
            self._pending.pop(request_id, None)
            self._tracked.discard(request_id)

    # ── Events ────────────────────────────────────────────────────────

    async def next_event(self) -> Inbound:
        """
        Wait for the next event (or tracked response) on this connection.
        Raises the error that ended the connection once the stream is exhausted.
        """
        item = await self._inbox.get()
        if item is _END:
            self._inbox.put_nowait(_END)
            raise self._failure or NotConnectedError("connection closed")
        return item

    async def events(self) -> AsyncIterator[Inbound]:
        while True:
            yield await self.next_event()

    # ── Reader ────────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        failure: Optional[Exception] = None
        try:
            while True:
                frame = await self.transport.recv()
                self._dispatch(frame)
        except asyncio.CancelledError:
            raise
        except (TransportError, ProtocolError) as e:
            log.warning(f"OBS connection lost: {e}")
            failure = e
        finally:
            self._shutdown(failure)

    def _dispatch(self, frame: dict) -> None:
        """Route one frame. Raises ProtocolError on a payload of the wrong shape."""
        op = frame.get("op")
        d = _object(frame.get("d") or {}, f"op {op} payload")

        if op == OpCode.EVENT:
            data = _object(d.get("eventData") or {}, "eventData")
            event = Event(type=d.get("eventType", ""), data=data, intent=d.get("eventIntent", 0))
            log.debug(f"Event {event.type}")
            self._inbox.put_nowait(event)
            return

        if op in (OpCode.REQUEST_RESPONSE, OpCode.REQUEST_BATCH_RESPONSE):
            request_id = d.get("requestId", "")
            waiter = self._pending.get(request_id)
            if waiter is None:
                log.debug(f"Dropping response for unknown request id {request_id!r}")
                return
            request_type, future = waiter
            if request_id in self._tracked:
                if op == OpCode.REQUEST_RESPONSE:
                    results = [_response(request_type, d, raise_on_failure=False)]
                else:
                    results = _batch_results(d)
                for response in results:
                    if response.ok:
                        self._inbox.put_nowait(response)
            if not future.done():
                future.set_result(d)
            return

        log.debug(f"Ignoring frame with op {op}")

    def _shutdown(self, failure: Optional[Exception]) -> None:
        if self.phase is ClientPhase.DISCONNECTED and not self._pending:
            return
        self.phase = ClientPhase.DISCONNECTED
        if failure is not None and self._failure is None:
            self._failure = failure
        reason = str(failure) if failure else "connection closed"
        for _, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(NotConnectedError(reason))
        self._pending.clear()
        self._tracked.clear()
        self._inbox.put_nowait(_END)


def _object(value, what: str) -> dict:
    if not isinstance(value, dict):
        raise ProtocolError(f"malformed {what}: expected an object, got {type(value).__name__}")
    return value


def _batch_results(d: dict) -> list[Response]:
    results = d.get("results") or []
    if not isinstance(results, list):
        raise ProtocolError(f"malformed batch results: expected a list, got {type(results).__name__}")
    return [
        _response(entry.get("requestType", ""), entry, raise_on_failure=False)
        for entry in (_object(r, "batch result") for r in results)
    ]


def _response(request_type: str, d: dict, raise_on_failure: bool) -> Response:
    status = _object(d.get("requestStatus") or {}, "requestStatus")
    code = status.get("code", RequestStatusCode.SUCCESS)
    ok = bool(status.get("result", False))
    if not ok and raise_on_failure:
        raise RequestFailed(request_type, code, status.get("comment", ""))
    return Response(
        request_type=request_type,
        request_id=d.get("requestId", ""),
        data=_object(d.get("responseData") or {}, "responseData"),
        status_code=code,
        comment=status.get("comment", ""),
        ok=ok,
    )
