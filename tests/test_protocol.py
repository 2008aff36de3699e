"""
tests/test_protocol.py — Handshake, correlation and event demux against a fake OBS.
"""

import asyncio
import socket

import pytest

from fake_obs import FakeOBS, expected_auth, wait_until
from fern_obs.core.client import ClientPhase, ProtocolClient, _batch_results
from fern_obs.core.errors import (
    AuthError,
    NotConnectedError,
    OBSConnectionError,
    ProtocolError,
    RequestFailed,
    RequestTimeout,
    TransportError,
)
from fern_obs.core.protocol import (
    DAEMON_SUBSCRIPTIONS,
    Event,
    EventSubscription,
    RequestSpec,
    Response,
    auth_string,
    batch_frame,
    identify_frame,
)
from fern_obs.core.transport import Transport


def make_client(obs, password=None, timeout=1.0, subscriptions=DAEMON_SUBSCRIPTIONS):
    return ProtocolClient(
        Transport("127.0.0.1", obs.port, open_timeout=1.0),
        password=password,
        request_timeout=timeout,
        subscriptions=subscriptions,
    )


def free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ─── Frames ──────────────────────────────────────────────────────────────────

def test_auth_string_matches_obs_algorithm():
    assert auth_string("hunter2", "c2FsdA==", "Y2hhbGxlbmdl") == expected_auth("hunter2", "c2FsdA==", "Y2hhbGxlbmdl")


def test_identify_frame_omits_missing_authentication():
    frame = identify_frame(None, EventSubscription.NONE)
    assert frame == {"op": 1, "d": {"rpcVersion": 1, "eventSubscriptions": 0}}
    assert identify_frame("abc", DAEMON_SUBSCRIPTIONS)["d"]["authentication"] == "abc"


def test_batch_frame_numbers_entries():
    frame = batch_frame("b1", [RequestSpec("GetStats"), RequestSpec("SetCurrentProgramScene", {"sceneName": "A"})])
    assert frame["op"] == 8
    assert frame["d"]["requestId"] == "b1"
    assert [r["requestId"] for r in frame["d"]["requests"]] == ["0", "1"]
    assert frame["d"]["requests"][1]["requestData"] == {"sceneName": "A"}


# ─── Handshake ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_identify_without_password():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        assert client.phase is ClientPhase.CONNECTED
        assert client.negotiated_rpc_version == 1
        assert "authentication" not in obs.identified[0]
        assert obs.identified[0]["eventSubscriptions"] == int(DAEMON_SUBSCRIPTIONS)
        await client.close()
        assert client.phase is ClientPhase.DISCONNECTED


@pytest.mark.asyncio
async def test_identify_with_password():
    async with FakeOBS(password="hunter2") as obs:
        client = make_client(obs, password="hunter2")
        await client.open()
        assert client.is_connected()
        assert obs.identified[0]["authentication"] == expected_auth("hunter2", obs.salt, obs.challenge)
        await client.close()


@pytest.mark.asyncio
async def test_wrong_password_is_auth_error():
    async with FakeOBS(password="hunter2") as obs:
        client = make_client(obs, password="wrong")
        with pytest.raises(AuthError):
            await client.open()
        assert client.phase is ClientPhase.DISCONNECTED
        assert not client.transport.is_open


@pytest.mark.asyncio
async def test_missing_password_is_auth_error():
    async with FakeOBS(password="hunter2") as obs:
        client = make_client(obs)
        with pytest.raises(AuthError):
            await client.open()
        assert obs.identified == []


@pytest.mark.asyncio
async def test_refused_port_is_connection_error():
    client = ProtocolClient(Transport("127.0.0.1", free_port(), open_timeout=1.0))
    with pytest.raises(OBSConnectionError) as exc:
        await client.open()
    assert exc.value.exit_code == 3
    assert client.phase is ClientPhase.DISCONNECTED


@pytest.mark.asyncio
async def test_request_before_identify_fails_fast():
    client = ProtocolClient(Transport("127.0.0.1", 1))
    with pytest.raises(NotConnectedError):
        await client.request("GetStats")


# ─── Requests ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_responses_are_matched_out_of_order():
    async with FakeOBS() as obs:
        obs.delays["GetStats"] = 0.2
        obs.recording = True
        client = make_client(obs)
        await client.open()

        stats_task = asyncio.create_task(client.request("GetStats"))
        await wait_until(lambda: "GetStats" in obs.requests)
        record = await client.request("GetRecordStatus")
        assert not stats_task.done()
        stats = await stats_task

        assert record.request_type == "GetRecordStatus"
        assert record.data["outputActive"] is True
        assert stats.request_type == "GetStats"
        assert stats.data["cpuUsage"] == 2.5
        await client.close()


@pytest.mark.asyncio
async def test_unanswered_request_times_out():
    async with FakeOBS() as obs:
        obs.ignore.add("GetStats")
        client = make_client(obs, timeout=0.2)
        await client.open()
        with pytest.raises(RequestTimeout) as exc:
            await client.request("GetStats")
        assert exc.value.exit_code == 5

        # The connection survives a timed-out request.
        response = await client.request("GetSceneList")
        assert response.data["currentProgramSceneName"] == "Desktop"
        await client.close()


@pytest.mark.asyncio
async def test_rejected_request_raises_request_failed():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        with pytest.raises(RequestFailed) as exc:
            await client.request("SetCurrentProgramScene", {"sceneName": "Nope"})
        assert exc.value.code == 600
        assert "Nope" in exc.value.comment
        await client.close()


@pytest.mark.asyncio
async def test_request_batch_reports_each_result():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        responses = await client.request_batch([
            RequestSpec("GetCurrentProgramScene"),
            RequestSpec("SetCurrentProgramScene", {"sceneName": "Missing"}),
            RequestSpec("GetStats"),
        ])
        assert [r.request_type for r in responses] == ["GetCurrentProgramScene", "SetCurrentProgramScene", "GetStats"]
        assert [r.ok for r in responses] == [True, False, True]
        assert responses[1].status_code == 600
        await client.close()


@pytest.mark.asyncio
async def test_pending_requests_fail_when_connection_drops():
    async with FakeOBS() as obs:
        obs.ignore.add("GetStats")
        client = make_client(obs, timeout=5.0)
        await client.open()
        task = asyncio.create_task(client.request("GetStats"))
        await wait_until(lambda: "GetStats" in obs.requests)
        await obs.drop()
        with pytest.raises(NotConnectedError):
            await task
        assert not client.is_connected()
        await client.close()


# ─── Events ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_events_are_delivered_in_order():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        await client.request("StartRecord")
        await client.request("PauseRecord")

        first = await asyncio.wait_for(client.next_event(), 1)
        second = await asyncio.wait_for(client.next_event(), 1)
        assert isinstance(first, Event)
        assert first.type == "RecordStateChanged"
        assert first.data["outputState"] == "OBS_WEBSOCKET_OUTPUT_STARTED"
        assert second.data["outputState"] == "OBS_WEBSOCKET_OUTPUT_PAUSED"
        await client.close()


@pytest.mark.asyncio
async def test_command_client_receives_no_events():
    async with FakeOBS() as obs:
        client = make_client(obs, subscriptions=EventSubscription.NONE)
        await client.open()
        await client.request("StartRecord")
        await client.request("GetRecordStatus", track=True)
        item = await asyncio.wait_for(client.next_event(), 1)
        assert isinstance(item, Response)
        assert item.request_type == "GetRecordStatus"
        await client.close()


@pytest.mark.asyncio
async def test_tracked_responses_share_the_event_stream():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        await client.request("StartRecord")
        await client.request("GetRecordStatus", track=True)
        await client.request_batch([RequestSpec("GetStats"), RequestSpec("Bogus")], track=True)

        items = [await asyncio.wait_for(client.next_event(), 1) for _ in range(3)]
        assert isinstance(items[0], Event)
        assert [type(i) for i in items[1:]] == [Response, Response]
        assert [i.request_type for i in items[1:]] == ["GetRecordStatus", "GetStats"]
        await client.close()


@pytest.mark.asyncio
async def test_event_stream_ends_with_connection_error():
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        await obs.drop()
        with pytest.raises(TransportError) as exc:
            async for _ in client.events():
                pass
        assert "1001" in str(exc.value)
        await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("frame", [
    {"op": 5, "d": ["not", "an", "object"]},
    {"op": 5, "d": {"eventType": "RecordStateChanged", "eventData": [1]}},
    {"op": 7, "d": "oops"},
])
async def test_malformed_frame_ends_stream_with_protocol_error(frame):
    async with FakeOBS() as obs:
        client = make_client(obs)
        await client.open()
        await obs.send_raw(frame)
        with pytest.raises(ProtocolError):
            await asyncio.wait_for(client.next_event(), 1)
        assert not client.is_connected()
        await client.close()


def test_batch_results_reject_entries_that_are_not_objects():
    with pytest.raises(ProtocolError):
        _batch_results({"results": ["GetStats"]})
    with pytest.raises(ProtocolError):
        _batch_results({"results": {"requestType": "GetStats"}})
    assert _batch_results({}) == []
