"""
tests/test_supervisor.py — Daemon lifecycle against a fake OBS.
"""

import asyncio
import json
import socket

import pytest

from fake_obs import FakeOBS, wait_until
from fern_obs.config.settings import DaemonSettings, OBSSettings, Settings
from fern_obs.daemon.connection import Phase
from fern_obs.daemon.supervisor import DaemonSupervisor


def free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def make_settings(tmp_path, port, password=None, **daemon):
    daemon = {
        "stats_interval_ms": 50,
        "reconnect_interval_ms": 50,
        "reconnect_max_interval_ms": 100,
        "publish_debounce_ms": 10,
        "state_file": tmp_path / "obs-state.json",
        **daemon,
    }
    return Settings(
        obs=OBSSettings(host="127.0.0.1", port=port, password=password, request_timeout_ms=1000, connect_timeout_ms=1000),
        daemon=DaemonSettings(**daemon),
    )


def read_state(path):
    try:
        return json.loads(path.read_text())
    except (OSError, ValueError):
        return None


def state_is(path, **expected):
    state = read_state(path)
    return state is not None and all(state.get(k) == v for k, v in expected.items())


async def stop(supervisor, task):
    supervisor.request_stop()
    return await asyncio.wait_for(task, 5)


@pytest.mark.asyncio
async def test_connects_once_obs_becomes_reachable(tmp_path):
    port = free_port()
    settings = make_settings(tmp_path, port)
    path = settings.daemon.state_path
    supervisor = DaemonSupervisor(settings)
    task = asyncio.create_task(supervisor.run(handle_signals=False))

    await wait_until(lambda: supervisor.connection.attempt >= 1)
    state = read_state(path)
    assert state is None or state["connected"] is False

    async with FakeOBS(port=port) as obs:
        obs.current_scene = "Gaming"
        await wait_until(lambda: state_is(path, connected=True, current_scene="Gaming"))
        assert supervisor.connection.phase is Phase.CONNECTED
        state = read_state(path)
        assert state["scenes"] == ["Desktop", "Gaming", "BRB"]
        assert state["error"] is None

        assert await stop(supervisor, task) == 0

    final = read_state(path)
    assert final["connected"] is False
    assert supervisor.connection.phase is Phase.STOPPED


@pytest.mark.asyncio
async def test_events_reach_the_state_file(tmp_path):
    async with FakeOBS() as obs:
        settings = make_settings(tmp_path, obs.port)
        path = settings.daemon.state_path
        supervisor = DaemonSupervisor(settings)
        task = asyncio.create_task(supervisor.run(handle_signals=False))
        await wait_until(lambda: state_is(path, connected=True))

        obs.recording = True
        obs.record_duration_ms = 3000
        await obs.emit("RecordStateChanged", {"outputActive": True, "outputState": "OBS_WEBSOCKET_OUTPUT_STARTED"})
        await wait_until(lambda: (read_state(path) or {}).get("recording", {}).get("active") is True)

        # The output poller keeps the clock moving from GetRecordStatus.
        await wait_until(lambda: read_state(path)["recording"]["elapsed_secs"] == 3)
        assert read_state(path)["recording"]["timecode"] == "00:03"
        await wait_until(lambda: read_state(path)["stats"] is not None)
        assert read_state(path)["stats"]["cpu_usage"] == 2.5

        await stop(supervisor, task)


@pytest.mark.asyncio
async def test_no_stats_keeps_stats_null(tmp_path):
    async with FakeOBS() as obs:
        settings = make_settings(tmp_path, obs.port, stats=False)
        path = settings.daemon.state_path
        supervisor = DaemonSupervisor(settings)
        task = asyncio.create_task(supervisor.run(handle_signals=False))
        await wait_until(lambda: state_is(path, connected=True))

        await wait_until(lambda: obs.requests.count("GetRecordStatus") >= 3)
        assert "GetStats" not in obs.requests
        assert read_state(path)["stats"] is None
        await stop(supervisor, task)


@pytest.mark.asyncio
async def test_lost_connection_keeps_scenes_and_reconnects(tmp_path):
    async with FakeOBS() as obs:
        settings = make_settings(tmp_path, obs.port, reconnect_interval_ms=500, reconnect_max_interval_ms=1000)
        path = settings.daemon.state_path
        supervisor = DaemonSupervisor(settings)
        task = asyncio.create_task(supervisor.run(handle_signals=False))
        await wait_until(lambda: state_is(path, connected=True))

        await obs.drop()
        await wait_until(lambda: state_is(path, connected=False))
        state = read_state(path)
        assert state["scenes"] == ["Desktop", "Gaming", "BRB"]
        assert state["stats"] is None
        assert state["error"]

        await wait_until(lambda: state_is(path, connected=True))
        await stop(supervisor, task)


@pytest.mark.asyncio
async def test_gives_up_after_max_reconnects(tmp_path):
    settings = make_settings(tmp_path, free_port(), max_reconnects=2)
    supervisor = DaemonSupervisor(settings)
    code = await asyncio.wait_for(supervisor.run(handle_signals=False), 5)
    assert code == 1
    assert supervisor.connection.phase is Phase.STOPPED
    assert read_state(settings.daemon.state_path)["connected"] is False


@pytest.mark.asyncio
async def test_auth_fail_fast_exits(tmp_path):
    async with FakeOBS(password="secret") as obs:
        settings = make_settings(tmp_path, obs.port, password="wrong", auth_fail_fast=True)
        supervisor = DaemonSupervisor(settings)
        code = await asyncio.wait_for(supervisor.run(handle_signals=False), 5)
        assert code == 1
        state = read_state(settings.daemon.state_path)
        assert state["connected"] is False
        assert "authentication" in state["error"]


@pytest.mark.asyncio
async def test_auth_failure_retries_by_default(tmp_path):
    async with FakeOBS(password="secret") as obs:
        settings = make_settings(tmp_path, obs.port, password="wrong")
        supervisor = DaemonSupervisor(settings)
        task = asyncio.create_task(supervisor.run(handle_signals=False))
        await wait_until(lambda: supervisor.connection.attempt >= 2)
        assert not task.done()
        assert await stop(supervisor, task) == 0


@pytest.mark.asyncio
async def test_obs_exit_is_treated_as_lost_connection(tmp_path):
    async with FakeOBS() as obs:
        settings = make_settings(tmp_path, obs.port, reconnect_interval_ms=500, reconnect_max_interval_ms=1000)
        path = settings.daemon.state_path
        supervisor = DaemonSupervisor(settings)
        task = asyncio.create_task(supervisor.run(handle_signals=False))
        await wait_until(lambda: state_is(path, connected=True))

        await obs.emit("ExitStarted", {}, category=1)
        await wait_until(lambda: state_is(path, connected=False, error="OBS is shutting down"))
        await stop(supervisor, task)
