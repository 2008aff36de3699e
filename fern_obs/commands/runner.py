"""
commands/runner.py — One-shot OBS commands.

Every CLI command is its own process and its own OBS client: connect,
identify (no event subscriptions), issue one request, close. Nothing is
shared with a running daemon and nothing is retried; a caller is waiting.

Start/stop commands are idempotent: OBS answering "output already running"
(500) to a start, or "output not running" (501) to a stop, counts as success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from fern_obs.config.settings import OBSSettings
from fern_obs.core.client import ProtocolClient
from fern_obs.core.errors import CommandError, RequestFailed
from fern_obs.core.protocol import EventSubscription, RequestSpec, RequestStatusCode
from fern_obs.core.transport import Transport
from fern_obs.state import reconciler
from fern_obs.state.models import ObsState
from fern_obs.state.reconciler import Connected

log = logging.getLogger(__name__)

STATUS_REQUESTS = ("GetRecordStatus", "GetStreamStatus", "GetSceneList", "GetCurrentProgramScene", "GetStats")


class Command(str, Enum):
    START_RECORDING = "start-recording"
    STOP_RECORDING = "stop-recording"
    TOGGLE_PAUSE = "toggle-pause"
    START_STREAMING = "start-streaming"
    STOP_STREAMING = "stop-streaming"
    SCENE = "scene"
    STATUS = "status"


@dataclass
class CommandResult:
    message: str = ""
    state: Optional[ObsState] = None


class CommandRunner:
    def __init__(
        self,
        obs: OBSSettings,
        client_factory: Optional[Callable[[], ProtocolClient]] = None,
    ):
        self.obs = obs
        self._client_factory = client_factory or self._make_client

    def _make_client(self) -> ProtocolClient:
        transport = Transport(self.obs.host, self.obs.port, open_timeout=self.obs.connect_timeout)
        return ProtocolClient(
            transport,
            password=self.obs.password,
            request_timeout=self.obs.request_timeout,
            subscriptions=EventSubscription.NONE,
        )

    async def run(self, command: Command, argument: Optional[str] = None) -> CommandResult:
        client = self._client_factory()
        await client.open()
        try:
            return await self._execute(client, command, argument)
        finally:
            await client.close()

    async def _execute(self, client: ProtocolClient, command: Command, argument: Optional[str]) -> CommandResult:
        log.debug(f"Running {command.value} against {self.obs.host}:{self.obs.port}")

        if command is Command.START_RECORDING:
            return await _start(client, "StartRecord", "Recording started", "Recording already active")

        if command is Command.STOP_RECORDING:
            try:
                response = await client.request("StopRecord")
            except RequestFailed as e:
                if e.code == RequestStatusCode.OUTPUT_NOT_RUNNING:
                    return CommandResult("Recording is not active")
                raise
            path = response.data.get("outputPath")
            return CommandResult(f"Recording saved to: {path}" if path else "Recording stopped")

        if command is Command.TOGGLE_PAUSE:
            status = await client.request("GetRecordStatus")
            if not status.data.get("outputActive", False):
                raise CommandError("Recording is not active; nothing to pause")
            if status.data.get("outputPaused", False):
                await client.request("ResumeRecord")
                return CommandResult("Recording resumed")
            await client.request("PauseRecord")
            return CommandResult("Recording paused")

        if command is Command.START_STREAMING:
            return await _start(client, "StartStream", "Streaming started", "Streaming already active")

        if command is Command.STOP_STREAMING:
            try:
                await client.request("StopStream")
            except RequestFailed as e:
                if e.code == RequestStatusCode.OUTPUT_NOT_RUNNING:
                    return CommandResult("Streaming is not active")
                raise
            return CommandResult("Streaming stopped")

        if command is Command.SCENE:
            if not argument:
                raise CommandError("scene name is required")
            await client.request("SetCurrentProgramScene", {"sceneName": argument})
            return CommandResult(f"Scene set to: {argument}")

        if command is Command.STATUS:
            responses = await client.request_batch([RequestSpec(r) for r in STATUS_REQUESTS])
            state = reconciler.apply(ObsState(), Connected())
            for response in responses:
                if response.ok:
                    state = reconciler.apply(state, response)
                else:
                    log.debug(f"status: {response.request_type} failed (code {response.status_code})")
            return CommandResult(state=state)

        raise CommandError(f"unknown command: {command}")


async def _start(client: ProtocolClient, request_type: str, started: str, already: str) -> CommandResult:
    try:
        await client.request(request_type)
    except RequestFailed as e:
        if e.code == RequestStatusCode.OUTPUT_RUNNING:
            return CommandResult(already)
        raise
    return CommandResult(started)
