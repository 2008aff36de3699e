"""
daemon/poller.py — Periodic request ticker, alive only while connected.

Each tick issues the configured requests with track=True so their responses
flow through the client's ordered event stream into the reconciler. A
failed tick (timeout, not connected, OBS error) is logged and the next tick
runs on schedule.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from fern_obs.core.client import ProtocolClient
from fern_obs.core.errors import RequestError, RequestTimeout

log = logging.getLogger(__name__)

STATS_REQUESTS = ("GetStats",)
OUTPUT_REQUESTS = ("GetRecordStatus", "GetStreamStatus")


class StatsPoller:
    def __init__(
        self,
        client: ProtocolClient,
        interval: float = 1.0,
        requests: Sequence[str] = STATS_REQUESTS,
        name: str = "stats",
    ):
        self.client = client
        self.interval = interval
        self.requests = tuple(requests)
        self.name = name
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-poller")
            log.debug(f"{self.name} poller started ({self.interval:.2f}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.client.is_connected():
                continue
            await self.tick()

    async def tick(self) -> None:
        self.ticks += 1
        for request_type in self.requests:
            try:
                await self.client.request(request_type, track=True)
            except RequestTimeout as e:
                log.warning(f"{self.name} poll: {e}")
            except RequestError as e:
                log.debug(f"{self.name} poll {request_type} skipped: {e}")
