"""
daemon/supervisor.py — Long-running OBS bridge.

Keeps one session with OBS at a time, folds everything it receives into the
canonical ObsState and hands every new snapshot to the StatePublisher.

Session lifecycle:
  1. connect + identify (subscribed to General, Scenes, Outputs events)
  2. publish connected: true, issue one tracked RequestBatch for a full sync
  3. start the output clock poller, and the stats poller unless disabled
  4. pump client.events() into the reconciler until the connection drops
  5. publish connected: false, back off, retry

SIGINT/SIGTERM cancel the session, publish a final disconnected snapshot
and flush it once.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Callable, Optional

from fern_obs.config.settings import Settings
from fern_obs.core.client import ProtocolClient
from fern_obs.core.errors import AuthError, FernObsError, RequestTimeout, TransportError
from fern_obs.core.protocol import DAEMON_SUBSCRIPTIONS, Event, RequestSpec
from fern_obs.core.transport import Transport
from fern_obs.state import reconciler
from fern_obs.state.models import ObsState
from fern_obs.state.publisher import StatePublisher
from fern_obs.state.reconciler import Connected, Disconnected
from .connection import BackoffPolicy, ConnectionState, Phase, Trigger, transition
from .poller import OUTPUT_REQUESTS, STATS_REQUESTS, StatsPoller

log = logging.getLogger(__name__)

EXIT_FATAL = 1

SYNC_REQUESTS = ("GetRecordStatus", "GetStreamStatus", "GetSceneList", "GetCurrentProgramScene")


class DaemonSupervisor:
    def __init__(
        self,
        settings: Settings,
        client_factory: Optional[Callable[[], ProtocolClient]] = None,
    ):
        self.settings = settings
        self.obs = settings.obs
        self.config = settings.daemon
        self.policy = BackoffPolicy(
            initial=self.config.reconnect_interval_ms / 1000,
            cap=self.config.reconnect_max_interval_ms / 1000,
            max_attempts=self.config.max_reconnects,
        )
        self.publisher = StatePublisher(self.config.state_path, debounce=self.config.publish_debounce_ms / 1000)
        self.state = ObsState()
        self.connection = ConnectionState()
        self.exit_code = 0

        self._client_factory = client_factory or self._make_client
        self._pollers: list[StatsPoller] = []
        self._session_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._signals: list[int] = []

    def _make_client(self) -> ProtocolClient:
        transport = Transport(self.obs.host, self.obs.port, open_timeout=self.obs.connect_timeout)
        return ProtocolClient(
            transport,
            password=self.obs.password,
            request_timeout=self.obs.request_timeout,
            subscriptions=DAEMON_SUBSCRIPTIONS,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def run(self, handle_signals: bool = True) -> int:
        """Run until stopped. Returns the process exit code."""
        log.info(f"Starting OBS daemon → {self.obs.host}:{self.obs.port}, state file {self.publisher.path}")
        self._apply(Disconnected())
        if handle_signals:
            self._install_signal_handlers()
        try:
            await self._supervise()
        finally:
            await self._shutdown()
        return self.exit_code

    def request_stop(self) -> None:
        if self._stopping.is_set():
            return
        log.info("Shutdown signal received.")
        self._stopping.set()
        if self._session_task and not self._session_task.done():
            self._session_task.cancel()

    async def _supervise(self) -> None:
        self._advance(Trigger.START)
        while not self._stopping.is_set():
            self._session_task = asyncio.create_task(self._session())
            try:
                await self._session_task
                error = "connection closed"
            except asyncio.CancelledError:
                if self._stopping.is_set():
                    return
                raise
            except AuthError as e:
                error = str(e)
                if self.config.auth_fail_fast:
                    log.error(f"OBS rejected authentication, exiting (auth_fail_fast): {e}")
                    self._apply(Disconnected(error))
                    self.exit_code = EXIT_FATAL
                    return
            except FernObsError as e:
                error = str(e)
            finally:
                self._session_task = None

            was_connected = self.connection.phase is Phase.CONNECTED
            self._advance(Trigger.LOST if was_connected else Trigger.FAILED)
            self._apply(Disconnected(error))
            if was_connected:
                log.warning(f"Lost connection to OBS: {error}")
            else:
                log.warning(f"OBS connection failed: {error}")

            if self.policy.exhausted(self.connection.attempt):
                log.error(f"Max OBS reconnect attempts reached ({self.policy.max_attempts}).")
                self.exit_code = EXIT_FATAL
                return

            log.info(f"Reconnect attempt {self.connection.attempt} in {self.connection.next_delay:.1f}s")
            if await self._wait_for_stop(self.connection.next_delay):
                return
            self._advance(Trigger.RETRY)

    async def _session(self) -> None:
        client = self._client_factory()
        try:
            await client.connect()
            self._advance(Trigger.TRANSPORT_UP)
            await client.identify()
            self._advance(Trigger.IDENTIFIED)
            self._apply(Connected())
            log.info(f"Connected to OBS at {self.obs.host}:{self.obs.port}")

            await self._sync(client)
            self._start_pollers(client)

            async for item in client.events():
                if isinstance(item, Event) and item.type == "ExitStarted":
                    raise TransportError("OBS is shutting down")
                self._apply(item)
        finally:
            await self._stop_pollers()
            await client.close()

    async def _sync(self, client: ProtocolClient) -> None:
        requests = list(SYNC_REQUESTS)
        if self.config.stats:
            requests.extend(STATS_REQUESTS)
        try:
            responses = await client.request_batch([RequestSpec(r) for r in requests], track=True)
        except RequestTimeout as e:
            log.warning(f"Initial state sync: {e}")
            return
        for response in responses:
            if not response.ok:
                log.warning(f"Initial state sync: {response.request_type} failed (code {response.status_code}) {response.comment}")

    def _start_pollers(self, client: ProtocolClient) -> None:
        interval = self.config.stats_interval_ms / 1000
        self._pollers = [StatsPoller(client, interval, OUTPUT_REQUESTS, name="output")]
        if self.config.stats:
            self._pollers.append(StatsPoller(client, interval, STATS_REQUESTS, name="stats"))
        for poller in self._pollers:
            poller.start()

    async def _stop_pollers(self) -> None:
        pollers, self._pollers = self._pollers, []
        for poller in pollers:
            await poller.stop()

    async def _wait_for_stop(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _shutdown(self) -> None:
        if self.connection.phase not in (Phase.SHUTTING_DOWN, Phase.STOPPED):
            self._advance(Trigger.SHUTDOWN)
        task = self._session_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, FernObsError):
                pass
        await self._stop_pollers()
        self._apply(Disconnected(self.state.error if self.exit_code else None))
        self.publisher.close()
        self._remove_signal_handlers()
        self._advance(Trigger.STOPPED)
        log.info("OBS daemon stopped.")

    # ── State ─────────────────────────────────────────────────────────

    def _advance(self, trigger: Trigger) -> ConnectionState:
        previous = self.connection
        self.connection = transition(previous, trigger, self.policy)
        log.debug(f"Connection: {previous} → {self.connection}")
        return self.connection

    def _apply(self, item: reconciler.Input) -> None:
        self.state = reconciler.apply(self.state, item)
        self.publisher.publish(self.state)

    # ── Signals ───────────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                self._signals.append(sig)
            except NotImplementedError:
                pass  # Windows

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()
