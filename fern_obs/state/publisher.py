"""
state/publisher.py — Debounced, atomic state-file writer.

publish() stores the latest snapshot as the pending payload and arms a
single timer if none is armed. When the timer fires, whatever is pending
at that moment is written once, on a worker thread so the event loop never
waits on fsync. A burst of mutations inside one debounce window therefore
costs exactly one write, and that write carries the last snapshot of the
burst.

Every published snapshot gets a version number. A write whose version is
not newer than the last one on disk is dropped, so a slow background write
can never land over the snapshot close() wrote after it.

Writes go to a temp file in the target directory, set 0600, fsync and
rename over the target, so readers only ever see a complete file.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from fern_obs.core.errors import StateWriteError
from .models import ObsState

log = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.075


class StatePublisher:
    def __init__(self, path: Path, debounce: float = DEFAULT_DEBOUNCE):
        self.path = Path(path)
        self.debounce = debounce
        self.writes = 0
        self._pending: Optional[tuple[ObsState, int]] = None
        self._version = 0
        self._written_version = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self._file_lock = threading.Lock()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def publish(self, state: ObsState) -> None:
        """Schedule a write of `state`; coalesces with any write already scheduled."""
        self._version += 1
        self._pending = (state, self._version)
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.debounce, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = asyncio.get_running_loop().create_task(self._flush_in_thread())

    async def _flush_in_thread(self) -> None:
        async with self._flush_lock:
            if self._pending is None:
                return
            state, version = self._pending
            self._pending = None
            try:
                await asyncio.to_thread(self._write, state, version)
            except StateWriteError as e:
                log.warning(f"{e}; keeping previous state file, will retry on next update")
                if self._pending is None:
                    self._pending = (state, version)

    def flush(self) -> None:
        """Write the pending snapshot now. Raises StateWriteError on I/O failure."""
        if self._pending is None:
            return
        state, version = self._pending
        self._write(state, version)
        self._pending = None

    def close(self) -> None:
        """Cancel the timer and any background write, then flush once if a write is still pending."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = None
        try:
            self.flush()
        except StateWriteError as e:
            log.error(f"Final state write failed: {e}")

    def _write(self, state: ObsState, version: int) -> None:
        with self._file_lock:
            if version <= self._written_version:
                log.debug(f"Skipping stale state write (version {version})")
                return
            payload = state.to_json()
            tmp_name: Optional[str] = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
                tmp_name = None
            except OSError as e:
                raise StateWriteError(f"could not write {self.path}: {e}") from e
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass
            self._written_version = version
            self.writes += 1
            log.debug(f"State written → {self.path} (connected={state.connected})")
