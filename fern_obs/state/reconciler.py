"""
state/reconciler.py — Pure state transitions for the OBS snapshot.

apply(state, input) -> new state. Events pushed by OBS and responses to
status/stats requests go through the same function, so a polled value and
an event-driven value can never disagree about how they are folded in.
Whatever is applied last wins.

Elapsed-time rules (recording and streaming alike):
  - a start event begins a fresh clock at 0; a status response that finds
    the output running begins it at the duration OBS reports
  - pause/resume (or stream reconnect) seen without a start keeps whatever
    elapsed value the state already carries
  - while active, elapsed_secs only moves forward
  - stopping or losing the connection resets the output to its idle
    defaults (elapsed 0, no timecode); a recording keeps its output_path
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from fern_obs.core.protocol import Event, OutputState, Response
from .models import ObsState, RecordingState, StatsSnapshot, StreamingState, format_timecode


@dataclass(frozen=True)
class Connected:
    """The session reached the identified state."""


@dataclass(frozen=True)
class Disconnected:
    error: Optional[str] = None


Input = Union[Connected, Disconnected, Event, Response]
Handler = Callable[[ObsState, dict], ObsState]


def apply(state: ObsState, item: Input, now: Optional[float] = None) -> ObsState:
    if isinstance(item, Connected):
        new = state.model_copy(update={"connected": True, "error": None})
    elif isinstance(item, Disconnected):
        new = _disconnected(state, item.error)
    elif isinstance(item, Event):
        handler = EVENT_HANDLERS.get(item.type)
        new = handler(state, item.data) if handler else state
    elif isinstance(item, Response):
        handler = RESPONSE_HANDLERS.get(item.request_type)
        new = handler(state, item.data) if handler and item.ok else state
    else:
        raise TypeError(f"cannot apply {type(item).__name__} to ObsState")
    return _touch(new, now)


def _touch(state: ObsState, now: Optional[float]) -> ObsState:
    stamp = int(time.time() if now is None else now)
    return state.model_copy(update={"updated_at_secs": max(state.updated_at_secs, stamp)})


def _disconnected(state: ObsState, error: Optional[str]) -> ObsState:
    return state.model_copy(update={
        "connected": False,
        "error": error,
        "recording": _idle_recording(state.recording),
        "streaming": StreamingState(),
        "stats": None,
    })


# ── Recording ────────────────────────────────────────────────────────

def _fresh_recording(elapsed: int = 0, paused: bool = False) -> RecordingState:
    return RecordingState(active=True, paused=paused, elapsed_secs=elapsed, timecode=format_timecode(elapsed))


def _idle_recording(rec: RecordingState, output_path: Optional[str] = None) -> RecordingState:
    """Back to defaults; only the last output path survives."""
    return RecordingState(output_path=output_path or rec.output_path)


def _on_record_state_changed(state: ObsState, data: dict) -> ObsState:
    output_state = data.get("outputState")
    rec = state.recording

    if output_state == OutputState.STARTED:
        rec = _fresh_recording()
    elif output_state in (OutputState.PAUSED, OutputState.RESUMED):
        paused = output_state == OutputState.PAUSED
        if rec.active:
            rec = rec.model_copy(update={"paused": paused})
        else:
            # Missed the start; the next status poll corrects the clock.
            rec = _fresh_recording(rec.elapsed_secs, paused=paused)
    elif output_state == OutputState.STOPPED:
        rec = _idle_recording(rec, data.get("outputPath"))
    else:
        return state
    return state.model_copy(update={"recording": rec})


def _on_record_status(state: ObsState, data: dict) -> ObsState:
    rec = state.recording
    if not data.get("outputActive", False):
        if not rec.active:
            return state
        return state.model_copy(update={"recording": _idle_recording(rec)})

    reported = _duration_secs(data)
    elapsed = max(rec.elapsed_secs, reported) if rec.active else reported
    rec = rec.model_copy(update={
        "active": True,
        "paused": bool(data.get("outputPaused", False)),
        "elapsed_secs": elapsed,
        "timecode": format_timecode(elapsed),
    })
    return state.model_copy(update={"recording": rec})


def _on_stop_record(state: ObsState, data: dict) -> ObsState:
    path = data.get("outputPath")
    if not path:
        return state
    return state.model_copy(update={"recording": state.recording.model_copy(update={"output_path": path})})


# ── Streaming ────────────────────────────────────────────────────────

def _fresh_stream(elapsed: int = 0, reconnecting: bool = False) -> StreamingState:
    return StreamingState(active=True, elapsed_secs=elapsed, timecode=format_timecode(elapsed), reconnecting=reconnecting)


def _on_stream_state_changed(state: ObsState, data: dict) -> ObsState:
    output_state = data.get("outputState")
    stream = state.streaming

    if output_state == OutputState.STARTED:
        stream = _fresh_stream()
    elif output_state in (OutputState.RECONNECTING, OutputState.RECONNECTED):
        reconnecting = output_state == OutputState.RECONNECTING
        if stream.active:
            stream = stream.model_copy(update={"reconnecting": reconnecting})
        else:
            stream = _fresh_stream(stream.elapsed_secs, reconnecting=reconnecting)
    elif output_state == OutputState.STOPPED:
        stream = StreamingState()
    else:
        return state
    return state.model_copy(update={"streaming": stream})


def _on_stream_status(state: ObsState, data: dict) -> ObsState:
    stream = state.streaming
    if not data.get("outputActive", False):
        if not stream.active:
            return state
        return state.model_copy(update={"streaming": StreamingState()})

    reported = _duration_secs(data)
    elapsed = max(stream.elapsed_secs, reported) if stream.active else reported
    stream = stream.model_copy(update={
        "active": True,
        "elapsed_secs": elapsed,
        "timecode": format_timecode(elapsed),
        "reconnecting": bool(data.get("outputReconnecting", False)),
    })
    return state.model_copy(update={"streaming": stream})


def _duration_secs(data: dict) -> int:
    try:
        return max(int(data.get("outputDuration", 0) or 0) // 1000, 0)
    except (TypeError, ValueError):
        return 0


# ── Scenes ───────────────────────────────────────────────────────────

def _with_current(state: ObsState, name: Optional[str]) -> ObsState:
    if not name:
        return state
    scenes = state.scenes
    if scenes and name not in scenes:
        scenes = [*scenes, name]
    return state.model_copy(update={"current_scene": name, "scenes": scenes})


def _with_scene_list(state: ObsState, entries: list, current: Optional[str] = None) -> ObsState:
    # OBS indexes scenes bottom-up; the UI lists them top-down.
    ordered = sorted(
        (e for e in entries if isinstance(e, dict) and e.get("sceneName")),
        key=lambda e: e.get("sceneIndex", 0),
        reverse=True,
    )
    names = [e["sceneName"] for e in ordered]
    current = current or state.current_scene
    if current not in names:
        current = None
    return state.model_copy(update={"scenes": names, "current_scene": current})


def _on_current_scene_changed(state: ObsState, data: dict) -> ObsState:
    return _with_current(state, data.get("sceneName"))


def _on_current_scene(state: ObsState, data: dict) -> ObsState:
    return _with_current(state, data.get("currentProgramSceneName") or data.get("sceneName"))


def _on_scene_list_changed(state: ObsState, data: dict) -> ObsState:
    return _with_scene_list(state, data.get("scenes") or [])


def _on_scene_list(state: ObsState, data: dict) -> ObsState:
    return _with_scene_list(state, data.get("scenes") or [], data.get("currentProgramSceneName"))


def _on_scene_name_changed(state: ObsState, data: dict) -> ObsState:
    old, new = data.get("oldSceneName"), data.get("sceneName")
    if not old or not new:
        return state
    scenes = [new if s == old else s for s in state.scenes]
    current = new if state.current_scene == old else state.current_scene
    return state.model_copy(update={"scenes": scenes, "current_scene": current})


def _on_scene_created(state: ObsState, data: dict) -> ObsState:
    name = data.get("sceneName")
    if not name or data.get("isGroup") or name in state.scenes:
        return state
    return state.model_copy(update={"scenes": [name, *state.scenes]})


def _on_scene_removed(state: ObsState, data: dict) -> ObsState:
    name = data.get("sceneName")
    if not name or name not in state.scenes:
        return state
    current = None if state.current_scene == name else state.current_scene
    return state.model_copy(update={"scenes": [s for s in state.scenes if s != name], "current_scene": current})


# ── Stats ────────────────────────────────────────────────────────────

def _on_stats(state: ObsState, data: dict) -> ObsState:
    return state.model_copy(update={"stats": StatsSnapshot.from_obs(data)})


EVENT_HANDLERS: dict[str, Handler] = {
    "RecordStateChanged": _on_record_state_changed,
    "StreamStateChanged": _on_stream_state_changed,
    "CurrentProgramSceneChanged": _on_current_scene_changed,
    "SceneListChanged": _on_scene_list_changed,
    "SceneNameChanged": _on_scene_name_changed,
    "SceneCreated": _on_scene_created,
    "SceneRemoved": _on_scene_removed,
}

RESPONSE_HANDLERS: dict[str, Handler] = {
    "GetRecordStatus": _on_record_status,
    "GetStreamStatus": _on_stream_status,
    "GetCurrentProgramScene": _on_current_scene,
    "GetSceneList": _on_scene_list,
    "GetStats": _on_stats,
    "StopRecord": _on_stop_record,
}
