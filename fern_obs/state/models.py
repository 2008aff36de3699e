"""
state/models.py — Canonical OBS snapshot published to the state file.

The JSON produced by ObsState.to_json() is the contract with the shell UI:
it is read back with ObsState.from_json() and by `fern-obs status --json`.
Models are frozen; the reconciler derives new snapshots with model_copy().
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def format_timecode(secs: int) -> str:
    """HH:MM:SS once past the hour, MM:SS below it."""
    hours, rest = divmod(max(secs, 0), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


class RecordingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: bool = False
    paused: bool = False
    elapsed_secs: int = Field(0, ge=0)
    timecode: Optional[str] = None
    output_path: Optional[str] = None


class StreamingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: bool = False
    elapsed_secs: int = Field(0, ge=0)
    timecode: Optional[str] = None
    reconnecting: bool = False


class StatsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    cpu_usage: float = 0.0
    memory_mb: float = 0.0
    active_fps: float = 0.0
    render_drop_percent: float = 0.0
    output_drop_percent: float = 0.0
    available_disk_mb: Optional[float] = None
    average_frame_time_ms: float = 0.0
    render_missed_frames: int = 0
    render_total_frames: int = 0
    output_skipped_frames: int = 0
    output_total_frames: int = 0

    @classmethod
    def from_obs(cls, data: dict) -> "StatsSnapshot":
        """Build from a GetStats responseData payload."""
        render_missed = int(data.get("renderSkippedFrames", 0) or 0)
        render_total = int(data.get("renderTotalFrames", 0) or 0)
        output_skipped = int(data.get("outputSkippedFrames", 0) or 0)
        output_total = int(data.get("outputTotalFrames", 0) or 0)
        disk = data.get("availableDiskSpace")
        return cls(
            cpu_usage=float(data.get("cpuUsage", 0.0) or 0.0),
            memory_mb=float(data.get("memoryUsage", 0.0) or 0.0),
            active_fps=float(data.get("activeFps", 0.0) or 0.0),
            render_drop_percent=_percent(render_missed, render_total),
            output_drop_percent=_percent(output_skipped, output_total),
            available_disk_mb=float(disk) if disk is not None else None,
            average_frame_time_ms=float(data.get("averageFrameRenderTime", 0.0) or 0.0),
            render_missed_frames=render_missed,
            render_total_frames=render_total,
            output_skipped_frames=output_skipped,
            output_total_frames=output_total,
        )


class ObsState(BaseModel):
    model_config = ConfigDict(frozen=True)

    connected: bool = False
    error: Optional[str] = None
    recording: RecordingState = Field(default_factory=RecordingState)
    streaming: StreamingState = Field(default_factory=StreamingState)
    current_scene: Optional[str] = None
    scenes: list[str] = Field(default_factory=list)
    stats: Optional[StatsSnapshot] = None
    updated_at_secs: int = 0

    def to_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ObsState":
        return cls.model_validate_json(raw)


def _percent(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return part / total * 100.0
