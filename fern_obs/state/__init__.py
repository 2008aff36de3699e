"""state — OBS snapshot, reconciliation and publishing."""
from .models import ObsState, RecordingState, StatsSnapshot, StreamingState, format_timecode
from .publisher import StatePublisher

__all__ = ["ObsState", "RecordingState", "StreamingState", "StatsSnapshot", "format_timecode", "StatePublisher"]
