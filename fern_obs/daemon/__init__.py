"""daemon — long-running OBS bridge."""
from .connection import BackoffPolicy, ConnectionState, Phase, Trigger, transition
from .poller import StatsPoller
from .supervisor import DaemonSupervisor

__all__ = ["BackoffPolicy", "ConnectionState", "Phase", "Trigger", "transition", "StatsPoller", "DaemonSupervisor"]
