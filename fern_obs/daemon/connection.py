"""
daemon/connection.py — Daemon connection state machine and backoff policy.

  Disconnected → Connecting → Identifying → Connected
       ↑              │             │            │
       │              └──── Reconnecting(attempt, next_delay) ←┘
       │                         │
       └── (retry) ── Connecting ┘

  any phase → ShuttingDown → Stopped

ConnectionState is an immutable value; transition() is the only way to get
the next one and rejects anything not in the table.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Phase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Trigger(str, Enum):
    START = "start"
    TRANSPORT_UP = "transport_up"
    IDENTIFIED = "identified"
    FAILED = "failed"          # connect or handshake failed
    LOST = "lost"              # established session dropped
    RETRY = "retry"            # backoff delay elapsed
    SHUTDOWN = "shutdown"
    STOPPED = "stopped"


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class ConnectionState:
    phase: Phase = Phase.DISCONNECTED
    attempt: int = 0            # consecutive failed attempts since last success
    next_delay: float = 0.0     # seconds, meaningful in RECONNECTING only

    def __str__(self) -> str:
        if self.phase is Phase.RECONNECTING:
            return f"reconnecting(attempt={self.attempt}, next_delay={self.next_delay:.1f}s)"
        return self.phase.value


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: initial, 2×initial, 4×initial … capped at `cap`."""
    initial: float = 5.0
    cap: float = 60.0
    max_attempts: int = 0       # 0 = retry forever

    def delay(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        # Bound the exponent so very long outages do not overflow.
        return min(self.initial * (2 ** min(attempt - 1, 32)), max(self.cap, self.initial))

    def exhausted(self, attempt: int) -> bool:
        return bool(self.max_attempts) and attempt > self.max_attempts


def _reconnecting(attempt: int, policy: BackoffPolicy) -> ConnectionState:
    return ConnectionState(Phase.RECONNECTING, attempt, policy.delay(attempt))


_Step = Callable[[ConnectionState, BackoffPolicy], ConnectionState]

_TABLE: dict[tuple[Phase, Trigger], _Step] = {
    (Phase.DISCONNECTED, Trigger.START): lambda s, p: ConnectionState(Phase.CONNECTING, s.attempt),
    (Phase.CONNECTING, Trigger.TRANSPORT_UP): lambda s, p: ConnectionState(Phase.IDENTIFYING, s.attempt),
    (Phase.CONNECTING, Trigger.FAILED): lambda s, p: _reconnecting(s.attempt + 1, p),
    (Phase.IDENTIFYING, Trigger.IDENTIFIED): lambda s, p: ConnectionState(Phase.CONNECTED),
    (Phase.IDENTIFYING, Trigger.FAILED): lambda s, p: _reconnecting(s.attempt + 1, p),
    (Phase.CONNECTED, Trigger.LOST): lambda s, p: _reconnecting(1, p),
    (Phase.RECONNECTING, Trigger.RETRY): lambda s, p: ConnectionState(Phase.CONNECTING, s.attempt),
    (Phase.SHUTTING_DOWN, Trigger.STOPPED): lambda s, p: ConnectionState(Phase.STOPPED),
}


def transition(state: ConnectionState, trigger: Trigger, policy: BackoffPolicy) -> ConnectionState:
    if trigger is Trigger.SHUTDOWN:
        if state.phase in (Phase.SHUTTING_DOWN, Phase.STOPPED):
            raise InvalidTransition(f"{trigger.value} while {state}")
        return ConnectionState(Phase.SHUTTING_DOWN)
    step = _TABLE.get((state.phase, trigger))
    if step is None:
        raise InvalidTransition(f"{trigger.value} while {state}")
    return step(state, policy)
