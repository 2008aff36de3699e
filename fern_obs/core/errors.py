"""
core/errors.py — Error taxonomy shared by the daemon and one-shot commands.

Every error carries the process exit code used when it reaches the CLI.
The daemon never exits on these; it logs them and reconnects.
"""

from __future__ import annotations

from typing import Optional


class FernObsError(Exception):
    exit_code = 1


class OBSConnectionError(FernObsError):
    """OBS host unreachable, port refused, or the WebSocket upgrade failed."""
    exit_code = 3

    def __init__(self, host: str, port: int, message: str):
        self.host = host
        self.port = port
        super().__init__(f"failed to connect to OBS at {host}:{port}: {message}")


class AuthError(FernObsError):
    exit_code = 4


class ProtocolError(FernObsError):
    exit_code = 6


class TransportError(FernObsError):
    """The session broke after it was established."""
    exit_code = 3

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class RequestError(FernObsError):
    exit_code = 7


class RequestTimeout(RequestError):
    exit_code = 5

    def __init__(self, request_type: str, timeout: float):
        self.request_type = request_type
        self.timeout = timeout
        super().__init__(f"{request_type} timed out after {timeout * 1000:.0f} ms")


class NotConnectedError(RequestError):
    exit_code = 3

    def __init__(self, message: str = "not connected to OBS"):
        super().__init__(message)


class RequestFailed(RequestError):
    """OBS answered the request with requestStatus.result == false."""

    def __init__(self, request_type: str, code: int, comment: str = ""):
        self.request_type = request_type
        self.code = code
        self.comment = comment
        detail = f": {comment}" if comment else ""
        super().__init__(f"{request_type} failed (code {code}){detail}")


class StateWriteError(FernObsError):
    pass


class CommandError(FernObsError):
    """A one-shot command could not be carried out (e.g. pausing an idle recording)."""
    exit_code = 7
