"""commands — one-shot OBS commands."""
from .runner import Command, CommandResult, CommandRunner

__all__ = ["Command", "CommandResult", "CommandRunner"]
