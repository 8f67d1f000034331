"""
LFG Errors
==========
Error taxonomy for the LFG system. Every error carries a message that can be
shown to the user as-is.
"""


class LFGError(Exception):
    """Base class for errors reported back to the requesting user."""

    emoji = '❌'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def user_message(self) -> str:
        return f"{self.emoji} {self.message}"


class ValidationError(LFGError):
    """Bad game/mode, capacity out of range, user already owns or occupies a session."""


class NotFoundError(LFGError):
    """Session id unknown or already ended."""


class ConflictError(LFGError):
    """Action not possible right now (team full, wrong phase, ...). Informational."""

    emoji = '⚠️'


class ExternalResourceError(LFGError):
    """A voice, channel or message operation failed on the platform side."""
