"""
core/exceptions.py
------------------
Error taxonomy for the conversation core.

  PersistenceError  — a MessageStore insert / query / update failed.
  TransportError    — the assistant backend could not be reached, answered
                      with a non-success status, or broke mid-stream.
  ValidationError   — caller supplied a value outside the accepted domain.

None of these are retried automatically; each is local to the call that
raised it.
"""

from typing import Optional


class ExpertChatError(Exception):
    """Base class for every error raised by the conversation core."""


class PersistenceError(ExpertChatError):
    pass


class TransportError(ExpertChatError):

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(ExpertChatError):
    pass
