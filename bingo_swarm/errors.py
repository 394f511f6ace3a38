"""
Error taxonomy for the bingo swarm.

Every failure a virtual participant can hit is expressed as a subclass of
:class:`SwarmError`.  Each class carries an :class:`ErrorCategory` so that
the participant can tag the failure counter without inspecting exception
types one by one.

The taxonomy mirrors how failures are handled at runtime:

- **Transport** -- connectivity problems, timeouts and 5xx responses.
  Retried where the call is safe to repeat, otherwise fatal.
- **Protocol** -- the backend answered, but with a body we cannot use
  (malformed JSON, missing fields, empty card list, bad hub handshake).
  Treated like a transport error for retry purposes.
- **Application** -- the backend said "no" (authentication rejected,
  unexpected status) or a retry budget ran out.

Conflicts on card or identity claims are deliberately *not* represented
here: they are normal registry outcomes, not errors.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Failure categories used to tag the metrics failure counters."""

    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    APPLICATION = "application"


class SwarmError(Exception):
    """Base class for every error raised by the swarm."""

    category: ErrorCategory = ErrorCategory.APPLICATION

class TransportError(SwarmError):
    """Connectivity failure, timeout, or a 5xx answer from the backend."""

    category = ErrorCategory.TRANSPORT


class ProtocolError(SwarmError):
    """The backend responded with a body that does not match the contract."""

    category = ErrorCategory.PROTOCOL


class ApiError(SwarmError):
    """
    Non-success HTTP status that is neither an auth rejection nor a 5xx.

    Attributes:
        status_code: The HTTP status returned by the backend.
    """

    category = ErrorCategory.APPLICATION

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(SwarmError):
    """Credential exchange rejected (HTTP 401/403)."""

    category = ErrorCategory.APPLICATION

class RetryBudgetExhausted(SwarmError):
    """A bounded retry loop gave up."""

    category = ErrorCategory.APPLICATION

class StreamClosedError(SwarmError):
    """The push-event channel closed and automatic reconnects are exhausted."""

    category = ErrorCategory.TRANSPORT