"""
Error taxonomy for tournament operations.

Every failure a caller can act on is one of these types. The ``kind``
attribute is stable and is what adapters (HTTP, WebSocket) map to their own
status codes:

- NotFoundError: tournament or player absent
- UnauthorizedError: shared secret mismatch
- InvalidOperationError: illegal state transition or business rule violation
  - ValidationError: malformed input (unknown match, winner not a participant)
  - ConflictError: lost a race against a concurrent modification (retryable)
  - UnexpectedError: anything else, wrapped so internals are not leaked
"""

from __future__ import annotations


class TournamentError(Exception):
    """Base class for all tournament engine errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(TournamentError):
    kind = "not_found"


class UnauthorizedError(TournamentError):
    kind = "unauthorized"


class InvalidOperationError(TournamentError):
    kind = "invalid_operation"


class ValidationError(InvalidOperationError):
    kind = "validation"


class ConflictError(InvalidOperationError):
    """The tournament changed underneath this operation; retry from a fresh read."""

    kind = "conflict"
    retryable = True


class UnexpectedError(InvalidOperationError):
    kind = "unexpected"
