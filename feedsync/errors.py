"""Error taxonomy for feed collaborators and the reconciliation engine."""


class FeedError(Exception):
    """Base exception for feed-related errors."""

    retryable = False
    kind = "error"


class TransientError(FeedError):
    """Network failure or timeout. Safe to retry, never corrupts state."""

    retryable = True
    kind = "transient"


class NotFoundError(FeedError):
    """Referenced post vanished remotely."""

    kind = "not_found"


class ConflictError(NotFoundError):
    """Write raced a delete (e.g. like-toggle on a deleted post).

    Handled exactly like NotFoundError.
    """

    kind = "conflict"


class FatalError(FeedError):
    """Malformed collaborator response."""

    kind = "fatal"
