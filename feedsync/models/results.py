"""Result models for feed operations."""

from dataclasses import dataclass
from typing import Any, List, Optional

from .feed import ReconciledFeedState
from .mutation import PendingMutation


@dataclass
class LoadResult:
    """Result of initialize, refresh or load_more."""

    state: ReconciledFeedState
    status: str  # "remote", "cache", "empty", "skipped", "error"
    retryable: bool = False
    errors: Optional[List[str]] = None

    def __post_init__(self):
        """Initialize errors list if None."""
        if self.errors is None:
            self.errors = []

    @property
    def ok(self) -> bool:
        return self.status in ("remote", "cache", "skipped")


@dataclass
class MutationOutcome:
    """Final outcome of an optimistic mutation.

    ``result`` carries the collaborator's return value on confirmation
    (the stored Post for NEW_POST, the stored Comment for comments).
    """

    mutation: Optional[PendingMutation]
    # "confirmed", "noop", "rolled_back", "removed", "superseded", "rejected", "discarded"
    status: str
    error: Optional[str] = None
    retryable: bool = False
    result: Any = None

    @property
    def success(self) -> bool:
        return self.status in ("confirmed", "noop")
