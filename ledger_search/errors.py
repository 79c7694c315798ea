"""Exceptions raised while searching the ledger history."""

from typing import Optional


class LedgerSearchError(Exception):
    """Base class for every failure that aborts a search."""


class LookupFailure(LedgerSearchError):
    """The lookup provider could not produce a timestamp for an index."""

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.index = index


class DegenerateBracket(LedgerSearchError):
    """Both bracket bounds carry the same timestamp, so the slope is undefined."""

    def __init__(self, l1: int, l2: int, timestamp: int) -> None:
        super().__init__(
            f"Bracket [{l1}, {l2}] is flat at timestamp {timestamp}; cannot interpolate"
        )
        self.l1 = l1
        self.l2 = l2
        self.timestamp = timestamp


class NonMonotonicInput(LedgerSearchError):
    """A fetched timestamp contradicts the assumed increasing index -> timestamp relation."""


class SearchExhausted(LedgerSearchError):
    """The iteration cap was reached before the bracket collapsed."""


class SearchCancelled(LedgerSearchError):
    """The caller's cancellation token was set during the search."""
