from __future__ import annotations

"""
Seed strategies for establishing the initial bracket.

A seed strategy fetches the first two samples of a search. If either already
carries the target timestamp the search is over before it starts; otherwise
the pair becomes the initial bracket (in whatever order it was fetched, the
searcher normalises it).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ledger_search.lookup import LedgerLookup, Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeedResult:
    """Initial samples of a search, or the exact hit found while seeding."""
    first: Optional[Sample] = None
    second: Optional[Sample] = None
    exact: Optional[Sample] = None


class SeedStrategy(Protocol):
    name: str

    def seed(self, *, target: int, lookup: LedgerLookup) -> SeedResult:
        """Fetch the initial samples for a search towards `target`."""
        ...


class LatestSeed:
    """
    Seed from the most recent validated ledger.

    Fetch the latest ledger first and stop immediately if its close time is
    the target. Otherwise fetch the ledger `offset` before it and bracket
    with the pair.
    """

    name = "latest"

    def __init__(self, offset: int = 10) -> None:
        if offset <= 0:
            raise ValueError("offset must be positive")
        self.offset = int(offset)

    def seed(self, *, target: int, lookup: LedgerLookup) -> SeedResult:
        latest = lookup.fetch(None)
        logger.info("Latest validated ledger %d closed at %d", latest.index, latest.timestamp)
        if latest.timestamp == target:
            return SeedResult(exact=latest)

        earlier = lookup.fetch(latest.index - self.offset)
        if earlier.timestamp == target:
            return SeedResult(exact=earlier)
        return SeedResult(first=earlier, second=latest)


class ExplicitSeed:
    """Seed from two caller-chosen indices, given in any order."""

    name = "explicit"

    def __init__(self, first: int, second: int) -> None:
        if int(first) == int(second):
            raise ValueError("explicit seed indices must differ")
        self.first = int(first)
        self.second = int(second)

    def seed(self, *, target: int, lookup: LedgerLookup) -> SeedResult:
        first = lookup.fetch(self.first)
        if first.timestamp == target:
            return SeedResult(exact=first)
        second = lookup.fetch(self.second)
        if second.timestamp == target:
            return SeedResult(exact=second)
        return SeedResult(first=first, second=second)


SEED_STRATEGIES = {
    LatestSeed.name: LatestSeed,
    ExplicitSeed.name: ExplicitSeed,
}
