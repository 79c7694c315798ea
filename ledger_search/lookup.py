from __future__ import annotations

"""
Lookup capability consumed by the search.

A lookup maps a ledger index to its close time. Remote providers (see
`rippled_client`) and in-memory tables both satisfy `LedgerLookup`; the
search only ever talks to this protocol, wrapped in `CachedLookup` so that a
revisited index costs no extra round-trip.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from ledger_search.errors import LookupFailure

logger = logging.getLogger(__name__)

IndexRange = Tuple[int, int]


@dataclass(frozen=True)
class Sample:
    """One observation of the index -> timestamp relation."""
    index: int
    timestamp: int


class LedgerLookup(Protocol):
    def fetch(self, index: Optional[int]) -> Sample:
        """Return the sample at `index`, or at the most recent index when `index` is None."""
        ...


class RangedLookup(LedgerLookup, Protocol):
    def index_range(self) -> IndexRange:
        """First and last index the provider can serve."""
        ...


class TableLookup:
    """
    In-memory lookup backed by a mapping of index -> timestamp.

    `None` resolves to the greatest index in the table. Indices missing from
    the table raise `LookupFailure`, exactly like a remote miss.
    """

    def __init__(self, table: Mapping[int, int]) -> None:
        if not table:
            raise ValueError("TableLookup requires at least one entry")
        self._table: Dict[int, int] = {int(k): int(v) for k, v in table.items()}
        self._first = min(self._table)
        self._latest = max(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def index_range(self) -> IndexRange:
        return (self._first, self._latest)

    @classmethod
    def from_jsonl(cls, path: str) -> "TableLookup":
        """Load `{"index": ..., "timestamp": ...}` rows from a JSONL file."""
        table: Dict[int, int] = {}
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                    table[int(row["index"])] = int(row["timestamp"])
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    raise ValueError(f"Invalid ledger row in {path}:{line_no}") from exc
        logger.info("Loaded %d ledger samples from %s", len(table), path)
        return cls(table)

    def fetch(self, index: Optional[int]) -> Sample:
        if index is None:
            index = self._latest
        try:
            return Sample(index=int(index), timestamp=self._table[int(index)])
        except KeyError:
            raise LookupFailure(f"No ledger {index} in table", index=index) from None


@dataclass
class CachedLookup:
    """
    Memoising wrapper around a lookup with a remote-lookup counter.

    Also memoises the provider's index range when it publishes one (see
    `RangedLookup`); range queries are not counted as lookups.
    """

    inner: LedgerLookup
    cache: Dict[int, int] = field(default_factory=dict)
    history: List[Sample] = field(default_factory=list)
    lookups: int = 0
    span: Optional[IndexRange] = None
    span_known: bool = False

    def index_range(self) -> Optional[IndexRange]:
        """Range of servable indices, or None when the provider cannot tell."""
        if not self.span_known:
            provider = getattr(self.inner, "index_range", None)
            self.span = tuple(provider()) if provider is not None else None
            self.span_known = True
            if self.span is not None:
                logger.debug("Provider serves ledgers %d..%d", *self.span)
        return self.span

    def fetch(self, index: Optional[int]) -> Sample:
        """Return the sample at `index`; increments `lookups` when uncached."""
        if index is not None and int(index) in self.cache:
            return Sample(index=int(index), timestamp=self.cache[int(index)])

        self.lookups += 1
        sample = self.inner.fetch(None if index is None else int(index))
        if index is not None and sample.index != int(index):
            raise LookupFailure(
                f"Requested ledger {index} but provider returned {sample.index}", index=index
            )
        self.cache[sample.index] = sample.timestamp
        self.history.append(sample)
        logger.debug("Fetched ledger %d -> %d (lookup #%d)", sample.index, sample.timestamp, self.lookups)
        return sample
