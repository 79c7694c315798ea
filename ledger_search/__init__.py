from .errors import (
    DegenerateBracket,
    LedgerSearchError,
    LookupFailure,
    NonMonotonicInput,
    SearchCancelled,
    SearchExhausted,
)
from .interpolation import InterpolationSearch, SearchEvent, SearchOutcome, SearchState, find_ledger
from .lookup import CachedLookup, LedgerLookup, RangedLookup, Sample, TableLookup
from .rippled_client import RippledClient
from .seeding import ExplicitSeed, LatestSeed


__all__ = [
    "CachedLookup",
    "DegenerateBracket",
    "ExplicitSeed",
    "InterpolationSearch",
    "LatestSeed",
    "LedgerLookup",
    "LedgerSearchError",
    "LookupFailure",
    "NonMonotonicInput",
    "RangedLookup",
    "RippledClient",
    "Sample",
    "SearchCancelled",
    "SearchEvent",
    "SearchExhausted",
    "SearchOutcome",
    "SearchState",
    "TableLookup",
    "find_ledger",
]
