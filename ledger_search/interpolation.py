from __future__ import annotations

"""
Bracketing inverse-linear interpolation search.

Given a target timestamp and a lookup over a monotone index -> timestamp
relation, find the index whose timestamp equals the target, or the adjacent
pair of indices `(i, i+1)` with `t(i) < target < t(i+1)`.

The bracket `[l1, l2]` with known timestamps `[t1, t2]` defines a line in
(timestamp, index) space; the next guess is that line evaluated at the
target. Guesses below or above the bracket chase the target with the nearer
bound, guesses on a bound force a probe of the adjacent index, and interior
guesses replace whichever bound is closer.

Every guess is additionally clamped into the enclosure `[below, above]` of
the closest fetched samples on either side of the target. Each remote lookup
therefore lands strictly inside the enclosure and shrinks it, which bounds
the number of lookups even when the relation is far from linear. While one
side of the enclosure is still open, guesses on that side are clamped to the
range of ledgers the provider holds instead; a target beyond the first or
last ledger is reported as out of range rather than as a failed lookup.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Callable, List, Optional, Protocol, Tuple

from ledger_search.errors import (
    DegenerateBracket,
    NonMonotonicInput,
    SearchCancelled,
    SearchExhausted,
)
from ledger_search.lookup import CachedLookup, LedgerLookup, Sample
from ledger_search.ripple_time import format_ripple_time
from ledger_search.seeding import LatestSeed, SeedStrategy

logger = logging.getLogger(__name__)

DEGENERATE_POLICIES = ("raise", "step")


class BoundRole(str, Enum):
    LOWER = "lower"
    UPPER = "upper"


@dataclass
class SearchState:
    """Current bracket of a search. Inside the loop `l1 < l2` and `t1 <= t2`."""

    target: int
    l1: int
    t1: int
    l2: int
    t2: int

    @classmethod
    def from_samples(cls, target: int, first: Sample, second: Sample) -> "SearchState":
        return cls(target=target, l1=first.index, t1=first.timestamp, l2=second.index, t2=second.timestamp)

    @property
    def width(self) -> int:
        return self.l2 - self.l1

    @property
    def lower(self) -> Sample:
        return Sample(index=self.l1, timestamp=self.t1)

    @property
    def upper(self) -> Sample:
        return Sample(index=self.l2, timestamp=self.t2)

    def bound(self, role: BoundRole) -> Sample:
        return self.lower if role is BoundRole.LOWER else self.upper

    def normalize(self) -> bool:
        """Swap the bounds (with their timestamps) if they arrived out of order."""
        if self.l1 <= self.l2:
            return False
        self.l1, self.l2 = self.l2, self.l1
        self.t1, self.t2 = self.t2, self.t1
        return True

    def apply(self, update: "BracketUpdate", sample: Sample) -> None:
        """Write a freshly fetched sample into the bound named by `update.role`."""
        if update.role is BoundRole.LOWER:
            if update.carry:
                self.l2, self.t2 = self.l1, self.t1
            self.l1, self.t1 = sample.index, sample.timestamp
        else:
            if update.carry:
                self.l1, self.t1 = self.l2, self.t2
            self.l2, self.t2 = sample.index, sample.timestamp


@dataclass(frozen=True)
class BracketUpdate:
    """
    Outcome of classifying a guess.

    `role` names the bound that receives the sample at `index`. `carry` is set
    for extrapolated guesses: the old bound of that role first moves into the
    other role. A `terminal` update means the bracket is already adjacent and
    `role` names the bound the guess landed on.
    """
    role: BoundRole
    index: int
    carry: bool = False
    terminal: bool = False


@dataclass(frozen=True)
class SearchEvent:
    """Structured progress record handed to the search observer."""
    kind: str  # seed, update, exact, bracket or edge
    index: int
    timestamp: int

    def as_record(self) -> dict:
        record = {"kind": self.kind, "index": self.index, "timestamp": self.timestamp}
        if self.kind in ("exact", "bracket", "edge"):
            record["close_time"] = format_ripple_time(self.timestamp)
        return record


@dataclass(frozen=True)
class SearchOutcome:
    """
    Result of a search: an exact hit, the final adjacent bracket, or a target
    outside the provider's ledger range.

    For an out-of-range result `out_of_range` is "below" or "above",
    `lower`/`upper` hold the last bracket (whose edge is the first or last
    available ledger) and `nearest` is that edge ledger.
    """
    target: int
    exact: Optional[Sample] = None
    lower: Optional[Sample] = None
    upper: Optional[Sample] = None
    nearest: Optional[Sample] = None
    lookups: int = 0
    iterations: int = 0
    widths: Tuple[int, ...] = ()
    out_of_range: Optional[str] = None

    @property
    def is_exact(self) -> bool:
        return self.exact is not None

    @property
    def found_index(self) -> int:
        if self.exact is not None:
            return self.exact.index
        if self.nearest is None:
            raise ValueError("Outcome carries neither an exact sample nor a nearest bound")
        return self.nearest.index

    @property
    def bracket(self) -> Optional[Tuple[int, int]]:
        """Adjacent pair enclosing the target; None for exact and out-of-range results."""
        if self.lower is None or self.upper is None or self.out_of_range is not None:
            return None
        return (self.lower.index, self.upper.index)

    def as_record(self) -> dict:
        record = {
            "target": self.target,
            "target_time": format_ripple_time(self.target),
            "exact": self.is_exact,
            "index": self.found_index,
            "lookups": self.lookups,
            "iterations": self.iterations,
        }
        if self.exact is not None:
            record["timestamp"] = self.exact.timestamp
            record["close_time"] = format_ripple_time(self.exact.timestamp)
        if self.out_of_range is not None:
            record["out_of_range"] = self.out_of_range
        if self.lower is not None and self.upper is not None:
            record["bracket"] = [
                {"index": s.index, "timestamp": s.timestamp, "close_time": format_ripple_time(s.timestamp)}
                for s in (self.lower, self.upper)
            ]
        return record


class CancelToken(Protocol):
    def is_set(self) -> bool:
        ...


def round_half_away(value: Fraction) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return math.floor(value + Fraction(1, 2))
    return -math.floor(-value + Fraction(1, 2))


def interpolate_guess(state: SearchState) -> int:
    """
    Evaluate the bracket's line at the target and round to an index.

    With slope m = (l2 - l1) / (t2 - t1) and intercept b = l1 - m * t1 the
    guess is round(m * target + b). Arithmetic is exact; the caller guarantees
    t1 != t2.
    """
    m = Fraction(state.l2 - state.l1, state.t2 - state.t1)
    b = state.l1 - m * state.t1
    return round_half_away(m * state.target + b)


@dataclass
class _Enclosure:
    """Closest fetched samples strictly below and strictly above the target."""

    target: int
    below: Optional[Sample] = None
    above: Optional[Sample] = None

    def observe(self, sample: Sample) -> None:
        if sample.timestamp < self.target:
            if self.above is not None and sample.index >= self.above.index:
                raise NonMonotonicInput(
                    f"Ledger {sample.index} closed at {sample.timestamp} before the target "
                    f"but ledger {self.above.index} closed after it at {self.above.timestamp}"
                )
            if self.below is None or sample.index > self.below.index:
                self.below = sample
        elif sample.timestamp > self.target:
            if self.below is not None and sample.index <= self.below.index:
                raise NonMonotonicInput(
                    f"Ledger {sample.index} closed at {sample.timestamp} after the target "
                    f"but ledger {self.below.index} closed before it at {self.below.timestamp}"
                )
            if self.above is None or sample.index < self.above.index:
                self.above = sample

    def clamp(self, index: int) -> int:
        if self.below is not None and index < self.below.index:
            return self.below.index
        if self.above is not None and index > self.above.index:
            return self.above.index
        return index


def classify(state: SearchState, nl: int) -> BracketUpdate:
    """Decide how guess `nl` updates the bracket `[l1, l2]`."""
    if nl < state.l1:
        # Extrapolated below: chase it with the old lower bound as the new upper bound.
        return BracketUpdate(role=BoundRole.LOWER, index=nl, carry=True)
    if nl > state.l2:
        return BracketUpdate(role=BoundRole.UPPER, index=nl, carry=True)
    if nl == state.l1:
        if state.width == 1:
            return BracketUpdate(role=BoundRole.LOWER, index=state.l1, terminal=True)
        # Probe the immediate successor rather than re-guessing.
        return BracketUpdate(role=BoundRole.UPPER, index=state.l1 + 1)
    if nl == state.l2:
        if state.width == 1:
            return BracketUpdate(role=BoundRole.UPPER, index=state.l2, terminal=True)
        return BracketUpdate(role=BoundRole.LOWER, index=state.l2 - 1)
    if nl - state.l1 <= state.l2 - nl:
        return BracketUpdate(role=BoundRole.UPPER, index=nl)
    return BracketUpdate(role=BoundRole.LOWER, index=nl)


class InterpolationSearch:
    """
    Locate the index whose timestamp equals a target, or its adjacent bracket.

    Args:
        seed: strategy producing the initial bracket (default: latest ledger
            and the one 10 before it).
        max_iterations: cap on loop iterations; `SearchExhausted` when hit.
        degenerate: what to do with a flat bracket (`t1 == t2`). "raise"
            raises `DegenerateBracket`; "step" moves one bracket width towards
            the target and carries on.
        observer: called with a `SearchEvent` for every seed, bound update and
            result.
        cancel: token whose `is_set()` is checked at the top of every iteration.
    """

    def __init__(
        self,
        *,
        seed: Optional[SeedStrategy] = None,
        max_iterations: int = 100,
        degenerate: str = "raise",
        observer: Optional[Callable[[SearchEvent], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if degenerate not in DEGENERATE_POLICIES:
            raise ValueError(f"degenerate must be one of {DEGENERATE_POLICIES}, got {degenerate!r}")
        self.seed = seed if seed is not None else LatestSeed()
        self.max_iterations = int(max_iterations)
        self.degenerate = degenerate
        self.observer = observer
        self.cancel = cancel

    def _emit(self, kind: str, sample: Sample) -> None:
        if self.observer is not None:
            self.observer(SearchEvent(kind=kind, index=sample.index, timestamp=sample.timestamp))

    def _next_guess(self, state: SearchState, enclosure: _Enclosure) -> int:
        if state.t1 == state.t2:
            if self.degenerate == "raise":
                raise DegenerateBracket(state.l1, state.l2, state.t1)
            # The whole bracket sits on one side of the target; step past it.
            if state.target > state.t2:
                nl = state.l2 + state.width
            else:
                nl = state.l1 - state.width
            logger.debug("Flat bracket [%d, %d]; stepping to %d", state.l1, state.l2, nl)
        else:
            nl = interpolate_guess(state)
            if state.target < state.t1 and nl >= state.l1:
                nl = state.l1 - 1
            elif state.target > state.t2 and nl <= state.l2:
                nl = state.l2 + 1
        return enclosure.clamp(nl)

    def _out_of_range(
        self, edge: str, state: SearchState, lookups: int, iterations: int, widths: List[int]
    ) -> SearchOutcome:
        nearest = state.lower if edge == "below" else state.upper
        logger.info(
            "Target %d is %s the available ledgers; edge ledger %d closed at %d",
            state.target,
            "before" if edge == "below" else "after",
            nearest.index,
            nearest.timestamp,
        )
        self._emit("edge", nearest)
        return SearchOutcome(
            target=state.target,
            lower=state.lower,
            upper=state.upper,
            nearest=nearest,
            lookups=lookups,
            iterations=iterations,
            widths=tuple(widths),
            out_of_range=edge,
        )

    def run(
        self,
        target: int,
        lookup: LedgerLookup,
        *,
        seed: Optional[SeedStrategy] = None,
    ) -> SearchOutcome:
        """Search `lookup` for `target`; `seed` overrides the configured strategy."""
        target = int(target)
        cached = lookup if isinstance(lookup, CachedLookup) else CachedLookup(lookup)
        start_lookups = cached.lookups
        strategy = seed if seed is not None else self.seed

        seeded = strategy.seed(target=target, lookup=cached)
        if seeded.exact is not None:
            logger.info("Seed ledger %d closed exactly at target %d", seeded.exact.index, target)
            self._emit("exact", seeded.exact)
            return SearchOutcome(target=target, exact=seeded.exact, lookups=cached.lookups - start_lookups)

        if seeded.first is None or seeded.second is None:
            raise ValueError(
                f"Seed strategy {type(strategy).__name__} returned neither two ledgers nor an exact hit"
            )
        state = SearchState.from_samples(target, seeded.first, seeded.second)
        if state.l1 == state.l2:
            raise ValueError(f"Seed produced a single ledger {state.l1}; need two distinct indices")
        if state.normalize():
            logger.debug("Seed bounds arrived out of order; swapped to [%d, %d]", state.l1, state.l2)
        if state.t1 > state.t2:
            raise NonMonotonicInput(
                f"Seed ledgers {state.l1} and {state.l2} have decreasing close times {state.t1} > {state.t2}"
            )

        enclosure = _Enclosure(target=target)
        for sample in (state.lower, state.upper):
            enclosure.observe(sample)
            self._emit("seed", sample)
        logger.info("Initial bracket [%d, %d] -> [%d, %d], target %d", state.l1, state.l2, state.t1, state.t2, target)

        widths: List[int] = [state.width]
        iterations = 0
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise SearchCancelled(f"Search cancelled after {iterations} iterations")
            if iterations >= self.max_iterations:
                raise SearchExhausted(
                    f"No result after {iterations} iterations; bracket [{state.l1}, {state.l2}]"
                )
            iterations += 1

            nl = self._next_guess(state, enclosure)
            if (nl < state.l1 and enclosure.below is None) or (nl > state.l2 and enclosure.above is None):
                # Nothing fetched bounds the extrapolation; fall back to the provider's ledger range.
                span = cached.index_range()
                if span is not None:
                    first, last = span
                    edge = None
                    if nl < state.l1 and state.l1 <= first:
                        edge = "below"
                    elif nl > state.l2 and state.l2 >= last:
                        edge = "above"
                    if edge is not None:
                        return self._out_of_range(edge, state, cached.lookups - start_lookups, iterations, widths)
                    nl = min(max(nl, first), last)

            update = classify(state, nl)
            logger.debug(
                "Iteration %d: bracket [%d, %d] guess %d -> %s %s%s",
                iterations,
                state.l1,
                state.l2,
                nl,
                update.role.value,
                update.index,
                " (terminal)" if update.terminal else "",
            )

            if update.terminal:
                nearest = state.bound(update.role)
                self._emit("bracket", state.lower)
                self._emit("bracket", state.upper)
                logger.info(
                    "Target %d lies between ledger %d (%d) and ledger %d (%d)",
                    target,
                    state.l1,
                    state.t1,
                    state.l2,
                    state.t2,
                )
                return SearchOutcome(
                    target=target,
                    lower=state.lower,
                    upper=state.upper,
                    nearest=nearest,
                    lookups=cached.lookups - start_lookups,
                    iterations=iterations,
                    widths=tuple(widths),
                )

            sample = cached.fetch(update.index)
            state.apply(update, sample)
            widths.append(state.width)
            self._emit("update", sample)

            if sample.timestamp == target:
                logger.info("Ledger %d closed exactly at target %d", sample.index, target)
                self._emit("exact", sample)
                return SearchOutcome(
                    target=target,
                    exact=sample,
                    lookups=cached.lookups - start_lookups,
                    iterations=iterations,
                    widths=tuple(widths),
                )

            enclosure.observe(sample)
            if state.t1 > state.t2:
                raise NonMonotonicInput(
                    f"Ledger {state.l1} closed at {state.t1} after ledger {state.l2} at {state.t2}"
                )


def find_ledger(target: int, lookup: LedgerLookup, **kwargs) -> SearchOutcome:
    """Convenience wrapper: build an `InterpolationSearch` from `kwargs` and run it."""
    return InterpolationSearch(**kwargs).run(target, lookup)
