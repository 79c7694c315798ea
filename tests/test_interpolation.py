import threading
from fractions import Fraction

import pytest

from conftest import FailingLookup, ledger_like_table, piecewise_table, random_table
from ledger_search.errors import (
    DegenerateBracket,
    LookupFailure,
    NonMonotonicInput,
    SearchCancelled,
    SearchExhausted,
)
from ledger_search.interpolation import (
    BoundRole,
    InterpolationSearch,
    SearchOutcome,
    SearchState,
    classify,
    find_ledger,
    interpolate_guess,
    round_half_away,
)
from ledger_search.lookup import CachedLookup, Sample, TableLookup
from ledger_search.seeding import ExplicitSeed, LatestSeed, SeedResult


def _assert_correct(outcome, table, target):
    assert outcome.out_of_range is None
    if outcome.is_exact:
        assert table[outcome.found_index] == target
    else:
        lower, upper = outcome.lower, outcome.upper
        assert upper.index == lower.index + 1
        assert table[lower.index] < target < table[upper.index]
        assert outcome.found_index in (lower.index, upper.index)


# ---- guess and classification ----

def test_round_half_away_from_zero():
    assert round_half_away(Fraction(51, 2)) == 26
    assert round_half_away(Fraction(-51, 2)) == -26
    assert round_half_away(Fraction(101, 4)) == 25
    assert round_half_away(Fraction(7)) == 7


def test_interpolate_guess_uses_inverse_line():
    state = SearchState(target=455, l1=10, t1=100, l2=20, t2=200)
    assert interpolate_guess(state) == 46

    state = SearchState(target=1005, l1=0, t1=0, l2=100, t2=1500)
    assert interpolate_guess(state) == 67


@pytest.mark.parametrize(
    "nl, role, index, carry, terminal",
    [
        (5, BoundRole.LOWER, 5, True, False),
        (25, BoundRole.UPPER, 25, True, False),
        (10, BoundRole.UPPER, 11, False, False),
        (20, BoundRole.LOWER, 19, False, False),
        (15, BoundRole.UPPER, 15, False, False),  # tie replaces the upper bound
        (14, BoundRole.UPPER, 14, False, False),
        (16, BoundRole.LOWER, 16, False, False),
    ],
)
def test_classify_guess(nl, role, index, carry, terminal):
    state = SearchState(target=0, l1=10, t1=100, l2=20, t2=200)
    update = classify(state, nl)
    assert (update.role, update.index, update.carry, update.terminal) == (role, index, carry, terminal)


def test_classify_adjacent_bracket_terminates():
    state = SearchState(target=0, l1=10, t1=100, l2=11, t2=110)
    lower = classify(state, 10)
    upper = classify(state, 11)
    assert lower.terminal and lower.role is BoundRole.LOWER
    assert upper.terminal and upper.role is BoundRole.UPPER


def test_state_normalize_swaps_bounds_and_timestamps():
    state = SearchState(target=0, l1=20, t1=200, l2=10, t2=100)
    assert state.normalize()
    assert (state.l1, state.t1, state.l2, state.t2) == (10, 100, 20, 200)
    assert not state.normalize()


# ---- concrete scenarios ----

def test_exact_hit_on_non_uniform_table(sparse_lookup):
    events = []
    search = InterpolationSearch(seed=ExplicitSeed(10, 20), observer=events.append)
    outcome = search.run(460, sparse_lookup)

    assert outcome.is_exact
    assert outcome.exact == Sample(index=26, timestamp=460)
    assert outcome.lookups == 5
    assert outcome.iterations == 3
    assert [e.kind for e in events] == ["seed", "seed", "update", "update", "update", "exact"]
    assert [e.index for e in events if e.kind == "update"] == [46, 35, 26]


def test_adjacent_bracket_between_consecutive_indices(sparse_lookup):
    outcome = InterpolationSearch(seed=ExplicitSeed(10, 20)).run(455, sparse_lookup)

    assert not outcome.is_exact
    assert outcome.bracket == (25, 26)
    assert outcome.lower == Sample(index=25, timestamp=450)
    assert outcome.upper == Sample(index=26, timestamp=460)
    assert outcome.found_index == 26
    assert outcome.lookups == 6
    assert outcome.iterations == 5


def test_target_below_seeds_extrapolates_downward(sparse_lookup):
    outcome = InterpolationSearch(seed=ExplicitSeed(10, 20)).run(50, sparse_lookup)

    assert outcome.exact == Sample(index=5, timestamp=50)
    assert outcome.iterations == 1
    assert outcome.widths == (10, 5)


def test_bracket_width_never_grows_inside_a_containing_bracket():
    table = piecewise_table({0: 0, 50: 500, 100: 1500}, 0, 100)
    outcome = InterpolationSearch(seed=ExplicitSeed(0, 100)).run(1005, TableLookup(table))

    assert outcome.bracket == (75, 76)
    assert outcome.found_index == 75
    assert outcome.widths == (100, 33, 8, 1)
    assert all(b <= a for a, b in zip(outcome.widths, outcome.widths[1:]))
    assert outcome.lookups == 5


def test_swapped_seed_gives_identical_result(sparse_lookup):
    search = InterpolationSearch()
    for target in (50, 455, 460, 199, 201):
        ordered = search.run(target, sparse_lookup, seed=ExplicitSeed(10, 20))
        swapped = search.run(target, sparse_lookup, seed=ExplicitSeed(20, 10))
        assert swapped == ordered


# ---- ledger range edges ----

def test_target_below_table_reports_first_ledger():
    lookup = TableLookup({10: 100, 20: 200, 25: 450, 26: 460})
    outcome = InterpolationSearch(seed=ExplicitSeed(10, 20)).run(50, lookup)

    assert outcome.out_of_range == "below"
    assert outcome.nearest == Sample(index=10, timestamp=100)
    assert outcome.found_index == 10
    assert outcome.bracket is None
    assert not outcome.is_exact
    assert outcome.lookups == 2
    assert outcome.iterations == 1


def test_extrapolation_below_stops_at_first_ledger(sparse_lookup):
    events = []
    outcome = InterpolationSearch(seed=ExplicitSeed(10, 20), observer=events.append).run(-100, sparse_lookup)

    assert outcome.out_of_range == "below"
    assert outcome.lower == Sample(index=0, timestamp=0)
    assert outcome.upper == Sample(index=10, timestamp=100)
    assert outcome.found_index == 0
    assert outcome.lookups == 3
    assert outcome.iterations == 2
    assert [(e.kind, e.index) for e in events[2:]] == [("update", 0), ("edge", 0)]
    assert outcome.as_record()["out_of_range"] == "below"


def test_extrapolation_above_stops_at_last_ledger(sparse_lookup):
    outcome = InterpolationSearch(seed=ExplicitSeed(10, 20)).run(1000, sparse_lookup)

    assert outcome.out_of_range == "above"
    assert outcome.nearest == Sample(index=60, timestamp=800)
    assert outcome.lookups == 3
    assert outcome.iterations == 2


@pytest.mark.parametrize("seed", [LatestSeed(), ExplicitSeed(20, 40)])
def test_extrapolation_near_first_ledger_finds_bracket(seed):
    table = {0: 0}
    table.update({i: 10 + 3 * (i - 1) for i in range(1, 41)})
    outcome = InterpolationSearch(seed=seed).run(5, TableLookup(table))

    assert outcome.out_of_range is None
    assert outcome.bracket == (0, 1)


def test_lookup_without_range_is_not_clamped(sparse_table):
    lookup = FailingLookup(sparse_table, failing=())
    with pytest.raises(LookupFailure, match="-10"):
        InterpolationSearch(seed=ExplicitSeed(10, 20)).run(-100, lookup)


# ---- seeding ----

def test_latest_seed_short_circuits_without_more_lookups(sparse_lookup):
    outcome = InterpolationSearch(seed=LatestSeed()).run(800, sparse_lookup)

    assert outcome.exact == Sample(index=60, timestamp=800)
    assert outcome.lookups == 1
    assert outcome.iterations == 0


def test_latest_seed_searches_backwards(sparse_lookup):
    outcome = InterpolationSearch(seed=LatestSeed(offset=10)).run(455, sparse_lookup)

    assert outcome.bracket == (25, 26)
    assert outcome.lookups == 4
    assert outcome.iterations == 3


def test_cached_lookup_makes_repeat_search_free(sparse_lookup):
    cached = CachedLookup(sparse_lookup)
    search = InterpolationSearch(seed=ExplicitSeed(10, 20))

    first = search.run(455, cached)
    second = search.run(455, cached)

    assert first.lookups == 6
    assert second.lookups == 0
    assert second.bracket == first.bracket
    assert cached.lookups == 6


# ---- failures ----

def test_lookup_failure_mid_search_aborts(sparse_table):
    lookup = FailingLookup(sparse_table, failing={46})
    with pytest.raises(LookupFailure, match="46") as excinfo:
        InterpolationSearch(seed=ExplicitSeed(10, 20)).run(455, lookup)
    assert excinfo.value.index == 46


def test_lookup_failure_while_seeding_aborts(sparse_table):
    lookup = FailingLookup(sparse_table, failing={50})
    with pytest.raises(LookupFailure):
        InterpolationSearch(seed=LatestSeed(offset=10)).run(455, lookup)
    assert lookup.requested == [None, 50]


def test_flat_bracket_raises_by_default():
    table = {0: 0, 1: 100, 2: 100, 3: 100, 4: 200, 5: 300, 6: 400, 7: 500}
    with pytest.raises(DegenerateBracket, match=r"\[1, 3\]"):
        InterpolationSearch(seed=ExplicitSeed(1, 3)).run(150, TableLookup(table))


def test_flat_bracket_step_policy_moves_past_plateau():
    table = {0: 0, 1: 100, 2: 100, 3: 100, 4: 200, 5: 300, 6: 400, 7: 500}
    outcome = InterpolationSearch(seed=ExplicitSeed(1, 3), degenerate="step").run(150, TableLookup(table))

    assert outcome.bracket == (3, 4)
    assert outcome.found_index == 4


def test_decreasing_seed_timestamps_are_rejected():
    with pytest.raises(NonMonotonicInput):
        InterpolationSearch(seed=ExplicitSeed(0, 10)).run(150, TableLookup({0: 200, 10: 100}))


def test_non_monotonic_sample_mid_search_is_rejected():
    table = {0: 0, 5: 40, 6: 30, 10: 100}
    with pytest.raises(NonMonotonicInput):
        InterpolationSearch(seed=ExplicitSeed(0, 10)).run(50, TableLookup(table))


def test_cancelled_search_stops_before_iterating(sparse_lookup):
    token = threading.Event()
    token.set()
    with pytest.raises(SearchCancelled):
        InterpolationSearch(seed=ExplicitSeed(10, 20), cancel=token).run(455, sparse_lookup)


def test_iteration_cap(sparse_lookup):
    with pytest.raises(SearchExhausted, match="1 iterations"):
        InterpolationSearch(seed=ExplicitSeed(10, 20), max_iterations=1).run(455, sparse_lookup)


def test_seed_without_bracket_is_rejected(sparse_lookup):
    class EmptySeed:
        name = "empty"

        def seed(self, *, target, lookup):
            return SeedResult()

    with pytest.raises(ValueError, match="EmptySeed"):
        InterpolationSearch(seed=EmptySeed()).run(455, sparse_lookup)


def test_found_index_requires_a_result():
    with pytest.raises(ValueError):
        SearchOutcome(target=0).found_index


def test_invalid_configuration():
    with pytest.raises(ValueError):
        InterpolationSearch(max_iterations=0)
    with pytest.raises(ValueError):
        InterpolationSearch(degenerate="bisect")


# ---- convergence ----

@pytest.mark.parametrize("seed", [1, 7, 42])
def test_converges_for_every_target_on_random_tables(seed):
    table = random_table(seed, size=80)
    first, last = min(table), max(table)
    lookup = TableLookup(table)
    search = InterpolationSearch(seed=ExplicitSeed(first, last), max_iterations=5 * len(table))

    for target in range(table[first], table[last] + 1):
        _assert_correct(search.run(target, lookup), table, target)


def test_converges_on_strongly_non_linear_table():
    table = piecewise_table({0: 0, 20: 20, 40: 2000, 60: 2010, 80: 6000}, 0, 80)
    lookup = TableLookup(table)
    search = InterpolationSearch(seed=ExplicitSeed(0, 80), max_iterations=5 * len(table))

    for target in range(0, 6001, 7):
        _assert_correct(search.run(target, lookup), table, target)


def test_ledger_like_history_from_latest():
    table = ledger_like_table(50_000_000, 1000, 631_000_000)
    lookup = TableLookup(table)

    inside = table[50_000_400] + 1
    outcome = find_ledger(inside, lookup, seed=LatestSeed())
    assert outcome.bracket == (50_000_400, 50_000_401)
    assert outcome.lookups < 20

    exact = table[50_000_123]
    outcome = find_ledger(exact, lookup, seed=LatestSeed())
    assert outcome.exact == Sample(index=50_000_123, timestamp=exact)


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_converges_from_latest_for_every_target_on_random_tables(seed):
    table = random_table(seed, size=80, start=0)
    first, last = min(table), max(table)
    lookup = TableLookup(table)
    search = InterpolationSearch(seed=LatestSeed(), max_iterations=5 * len(table))

    for target in range(table[first], table[last] + 1):
        _assert_correct(search.run(target, lookup), table, target)


@pytest.mark.parametrize("count", [12, 37, 200])
def test_converges_from_latest_near_start_of_ledger_history(count):
    table = ledger_like_table(0, count, 1000, pattern=(3, 5, 4, 3))
    lookup = TableLookup(table)
    search = InterpolationSearch(seed=LatestSeed(), max_iterations=5 * len(table))

    for target in range(table[0], table[count - 1] + 1):
        _assert_correct(search.run(target, lookup), table, target)


def test_latest_seed_reports_targets_outside_history():
    table = ledger_like_table(0, 50, 1000)
    lookup = TableLookup(table)
    search = InterpolationSearch(seed=LatestSeed())

    before = search.run(table[0] - 1, lookup)
    assert before.out_of_range == "below"
    assert before.nearest == Sample(index=0, timestamp=table[0])

    after = search.run(table[49] + 1, lookup)
    assert after.out_of_range == "above"
    assert after.nearest == Sample(index=49, timestamp=table[49])
