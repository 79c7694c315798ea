import random

import pytest

from ledger_search.errors import LookupFailure
from ledger_search.lookup import TableLookup


def piecewise_table(knots, start, stop):
    """
    Integer table over [start, stop] linearly interpolated between `knots`.

    Indices outside the knots continue the slope of the nearest end segment.
    """
    points = sorted(knots.items())
    table = {}
    for i in range(start, stop + 1):
        if i <= points[0][0]:
            (x0, y0), (x1, y1) = points[0], points[1]
        elif i >= points[-1][0]:
            (x0, y0), (x1, y1) = points[-2], points[-1]
        else:
            k = next(k for k in range(1, len(points)) if points[k][0] >= i)
            (x0, y0), (x1, y1) = points[k - 1], points[k]
        table[i] = y0 + (y1 - y0) * (i - x0) // (x1 - x0)
    return table


def random_table(seed, size, start=1000, max_gap=9):
    """Strictly increasing table with random gaps in [1, max_gap]."""
    rng = random.Random(seed)
    table = {}
    t = rng.randint(0, 1000)
    for i in range(start, start + size):
        t += rng.randint(1, max_gap)
        table[i] = t
    return table


def ledger_like_table(first_index, count, first_close, pattern=(3, 4, 3, 5, 4, 3, 4)):
    """Close times advancing by a repeating pattern of intervals, like a ledger chain."""
    table = {}
    t = first_close
    for n in range(count):
        table[first_index + n] = t
        t += pattern[n % len(pattern)]
    return table


class FailingLookup:
    """Table lookup that fails for a chosen set of indices."""

    def __init__(self, table, failing):
        self.inner = TableLookup(table)
        self.failing = set(failing)
        self.requested = []

    def fetch(self, index):
        self.requested.append(index)
        if index in self.failing:
            raise LookupFailure(f"simulated failure for ledger {index}", index=index)
        return self.inner.fetch(index)


@pytest.fixture
def sparse_table():
    # Non-uniform spacing: 10 -> 100, 20 -> 200, 25 -> 450, 26 -> 460.
    return piecewise_table({10: 100, 20: 200, 25: 450, 26: 460}, 0, 60)


@pytest.fixture
def sparse_lookup(sparse_table):
    return TableLookup(sparse_table)
