from collections.abc import Iterable
from datetime import datetime

Interval = tuple[datetime, datetime]

_END = 0
_START = 1


def max_concurrent(intervals: Iterable[Interval]) -> int:
    """Largest number of intervals in flight at any single instant.

    Intervals are half-open, so one that ends exactly when another starts does
    not count as overlapping it.
    """
    events: list[tuple[datetime, int]] = []
    for start, end in intervals:
        events.append((start, _START))
        events.append((end, _END))

    # Ends sort before starts at the same instant.
    events.sort()

    current = 0
    peak = 0
    for _, kind in events:
        if kind == _START:
            current += 1
            peak = max(peak, current)
        else:
            current -= 1

    return peak


def exceeds_capacity(existing: Iterable[Interval], candidate: Interval, capacity: int) -> bool:
    candidate_start, candidate_end = candidate
    relevant = [
        (start, end)
        for start, end in existing
        if start < candidate_end and end > candidate_start
    ]
    return max_concurrent([*relevant, candidate]) > capacity
