"""
Trailing moving averages over sparse daily cost series.

The window counts present rows, not calendar days: a 7-row window
over a series with gaps may span more than a week. Callers that want
calendar smoothing must zero-fill the series first.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from costlens.aggregate import CancelSignal, aggregate
from costlens.errors import InvalidConfiguration
from costlens.keys import KeyFn, charged, day, extend_key, key_of, service
from costlens.models import BillingRecord, GroupKey, RollingRow

DEFAULT_WINDOWS: "tuple[int, ...]" = (7, 30)


class TrailingWindow:
    """
    TrailingWindow keeps the last `size` values in a ring buffer
    along with their running sum.
    """

    def __init__(self, size: "int") -> "None":
        if size < 1:
            raise InvalidConfiguration(f"window size must be >= 1, got {size}")
        self.size = size
        self._values: "deque[float]" = deque(maxlen=size)
        self._sum: "float" = 0.0

    def push(self, value: "float") -> "float":
        """
        adds value and returns the average of the values now in
        the window.
        """
        if len(self._values) == self.size:
            self._sum -= self._values[0]
        self._values.append(value)
        self._sum += value
        return self._sum / len(self._values)


def moving_averages(values: "Sequence[float]", window: "int") -> "list[float]":
    """
    trailing average of each position over at most `window` values,
    partial at the start of the sequence.
    """
    trailing = TrailingWindow(window)
    return [trailing.push(v) for v in values]


def validate_windows(windows: "Iterable[int]") -> "tuple[int, ...]":
    """
    de-duplicates windows keeping their order and rejects anything
    that is not a positive integer.
    """
    seen: "list[int]" = []
    for w in windows:
        if isinstance(w, bool) or not isinstance(w, int) or w < 1:
            raise InvalidConfiguration(f"window sizes must be positive integers, got {w!r}")
        if w not in seen:
            seen.append(w)
    if not seen:
        raise InvalidConfiguration("at least one window size is required")
    return tuple(seen)


@dataclass
class RollingResult:
    windows: "tuple[int, ...]"
    rows: "list[RollingRow]" = field(default_factory=list)
    # charged records without a group or a usage_start_time
    excluded: "int" = 0


def rolling_average(
    records: "Iterable[BillingRecord]",
    group_fn: "KeyFn | None" = None,
    windows: "Iterable[int]" = DEFAULT_WINDOWS,
    cancel: "CancelSignal | None" = None,
) -> "RollingResult":
    """
    sums charged cost per (group, day) and computes, for each
    window size, the trailing average over the group's ordered
    daily rows.
    """
    sizes = validate_windows(windows)
    group_fn = group_fn or key_of(service)

    daily = aggregate(
        records, extend_key(group_fn, day), where=charged, cancel=cancel
    )

    series: "dict[GroupKey, list[tuple[date, float]]]" = {}
    for key, bucket in daily.buckets.items():
        series.setdefault(key[:-1], []).append((key[-1], bucket.total))

    result = RollingResult(windows=sizes, excluded=daily.excluded)
    for group in sorted(series, key=str):
        points = sorted(series[group])
        trailing = {w: TrailingWindow(w) for w in sizes}
        for usage_day, total in points:
            result.rows.append(
                RollingRow(
                    group=group,
                    day=usage_day,
                    daily_cost=total,
                    averages={w: trailing[w].push(total) for w in sizes},
                )
            )
    return result
