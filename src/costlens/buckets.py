"""
Cost bucketing: an ordered, validated list of disjoint cost ranges.

A scheme is checked once when it is built. Classification afterwards
is a bisect over the upper bounds and cannot fall through the cracks.
"""

import math
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from costlens.aggregate import CancelSignal, aggregate
from costlens.errors import InvalidBucketConfiguration
from costlens.models import BillingRecord, BucketRow


@dataclass(frozen=True, slots=True)
class CostBucket:
    """
    CostBucket is either the point range `= lower` (lower == upper)
    or the half-open range `(lower, upper]`. upper may be math.inf.
    """

    label: "str"
    lower: "float"
    upper: "float"

    @property
    def is_point(self) -> "bool":
        return self.lower == self.upper


def _format_bound(value: "float") -> "str":
    return f"{value:g}"


class BucketScheme:
    """
    BucketScheme is an exhaustive, non-overlapping cover of [0, inf)
    by CostBuckets in ascending order.
    """

    def __init__(self, buckets: "Sequence[CostBucket]") -> "None":
        self.buckets: "tuple[CostBucket, ...]" = tuple(buckets)
        self._validate()
        self._uppers: "list[float]" = [b.upper for b in self.buckets]

    def _validate(self) -> "None":
        if not self.buckets:
            raise InvalidBucketConfiguration("a bucket scheme needs at least one bucket")

        labels = [b.label for b in self.buckets]
        duplicates = sorted({lbl for lbl in labels if labels.count(lbl) > 1})
        if duplicates:
            raise InvalidBucketConfiguration(f"duplicate bucket labels: {duplicates}")

        first = self.buckets[0]
        if first.lower != 0:
            raise InvalidBucketConfiguration(
                f"bucket {first.label!r} must start at 0, starts at {first.lower}"
            )

        previous: "CostBucket | None" = None
        for bucket in self.buckets:
            if math.isnan(bucket.lower) or math.isnan(bucket.upper):
                raise InvalidBucketConfiguration(f"bucket {bucket.label!r} has a NaN bound")
            if bucket.upper < bucket.lower:
                raise InvalidBucketConfiguration(
                    f"bucket {bucket.label!r} has upper bound {bucket.upper} "
                    f"below its lower bound {bucket.lower}"
                )
            if bucket.is_point and math.isinf(bucket.lower):
                raise InvalidBucketConfiguration(f"bucket {bucket.label!r} is a point at infinity")
            if previous is not None:
                # (a, x] already holds x, so only the first bucket may be a point
                if bucket.is_point:
                    raise InvalidBucketConfiguration(
                        f"point bucket {bucket.label!r} overlaps {previous.label!r}"
                    )
                if bucket.lower != previous.upper:
                    kind = "overlaps" if bucket.lower < previous.upper else "leaves a gap after"
                    raise InvalidBucketConfiguration(
                        f"bucket {bucket.label!r} {kind} {previous.label!r}: "
                        f"{previous.upper} -> {bucket.lower}"
                    )
            previous = bucket

        # a lone (0, x] bucket would leave the point 0 uncovered
        if not first.is_point:
            raise InvalidBucketConfiguration(
                f"cost 0 is not covered: first bucket {first.label!r} excludes its lower bound"
            )

        last = self.buckets[-1]
        if not math.isinf(last.upper):
            raise InvalidBucketConfiguration(
                f"bucket {last.label!r} must extend to infinity, ends at {last.upper}"
            )

    @classmethod
    def from_boundaries(
        cls,
        boundaries: "Iterable[float]",
        labels: "Sequence[str] | None" = None,
    ) -> "BucketScheme":
        """
        builds `=0, (0,b1], (b1,b2], ..., (bn,inf)` from the
        ascending inner boundaries b1..bn.
        """
        bounds = [float(b) for b in boundaries]
        if any(b <= 0 or math.isinf(b) for b in bounds):
            raise InvalidBucketConfiguration(
                f"boundaries must be positive and finite, got {bounds}"
            )
        if bounds != sorted(set(bounds)):
            raise InvalidBucketConfiguration(
                f"boundaries must be strictly ascending, got {bounds}"
            )

        ranges = [(0.0, 0.0)]
        lower = 0.0
        for upper in bounds + [math.inf]:
            ranges.append((lower, upper))
            lower = upper

        if labels is None:
            labels = ["=0"] + [
                f"({_format_bound(lo)},{_format_bound(hi)}]"
                if not math.isinf(hi)
                else f"({_format_bound(lo)},inf)"
                for lo, hi in ranges[1:]
            ]
        if len(labels) != len(ranges):
            raise InvalidBucketConfiguration(
                f"expected {len(ranges)} labels for {len(bounds)} boundaries, got {len(labels)}"
            )

        return cls(
            [CostBucket(label, lo, hi) for label, (lo, hi) in zip(labels, ranges)]
        )

    @property
    def labels(self) -> "list[str]":
        return [b.label for b in self.buckets]

    def classify(self, value: "float") -> "CostBucket":
        """
        returns the single bucket containing value. Negative or NaN
        values belong to no bucket.
        """
        if value < 0 or math.isnan(value):
            raise ValueError(f"cost {value} is outside every bucket")
        # first upper bound >= value; the point bucket wins for its own value
        return self.buckets[bisect_left(self._uppers, value)]

    def __iter__(self):
        return iter(self.buckets)

    def __len__(self) -> "int":
        return len(self.buckets)


DEFAULT_BOUNDARIES = (1.0, 10.0, 100.0, 1000.0)

DEFAULT_SCHEME = BucketScheme.from_boundaries(
    DEFAULT_BOUNDARIES,
    labels=["No charge", "$0-$1", "$1-$10", "$10-$100", "$100-$1000", "Over $1000"],
)


@dataclass
class BucketResult:
    rows: "list[BucketRow]" = field(default_factory=list)
    scanned: "int" = 0


def bucketize(
    records: "Iterable[BillingRecord]",
    scheme: "BucketScheme" = DEFAULT_SCHEME,
    cancel: "CancelSignal | None" = None,
) -> "BucketResult":
    """
    counts records and sums cost per bucket. Every bucket of the
    scheme is reported in ascending order, empty ones with count 0.
    """
    sums = aggregate(
        records, lambda r: (scheme.classify(r.cost).label,), cancel=cancel
    )
    rows = []
    for bucket in scheme:
        found = sums.buckets.get((bucket.label,))
        rows.append(
            BucketRow(
                label=bucket.label,
                count=found.count if found else 0,
                total=found.total if found else 0.0,
            )
        )
    return BucketResult(rows=rows, scanned=sums.scanned)
