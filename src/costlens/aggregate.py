"""
Aggregation engine: a single left-to-right group-by-reduce over a
record iterable.

Each group keeps a Welford accumulator (count, mean, M2) next to its
count/sum/min/max, so a pass never needs the dataset resident and
partial results computed over disjoint partitions can be merged
associatively.
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Protocol

import structlog

from costlens.errors import AnalysisCancelled, CostlensError, SourceExhaustionError
from costlens.keys import KeyFn, ValueFn, cost
from costlens.models import BillingRecord, GroupKey, GroupRow

logger = structlog.get_logger()


class CancelSignal(Protocol):
    """
    anything with is_set(), threading.Event being the usual one.
    """

    def is_set(self) -> "bool": ...


Where = Callable[[BillingRecord], bool]


class Accumulator:
    """
    Accumulator holds the running statistics of one group.
    """

    __slots__ = ("count", "total", "minimum", "maximum", "mean", "m2")

    def __init__(self) -> "None":
        self.count: "int" = 0
        self.total: "float" = 0.0
        self.minimum: "float" = math.inf
        self.maximum: "float" = -math.inf
        self.mean: "float" = 0.0
        self.m2: "float" = 0.0

    def add(self, value: "float") -> "None":
        self.count += 1
        self.total += value
        if value < self.minimum:
            self.minimum = value
        if value > self.maximum:
            self.maximum = value

        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    def merge(self, other: "Accumulator") -> "Accumulator":
        """
        returns a new accumulator equivalent to having seen the
        values of both operands (Chan et al. parallel update).
        """
        merged = Accumulator()
        merged.count = self.count + other.count
        if merged.count == 0:
            return merged

        merged.total = self.total + other.total
        merged.minimum = min(self.minimum, other.minimum)
        merged.maximum = max(self.maximum, other.maximum)

        delta = other.mean - self.mean
        merged.mean = self.mean + delta * other.count / merged.count
        merged.m2 = (
            self.m2
            + other.m2
            + delta * delta * self.count * other.count / merged.count
        )
        return merged

    def finalize(self, key: "GroupKey") -> "AggregateBucket":
        return AggregateBucket(
            key=key,
            count=self.count,
            total=self.total,
            minimum=self.minimum,
            maximum=self.maximum,
            # the exact quotient is preferred over the running mean
            mean=self.total / self.count,
            m2=max(self.m2, 0.0),
        )


@dataclass(frozen=True, slots=True)
class AggregateBucket:
    """
    AggregateBucket is the finalized statistics of one GroupKey.
    Variance and stddev are sample statistics and are None for a
    single-record group: one observation says nothing about spread.
    """

    key: "GroupKey"
    count: "int"
    total: "float"
    minimum: "float"
    maximum: "float"
    mean: "float"
    m2: "float"

    @property
    def variance(self) -> "float | None":
        if self.count < 2:
            return None
        return self.m2 / (self.count - 1)

    @property
    def stddev(self) -> "float | None":
        variance = self.variance
        return math.sqrt(variance) if variance is not None else None

    @property
    def population_variance(self) -> "float | None":
        if self.count < 1:
            return None
        return self.m2 / self.count

    @property
    def population_stddev(self) -> "float | None":
        variance = self.population_variance
        return math.sqrt(variance) if variance is not None else None

    def stddev_for(self, ddof: "int") -> "float | None":
        """
        stddev with the given delta degrees of freedom, None when
        the group is too small for it.
        """
        if self.count - ddof < 1:
            return None
        return math.sqrt(self.m2 / (self.count - ddof))

    def to_row(self) -> "GroupRow":
        return GroupRow(
            key=self.key,
            count=self.count,
            total=self.total,
            minimum=self.minimum,
            maximum=self.maximum,
            mean=self.mean,
            stddev=self.stddev,
        )


Having = Callable[[AggregateBucket], bool]


@dataclass
class AggregationResult:
    """
    AggregationResult holds the finalized buckets of one complete
    pass, with the bookkeeping of records that did not make it in.
    """

    buckets: "dict[GroupKey, AggregateBucket]"
    scanned: "int" = 0
    # rejected by the where-predicate
    filtered: "int" = 0
    # missing a dimension or value required by the key
    excluded: "int" = 0

    def rows(self) -> "list[GroupRow]":
        """
        returns one row per bucket, largest total first.
        """
        ordered = sorted(
            self.buckets.values(),
            key=lambda b: (-b.total, str(b.key)),
        )
        return [b.to_row() for b in ordered]

    def __len__(self) -> "int":
        return len(self.buckets)

    def __getitem__(self, key: "GroupKey") -> "AggregateBucket":
        return self.buckets[key]

    def __contains__(self, key: "object") -> "bool":
        return key in self.buckets


@dataclass
class PartialAggregation:
    """
    PartialAggregation is the unfinalized state of a pass over one
    partition. Merging is associative and commutative.
    """

    accumulators: "dict[GroupKey, Accumulator]" = field(default_factory=dict)
    scanned: "int" = 0
    filtered: "int" = 0
    excluded: "int" = 0

    def merge(self, other: "PartialAggregation") -> "PartialAggregation":
        merged = PartialAggregation(
            accumulators=dict(self.accumulators),
            scanned=self.scanned + other.scanned,
            filtered=self.filtered + other.filtered,
            excluded=self.excluded + other.excluded,
        )
        for key, acc in other.accumulators.items():
            mine = merged.accumulators.get(key)
            merged.accumulators[key] = acc if mine is None else mine.merge(acc)
        return merged

    def finalize(self, having: "Having | None" = None) -> "AggregationResult":
        buckets: "dict[GroupKey, AggregateBucket]" = {}
        for key, acc in self.accumulators.items():
            bucket = acc.finalize(key)
            if having is None or having(bucket):
                buckets[key] = bucket
        return AggregationResult(
            buckets=buckets,
            scanned=self.scanned,
            filtered=self.filtered,
            excluded=self.excluded,
        )


def scan(
    records: "Iterable[BillingRecord]",
    cancel: "CancelSignal | None" = None,
) -> "Iterator[tuple[int, BillingRecord]]":
    """
    iterates records with their zero-based position, checking the
    cancel signal before each record. Failures of the underlying
    iterable surface as SourceExhaustionError; errors raised by the
    consumer of this generator are not touched.
    """
    position = 0
    try:
        iterator = iter(records)
    except CostlensError:
        raise
    except Exception as exc:
        raise SourceExhaustionError(f"record source failed to open: {exc}") from exc

    while True:
        if cancel is not None and cancel.is_set():
            raise AnalysisCancelled(position)

        try:
            record = next(iterator)
        except StopIteration:
            return
        except CostlensError:
            raise
        except Exception as exc:
            raise SourceExhaustionError(
                f"record source failed after {position} records: {exc}"
            ) from exc

        yield position, record
        position += 1


def partial_aggregate(
    records: "Iterable[BillingRecord]",
    key_fn: "KeyFn",
    value_fn: "ValueFn" = cost,
    *,
    where: "Where | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "PartialAggregation":
    """
    runs the reduce step over records without finalizing, so the
    result can be merged with other partitions.
    """
    partial = PartialAggregation()
    accumulators = partial.accumulators

    for _, record in scan(records, cancel):
        partial.scanned += 1
        if where is not None and not where(record):
            partial.filtered += 1
            continue

        key = key_fn(record)
        value = value_fn(record)
        if key is None or value is None:
            partial.excluded += 1
            continue

        acc = accumulators.get(key)
        if acc is None:
            acc = accumulators[key] = Accumulator()
        acc.add(value)

    return partial


def aggregate(
    records: "Iterable[BillingRecord]",
    key_fn: "KeyFn",
    value_fn: "ValueFn" = cost,
    *,
    where: "Where | None" = None,
    having: "Having | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "AggregationResult":
    """
    groups records by key_fn and reduces value_fn per group into
    count, sum, min, max, mean and variance.

    Records whose key or value is undefined are excluded and
    counted, never coerced into a default group. The having
    predicate runs on finalized buckets. The pass is atomic: on
    cancellation or source failure nothing is returned.
    """
    partial = partial_aggregate(
        records, key_fn, value_fn, where=where, cancel=cancel
    )
    result = partial.finalize(having)
    logger.debug(
        "aggregation_done",
        groups=len(result.buckets),
        scanned=result.scanned,
        filtered=result.filtered,
        excluded=result.excluded,
    )
    return result


def merge_partials(
    partials: "Iterable[PartialAggregation]",
    having: "Having | None" = None,
) -> "AggregationResult":
    merged = PartialAggregation()
    for partial in partials:
        merged = merged.merge(partial)
    return merged.finalize(having)


def aggregate_partitions(
    partitions: "Iterable[Iterable[BillingRecord]]",
    key_fn: "KeyFn",
    value_fn: "ValueFn" = cost,
    *,
    where: "Where | None" = None,
    having: "Having | None" = None,
    cancel: "CancelSignal | None" = None,
    max_workers: "int | None" = None,
) -> "AggregationResult":
    """
    aggregates each partition independently on a thread pool and
    merges the partial results in the calling thread. Partitions
    share no writable state, so no locking is involved.
    """
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(
                partial_aggregate,
                partition,
                key_fn,
                value_fn,
                where=where,
                cancel=cancel,
            )
            for partition in partitions
        ]
        # result() re-raises the first failure, which aborts the merge
        partials = [f.result() for f in futures]

    result = merge_partials(partials, having)
    logger.debug(
        "partitioned_aggregation_done",
        partitions=len(partials),
        groups=len(result.buckets),
        scanned=result.scanned,
    )
    return result
