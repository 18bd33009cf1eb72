"""
Summary reports over billing records: overall cost statistics, cost
per usage unit, monthly trend and per-service optimization hints.
"""

from dataclasses import dataclass, field
from typing import Iterable

from costlens.aggregate import (
    Accumulator,
    CancelSignal,
    aggregate,
    partial_aggregate,
    scan,
)
from costlens.keys import (
    KeyFn,
    charged,
    extend_key,
    key_of,
    month,
    service,
    usage_unit,
    year,
)
from costlens.models import (
    BillingRecord,
    CostSummary,
    EfficiencyRow,
    GroupKey,
    RecommendationRow,
    TrendRow,
)

ZERO_COST_SHARE_LIMIT = 50.0
SPIKE_FACTOR = 10.0
HIGH_COST_TOTAL = 1000.0

UNUSED_ALLOCATION = "High unused resource allocation"
COST_SPIKES = "High cost variance - check for spikes"
HIGH_COST = "High-cost service - review regularly"
NORMAL = "Normal usage pattern"


def ratio(numerator: "float", denominator: "float | None") -> "float | None":
    """
    numerator / denominator, None when the denominator is zero or
    undefined.
    """
    if not denominator:
        return None
    return numerator / denominator


def cost_summary(
    records: "Iterable[BillingRecord]",
    cancel: "CancelSignal | None" = None,
) -> "CostSummary":
    partial = partial_aggregate(records, lambda r: (r.cost > 0,), cancel=cancel)
    charged_acc = partial.accumulators.get((True,), Accumulator())
    free_acc = partial.accumulators.get((False,), Accumulator())
    overall = charged_acc.merge(free_acc)

    if overall.count == 0:
        return CostSummary(
            total_records=0,
            charged_records=0,
            min_cost=None,
            max_cost=None,
            avg_cost=None,
            total_cost=0.0,
        )
    return CostSummary(
        total_records=overall.count,
        charged_records=charged_acc.count,
        min_cost=overall.minimum,
        max_cost=overall.maximum,
        avg_cost=overall.total / overall.count,
        total_cost=overall.total,
    )


@dataclass
class EfficiencyResult:
    rows: "list[EfficiencyRow]" = field(default_factory=list)
    excluded: "int" = 0


def cost_efficiency(
    records: "Iterable[BillingRecord]",
    group_fn: "KeyFn | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "EfficiencyResult":
    """
    compares cost per unit of usage across (group, usage unit)
    pairs, over records with both a charge and a positive usage
    amount. Groups whose usage sums to zero are dropped.
    """
    key_fn = extend_key(group_fn or key_of(service), usage_unit)
    costs: "dict[GroupKey, Accumulator]" = {}
    usage: "dict[GroupKey, float]" = {}
    excluded = 0

    for _, record in scan(records, cancel):
        if not charged(record):
            continue
        if record.usage is None or record.usage.amount <= 0:
            continue
        key = key_fn(record)
        if key is None:
            excluded += 1
            continue

        acc = costs.get(key)
        if acc is None:
            acc = costs[key] = Accumulator()
        acc.add(record.cost)
        usage[key] = usage.get(key, 0.0) + record.usage.amount

    rows = [
        EfficiencyRow(
            key=key,
            records=acc.count,
            total_cost=acc.total,
            total_usage=usage[key],
            cost_per_unit=ratio(acc.total, usage[key]),
        )
        for key, acc in costs.items()
        if usage[key] > 0
    ]
    rows.sort(key=lambda r: (-(r.cost_per_unit or 0.0), str(r.key)))
    return EfficiencyResult(rows=rows, excluded=excluded)


@dataclass
class TrendResult:
    rows: "list[TrendRow]" = field(default_factory=list)
    excluded: "int" = 0


def monthly_trend(
    records: "Iterable[BillingRecord]",
    group_fn: "KeyFn | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "TrendResult":
    key_fn = extend_key(group_fn or key_of(service), year, month)
    sums = aggregate(records, key_fn, where=charged, cancel=cancel)
    rows = [
        TrendRow(
            year=key[-2],
            month=key[-1],
            group=key[:-2],
            records=bucket.count,
            total_cost=bucket.total,
            avg_cost=bucket.mean,
        )
        for key, bucket in sums.buckets.items()
    ]
    rows.sort(key=lambda r: (r.year, r.month, -r.total_cost, str(r.group)))
    return TrendResult(rows=rows, excluded=sums.excluded)


def recommend(
    zero_cost_percentage: "float | None",
    max_cost: "float",
    avg_cost: "float",
    total_cost: "float",
) -> "str":
    """
    first matching rule wins.
    """
    if zero_cost_percentage is not None and zero_cost_percentage > ZERO_COST_SHARE_LIMIT:
        return UNUSED_ALLOCATION
    if max_cost > avg_cost * SPIKE_FACTOR:
        return COST_SPIKES
    if total_cost > HIGH_COST_TOTAL:
        return HIGH_COST
    return NORMAL


@dataclass
class RecommendationResult:
    rows: "list[RecommendationRow]" = field(default_factory=list)
    excluded: "int" = 0


def recommendations(
    records: "Iterable[BillingRecord]",
    group_fn: "KeyFn | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "RecommendationResult":
    """
    summarizes each group's share of zero-cost records and its cost
    spread, and attaches an optimization hint. Groups that cost
    nothing at all are left out.
    """
    group_key = group_fn or key_of(service)

    def _key(record: "BillingRecord") -> "GroupKey | None":
        group = group_key(record)
        if group is None:
            return None
        return (group, record.cost > 0)

    partial = partial_aggregate(records, _key, cancel=cancel)

    per_group: "dict[GroupKey, dict[bool, Accumulator]]" = {}
    for (group, is_charged), acc in partial.accumulators.items():
        per_group.setdefault(group, {})[is_charged] = acc

    rows = []
    for group, split in per_group.items():
        free = split.get(False, Accumulator())
        overall = split.get(True, Accumulator()).merge(free)
        if overall.total <= 0:
            continue

        share = ratio(free.count * 100.0, overall.count)
        avg_cost = overall.total / overall.count
        rows.append(
            RecommendationRow(
                group=group,
                total_records=overall.count,
                zero_cost_records=free.count,
                zero_cost_percentage=share,
                total_cost=overall.total,
                max_cost=overall.maximum,
                avg_cost=avg_cost,
                recommendation=recommend(share, overall.maximum, avg_cost, overall.total),
            )
        )

    rows.sort(key=lambda r: (-r.total_cost, str(r.group)))
    return RecommendationResult(rows=rows, excluded=partial.excluded)
