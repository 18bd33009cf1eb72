from dataclasses import dataclass, field
from itertools import combinations
from typing import Hashable, Iterable

import structlog

from costlens.aggregate import Accumulator, CancelSignal, aggregate
from costlens.errors import InvalidConfiguration
from costlens.keys import Dimension, charged, key_of, project_id, service
from costlens.models import BillingRecord, PairRow

logger = structlog.get_logger()

DEFAULT_MIN_COUNT = 5


@dataclass
class CoOccurrenceResult:
    rows: "list[PairRow]" = field(default_factory=list)
    # charged records missing the entity or the context dimension
    excluded: "int" = 0
    contexts: "int" = 0


def canonical_pair(a: "Hashable", b: "Hashable") -> "tuple[Hashable, Hashable]":
    return (a, b) if a < b else (b, a)  # type: ignore[operator]


def co_occurrence(
    records: "Iterable[BillingRecord]",
    entity_fn: "Dimension" = service,
    context_fn: "Dimension" = project_id,
    min_count: "int | None" = DEFAULT_MIN_COUNT,
    limit: "int | None" = None,
    cancel: "CancelSignal | None" = None,
) -> "CoOccurrenceResult":
    """
    finds entities (services by default) billed within the same
    context (project by default).

    Per-(context, entity) cost sums are computed once; each context
    then contributes every unordered pair of its distinct entities,
    canonicalized so entity_a < entity_b. A pair's count is the
    number of contexts holding both entities and avg_combined_cost
    is the mean over those contexts of the two entity sums. Only
    pairs with count > min_count are kept.
    """
    if min_count is not None and min_count < 0:
        raise InvalidConfiguration(f"min_count must be >= 0, got {min_count}")
    if limit is not None and limit <= 0:
        raise InvalidConfiguration(f"limit must be positive, got {limit}")

    sums = aggregate(records, key_of(context_fn, entity_fn), where=charged, cancel=cancel)

    per_context: "dict[Hashable, dict[Hashable, float]]" = {}
    for (context, entity), bucket in sums.buckets.items():
        per_context.setdefault(context, {})[entity] = bucket.total

    pairs: "dict[tuple[Hashable, Hashable], Accumulator]" = {}
    for entities in per_context.values():
        # sorted input makes combinations() emit canonical pairs
        for a, b in combinations(sorted(entities), 2):
            acc = pairs.get((a, b))
            if acc is None:
                acc = pairs[(a, b)] = Accumulator()
            acc.add(entities[a] + entities[b])

    rows = [
        PairRow(
            entity_a=a,
            entity_b=b,
            count=acc.count,
            avg_combined_cost=acc.total / acc.count,
        )
        for (a, b), acc in pairs.items()
        if min_count is None or acc.count > min_count
    ]
    rows.sort(
        key=lambda r: (-r.count, -r.avg_combined_cost, str(r.entity_a), str(r.entity_b))
    )

    logger.debug(
        "co_occurrence_pairs",
        contexts=len(per_context),
        pairs=len(pairs),
        kept=len(rows),
    )
    return CoOccurrenceResult(
        rows=rows if limit is None else rows[:limit],
        excluded=sums.excluded,
        contexts=len(per_context),
    )
