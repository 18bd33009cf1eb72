from dataclasses import dataclass, field

import structlog

from costlens.aggregate import CancelSignal, aggregate, scan
from costlens.errors import InvalidConfiguration
from costlens.keys import KeyFn, charged, key_of, service
from costlens.models import OutlierRow
from costlens.source.base import RecordSource

logger = structlog.get_logger()

DEFAULT_THRESHOLD = 2.0


@dataclass
class OutlierResult:
    rows: "list[OutlierRow]" = field(default_factory=list)
    # charged records missing the group dimension
    excluded: "int" = 0
    # records whose group has an undefined or zero stddev
    undefined: "int" = 0
    # outliers found before the limit was applied
    matched: "int" = 0


def zscore(value: "float", mean: "float", stddev: "float | None") -> "float | None":
    """
    returns how many standard deviations value lies from mean, or
    None when stddev is undefined or zero.
    """
    if stddev is None or stddev == 0:
        return None
    return (value - mean) / stddev


def is_outlier(z: "float | None", threshold: "float" = DEFAULT_THRESHOLD) -> "bool":
    """
    strictly greater than: a value exactly threshold deviations
    away is not an outlier.
    """
    return z is not None and abs(z) > threshold


def detect_outliers(
    source: "RecordSource",
    group_fn: "KeyFn | None" = None,
    threshold: "float" = DEFAULT_THRESHOLD,
    limit: "int | None" = None,
    ddof: "int" = 1,
    cancel: "CancelSignal | None" = None,
) -> "OutlierResult":
    """
    scores every charged record against the mean and stddev of its
    group and returns those beyond threshold, largest |z| first and
    ties broken by larger cost.

    Two passes over the source: the first computes per-group
    statistics, the second scores records. A group with a single
    record (or no spread at all) has no defined z-score and none of
    its records are reported.
    """
    if threshold < 0:
        raise InvalidConfiguration(f"threshold must be >= 0, got {threshold}")
    if limit is not None and limit <= 0:
        raise InvalidConfiguration(f"limit must be positive, got {limit}")
    if ddof not in (0, 1):
        raise InvalidConfiguration(f"ddof must be 0 or 1, got {ddof}")

    group_fn = group_fn or key_of(service)

    stats = aggregate(source.records(), group_fn, where=charged, cancel=cancel)
    logger.debug("outlier_stats_ready", source=source.name, groups=len(stats))

    result = OutlierResult(excluded=stats.excluded)
    candidates: "list[OutlierRow]" = []

    for position, record in scan(source.records(), cancel):
        if record.cost <= 0:
            continue

        group = group_fn(record)
        if group is None:
            continue
        bucket = stats.buckets.get(group)
        if bucket is None:
            # the source changed between passes
            continue

        z = zscore(record.cost, bucket.mean, bucket.stddev_for(ddof))
        if z is None:
            result.undefined += 1
            continue

        if is_outlier(z, threshold):
            candidates.append(
                OutlierRow(
                    record_ref=(
                        record.record_id if record.record_id is not None else position
                    ),
                    group=group,
                    cost=record.cost,
                    mean=bucket.mean,
                    z_score=z,
                )
            )

    candidates.sort(key=lambda r: (-abs(r.z_score), -r.cost))
    result.matched = len(candidates)
    result.rows = candidates if limit is None else candidates[:limit]
    return result
