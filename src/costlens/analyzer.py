import threading
import time
from typing import Any, Callable, Iterator, Sequence, TypeVar

import structlog

from costlens.aggregate import (
    AggregationResult,
    Having,
    Where,
    aggregate,
    aggregate_partitions,
)
from costlens.buckets import (
    DEFAULT_BOUNDARIES,
    DEFAULT_SCHEME,
    BucketResult,
    BucketScheme,
    bucketize,
)
from costlens.config import Config
from costlens.cooccurrence import CoOccurrenceResult, co_occurrence
from costlens.errors import AnalysisCancelled, CostlensError, InvalidConfiguration
from costlens.keys import resolve_dimension, resolve_key, resolve_value
from costlens.metrics import MetricsRecorder
from costlens.models import BillingRecord, CostSummary
from costlens.outliers import OutlierResult, detect_outliers
from costlens.reports import (
    EfficiencyResult,
    RecommendationResult,
    TrendResult,
    cost_efficiency,
    cost_summary,
    monthly_trend,
    recommendations,
)
from costlens.rolling import RollingResult, rolling_average
from costlens.source.base import RecordSource

logger = structlog.get_logger()

T = TypeVar("T")

# marks an override the caller did not pass, where None is meaningful
_UNSET: "Any" = object()


class _CountingSource:
    """
    wraps a source to count the records every pass reads from it.
    """

    def __init__(self, source: "RecordSource") -> "None":
        self._source = source
        self.read: "int" = 0

    @property
    def name(self) -> "str":
        return self._source.name

    def records(self) -> "Iterator[BillingRecord]":
        for record in self._source.records():
            self.read += 1
            yield record


class Analyzer:
    """
    Analyzer is the entry point for running analyses over a record
    source. Each operation takes its defaults from the Config,
    accepts per-call overrides, validates them before reading a
    single record, and logs and records metrics for the run.

    cancel() may be called from another thread (or a signal
    handler); the running scan stops at the next record and the
    operation raises AnalysisCancelled.
    """

    def __init__(
        self,
        config: "Config | None" = None,
        metrics: "MetricsRecorder | None" = None,
    ) -> "None":
        self._config = config or Config()
        self._config.validate()
        self._metrics = metrics
        self._cancel_event: "threading.Event" = threading.Event()

    @property
    def config(self) -> "Config":
        return self._config

    def cancel(self) -> "None":
        """
        signals running and future analyses to stop.
        """
        self._cancel_event.set()

    def reset(self) -> "None":
        self._cancel_event.clear()

    def _run_one(
        self,
        analysis: "str",
        source: "RecordSource",
        fn: "Callable[[RecordSource], T]",
    ) -> "T":
        return self._run(analysis, [source], lambda parts: fn(parts[0]))

    def _run(
        self,
        analysis: "str",
        sources: "Sequence[RecordSource]",
        fn: "Callable[[list[_CountingSource]], T]",
    ) -> "T":
        # one counter per source, partitions may be read on different threads
        counting = [_CountingSource(s) for s in sources]
        name = ",".join(s.name for s in sources)
        start = time.monotonic()
        logger.info("analysis_start", analysis=analysis, source=name)

        try:
            result = fn(counting)
        except InvalidConfiguration:
            logger.error("analysis_invalid_configuration", analysis=analysis)
            self._inc_run(analysis, "invalid")
            raise
        except AnalysisCancelled as exc:
            logger.warning("analysis_cancelled", analysis=analysis, scanned=exc.scanned)
            self._inc_run(analysis, "cancelled")
            raise
        except CostlensError:
            logger.exception("analysis_failed", analysis=analysis, source=name)
            self._inc_run(analysis, "failed")
            raise
        finally:
            duration = time.monotonic() - start
            scanned = sum(c.read for c in counting)
            if self._metrics is not None:
                self._metrics.observe_duration(analysis, duration)
                self._metrics.add_scanned(analysis, scanned)

        excluded = getattr(result, "excluded", 0)
        if excluded:
            logger.info("records_excluded", analysis=analysis, count=excluded)
        if self._metrics is not None:
            self._metrics.add_excluded(analysis, excluded)
        self._inc_run(analysis, "ok")

        logger.info(
            "analysis_done",
            analysis=analysis,
            scanned=scanned,
            excluded=excluded,
            duration=round(duration, 3),
        )
        return result

    def _inc_run(self, analysis: "str", status: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_run(analysis, status)

    def group_aggregate(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
        value_field: "str | None" = None,
        where: "Where | None" = None,
        having: "Having | None" = None,
        null_key: "str | None" = None,
    ) -> "AggregationResult":
        key_fn = resolve_key(group_by or self._config.group_by, null_key=null_key)
        value_fn = resolve_value(value_field or self._config.value_field)
        return self._run_one(
            "aggregate",
            source,
            lambda s: aggregate(
                s.records(),
                key_fn,
                value_fn,
                where=where,
                having=having,
                cancel=self._cancel_event,
            ),
        )

    def group_aggregate_partitions(
        self,
        sources: "Sequence[RecordSource]",
        group_by: "str | Sequence[str] | None" = None,
        value_field: "str | None" = None,
        where: "Where | None" = None,
        having: "Having | None" = None,
        null_key: "str | None" = None,
    ) -> "AggregationResult":
        """
        aggregates disjoint partitions of the same dataset in
        parallel and merges them into one result.
        """
        if not sources:
            raise InvalidConfiguration("at least one partition is required")
        key_fn = resolve_key(group_by or self._config.group_by, null_key=null_key)
        value_fn = resolve_value(value_field or self._config.value_field)
        return self._run(
            "aggregate",
            sources,
            lambda parts: aggregate_partitions(
                [p.records() for p in parts],
                key_fn,
                value_fn,
                where=where,
                having=having,
                cancel=self._cancel_event,
                max_workers=self._config.max_workers,
            ),
        )

    def detect_outliers(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
        threshold: "float | None" = None,
        limit: "int | None" = None,
    ) -> "OutlierResult":
        group_fn = resolve_key(group_by or self._config.group_by)
        threshold = self._config.outlier_threshold if threshold is None else threshold
        limit = limit if limit is not None else self._config.outlier_limit
        return self._run_one(
            "outliers",
            source,
            lambda s: detect_outliers(
                s,
                group_fn,
                threshold=threshold,
                limit=limit,
                cancel=self._cancel_event,
            ),
        )

    def rolling_average(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
        windows: "Sequence[int] | None" = None,
    ) -> "RollingResult":
        group_fn = resolve_key(group_by or self._config.group_by)
        sizes = tuple(windows) if windows else self._config.rolling_windows
        return self._run_one(
            "rolling",
            source,
            lambda s: rolling_average(
                s.records(), group_fn, sizes, cancel=self._cancel_event
            ),
        )

    def co_occurrence(
        self,
        source: "RecordSource",
        pair_dimension: "str | None" = None,
        context_dimension: "str | None" = None,
        min_count: "int | None" = _UNSET,
        limit: "int | None" = None,
    ) -> "CoOccurrenceResult":
        """
        min_count=None reports every pair; leaving it out applies the
        configured min_co_occurrence.
        """
        entity_fn = resolve_dimension(pair_dimension or self._config.pair_dimension)
        context_fn = resolve_dimension(
            context_dimension or self._config.context_dimension
        )
        if min_count is _UNSET:
            min_count = self._config.min_co_occurrence
        return self._run_one(
            "cooccurrence",
            source,
            lambda s: co_occurrence(
                s.records(),
                entity_fn,
                context_fn,
                min_count=min_count,
                limit=limit,
                cancel=self._cancel_event,
            ),
        )

    def bucketize(
        self,
        source: "RecordSource",
        boundaries: "Sequence[float] | None" = None,
        scheme: "BucketScheme | None" = None,
    ) -> "BucketResult":
        if scheme is None:
            bounds = tuple(boundaries or self._config.bucket_boundaries)
            if bounds == DEFAULT_BOUNDARIES:
                scheme = DEFAULT_SCHEME
            else:
                scheme = BucketScheme.from_boundaries(bounds)
        return self._run_one(
            "buckets",
            source,
            lambda s: bucketize(s.records(), scheme, cancel=self._cancel_event),
        )

    def summary(self, source: "RecordSource") -> "CostSummary":
        return self._run_one(
            "summary",
            source,
            lambda s: cost_summary(s.records(), cancel=self._cancel_event),
        )

    def efficiency(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
    ) -> "EfficiencyResult":
        group_fn = resolve_key(group_by or self._config.group_by)
        return self._run_one(
            "efficiency",
            source,
            lambda s: cost_efficiency(s.records(), group_fn, cancel=self._cancel_event),
        )

    def monthly_trend(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
    ) -> "TrendResult":
        group_fn = resolve_key(group_by or self._config.group_by)
        return self._run_one(
            "trend",
            source,
            lambda s: monthly_trend(s.records(), group_fn, cancel=self._cancel_event),
        )

    def recommendations(
        self,
        source: "RecordSource",
        group_by: "str | Sequence[str] | None" = None,
    ) -> "RecommendationResult":
        group_fn = resolve_key(group_by or self._config.group_by)
        return self._run_one(
            "recommendations",
            source,
            lambda s: recommendations(s.records(), group_fn, cancel=self._cancel_event),
        )
