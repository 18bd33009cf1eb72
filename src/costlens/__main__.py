import dataclasses
import json
import signal
import sys
from typing import Any

import structlog
from prometheus_client import CollectorRegistry, write_to_textfile

from costlens.aggregate import AggregationResult, Where
from costlens.analyzer import Analyzer
from costlens.cli import Invocation, parse_args
from costlens.errors import AnalysisCancelled, InvalidConfiguration, SourceExhaustionError
from costlens.keys import charged, used
from costlens.logging import setup_logging
from costlens.metrics import MetricsRecorder
from costlens.source.base import RecordSource
from costlens.source.http import HttpSource
from costlens.source.jsonl import JsonlSource

logger = structlog.get_logger()

EXIT_FAILED = 1
EXIT_INVALID = 2


def open_source(location: "str", token: "str" = "") -> "RecordSource":
    """
    picks the source implementation from the location: http(s)
    URLs are paged over HTTP, anything else is a JSONL file.
    """
    if location.startswith(("http://", "https://")):
        return HttpSource(location, token=token)
    return JsonlSource(location)


def record_filter(invocation: "Invocation") -> "Where | None":
    """
    combines the --aggregate.* record filters into one predicate.
    """
    checks: "list[Where]" = []
    if invocation.charged_only:
        checks.append(charged)
    if invocation.used_only:
        checks.append(used)
    if invocation.min_cost is not None:
        min_cost = invocation.min_cost
        checks.append(lambda r: r.cost > min_cost)
    if not checks:
        return None
    return lambda r: all(check(r) for check in checks)


def run_analysis(
    analyzer: "Analyzer",
    invocation: "Invocation",
    source: "RecordSource",
) -> "Any":
    analysis = invocation.analysis
    if analysis == "aggregate":
        min_count = invocation.min_group_count
        return analyzer.group_aggregate(
            source,
            where=record_filter(invocation),
            having=(lambda b: b.count > min_count) if min_count is not None else None,
            null_key=invocation.null_key,
        )
    if analysis == "outliers":
        return analyzer.detect_outliers(source)
    if analysis == "rolling":
        return analyzer.rolling_average(source)
    if analysis == "cooccurrence":
        return analyzer.co_occurrence(source, limit=invocation.co_occurrence_limit)
    if analysis == "buckets":
        return analyzer.bucketize(source)
    if analysis == "summary":
        return analyzer.summary(source)
    if analysis == "efficiency":
        return analyzer.efficiency(source)
    if analysis == "trend":
        return analyzer.monthly_trend(source)
    if analysis == "recommendations":
        return analyzer.recommendations(source)
    raise InvalidConfiguration(f"unknown analysis {analysis!r}")


def result_rows(result: "Any") -> "list[Any]":
    if isinstance(result, AggregationResult):
        return result.rows()
    rows = getattr(result, "rows", None)
    if rows is not None:
        return list(rows)
    return [result]


def write_rows(rows: "list[Any]", out: "Any" = None) -> "None":
    """
    prints one JSON object per row. Dates and other non-JSON
    values are rendered with str().
    """
    out = out or sys.stdout
    for row in rows:
        payload = dataclasses.asdict(row) if dataclasses.is_dataclass(row) else row
        out.write(json.dumps(payload, default=str) + "\n")


def main(argv: "list[str] | None" = None) -> "int":
    invocation = parse_args(argv)
    setup_logging(invocation.config.log_level, invocation.log_format)

    registry = CollectorRegistry()
    try:
        analyzer = Analyzer(invocation.config, MetricsRecorder(registry))
    except InvalidConfiguration as exc:
        logger.error("invalid_configuration", error=str(exc))
        return EXIT_INVALID

    # for SIGINT and SIGTERM, stop the scan at the next record
    previous_handlers = {
        sig: signal.signal(sig, lambda *_: analyzer.cancel())
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    source = open_source(invocation.source, invocation.source_token)
    try:
        result = run_analysis(analyzer, invocation, source)
    except InvalidConfiguration as exc:
        logger.error("invalid_configuration", error=str(exc))
        return EXIT_INVALID
    except (AnalysisCancelled, SourceExhaustionError):
        return EXIT_FAILED
    finally:
        if isinstance(source, HttpSource):
            source.close()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)
        if invocation.metrics_textfile:
            write_to_textfile(invocation.metrics_textfile, registry)
            logger.debug("metrics_written", path=invocation.metrics_textfile)

    write_rows(result_rows(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
