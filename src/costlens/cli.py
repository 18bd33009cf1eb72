import argparse
import os
from dataclasses import dataclass

from costlens.config import Config
from costlens.errors import InvalidConfiguration

ANALYSES = [
    "aggregate",
    "outliers",
    "rolling",
    "cooccurrence",
    "buckets",
    "summary",
    "efficiency",
    "trend",
    "recommendations",
]


@dataclass
class Invocation:
    analysis: "str"
    source: "str"
    config: "Config"
    source_token: "str" = ""
    log_format: "str" = "console"
    # having-filter for the aggregate analysis: keep groups with count > N
    min_group_count: "int | None" = None
    null_key: "str | None" = None
    charged_only: "bool" = False
    used_only: "bool" = False
    min_cost: "float | None" = None
    co_occurrence_limit: "int | None" = None
    metrics_textfile: "str" = ""


def _int_list(value: "str") -> "tuple[int, ...]":
    try:
        return tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected comma-separated integers, got {value!r}"
        ) from None


def _float_list(value: "str") -> "tuple[float, ...]":
    try:
        return tuple(float(part) for part in value.split(",") if part.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected comma-separated numbers, got {value!r}"
        ) from None


def build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="costlens",
        description="Grouped cost statistics, outliers, trends and "
        "co-occurrence over cloud billing exports",
    )
    parser.add_argument("analysis", choices=ANALYSES, help="Analysis to run")
    parser.add_argument(
        "--source",
        dest="source",
        required=True,
        help="Billing export: a JSONL file path or an http(s) URL",
    )
    parser.add_argument(
        "--source.token",
        dest="source_token",
        default=os.environ.get("COSTLENS_SOURCE_TOKEN", ""),
        help="Bearer token for an HTTP source (default: $COSTLENS_SOURCE_TOKEN)",
    )
    parser.add_argument(
        "--group.by",
        dest="group_by",
        help="Group key dimensions, comma-separated (default: service)",
    )
    parser.add_argument(
        "--value.field",
        dest="value_field",
        choices=["cost", "usage_amount"],
        help="Numeric field to aggregate (default: cost)",
    )
    parser.add_argument(
        "--aggregate.min-count",
        dest="min_group_count",
        type=int,
        help="Only report groups with more than N records",
    )
    parser.add_argument(
        "--aggregate.charged-only",
        dest="charged_only",
        action="store_true",
        help="Only aggregate records with cost > 0",
    )
    parser.add_argument(
        "--aggregate.used-only",
        dest="used_only",
        action="store_true",
        help="Only aggregate records with a positive usage amount",
    )
    parser.add_argument(
        "--aggregate.min-cost",
        dest="min_cost",
        type=float,
        help="Only aggregate records costing more than this amount",
    )
    parser.add_argument(
        "--aggregate.null-key",
        dest="null_key",
        help="Group records missing a dimension under this key instead of "
        "excluding them",
    )
    parser.add_argument(
        "--outliers.threshold",
        dest="outlier_threshold",
        type=float,
        help="Absolute z-score above which a charge is an outlier (default: 2.0)",
    )
    parser.add_argument(
        "--outliers.limit",
        dest="outlier_limit",
        type=int,
        help="Maximum number of outliers to report (default: unbounded)",
    )
    parser.add_argument(
        "--rolling.windows",
        dest="rolling_windows",
        type=_int_list,
        help="Trailing window sizes in rows (default: 7,30)",
    )
    parser.add_argument(
        "--cooccurrence.pair",
        dest="pair_dimension",
        help="Dimension whose values are paired (default: service)",
    )
    parser.add_argument(
        "--cooccurrence.context",
        dest="context_dimension",
        help="Dimension pairs must share (default: project)",
    )
    parser.add_argument(
        "--cooccurrence.min-count",
        dest="min_co_occurrence",
        type=int,
        help="Only report pairs seen together more than N times (default: 5)",
    )
    parser.add_argument(
        "--cooccurrence.limit",
        dest="co_occurrence_limit",
        type=int,
        help="Maximum number of pairs to report",
    )
    parser.add_argument(
        "--buckets.boundaries",
        dest="bucket_boundaries",
        type=_float_list,
        help="Inner cost bucket boundaries (default: 1,10,100,1000)",
    )
    parser.add_argument(
        "--workers",
        dest="max_workers",
        type=int,
        help="Worker threads for partitioned aggregation",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default="",
        help="Write run metrics in Prometheus text format to this file",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log renderer (default: console)",
    )
    return parser


# flags that override the Config field of the same name when given
_CONFIG_FLAGS = [
    "group_by",
    "value_field",
    "log_level",
    "outlier_threshold",
    "outlier_limit",
    "rolling_windows",
    "pair_dimension",
    "context_dimension",
    "min_co_occurrence",
    "bucket_boundaries",
    "max_workers",
]


def parse_args(argv: "list[str] | None" = None) -> "Invocation":
    """
    parses the command line on top of the COSTLENS_* environment.
    Environment errors are reported like flag errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
    except InvalidConfiguration as exc:
        parser.error(str(exc))

    for name in _CONFIG_FLAGS:
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)

    return Invocation(
        analysis=args.analysis,
        source=args.source,
        config=config,
        source_token=args.source_token,
        log_format=args.log_format,
        min_group_count=args.min_group_count,
        null_key=args.null_key,
        charged_only=args.charged_only,
        used_only=args.used_only,
        min_cost=args.min_cost,
        co_occurrence_limit=args.co_occurrence_limit,
        metrics_textfile=args.metrics_textfile,
    )
