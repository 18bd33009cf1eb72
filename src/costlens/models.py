import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Hashable

from costlens.errors import InvalidRecord

GroupKey = tuple[Hashable, ...]


@dataclass(frozen=True, slots=True)
class ProjectRef:
    id: "str"
    name: "str | None" = None


@dataclass(frozen=True, slots=True)
class ServiceRef:
    description: "str"


@dataclass(frozen=True, slots=True)
class SkuRef:
    description: "str"


@dataclass(frozen=True, slots=True)
class LocationRef:
    country: "str"


@dataclass(frozen=True, slots=True)
class UsageInfo:
    amount: "float"
    unit: "str | None" = None
    pricing_unit: "str | None" = None

    def __post_init__(self) -> "None":
        if not math.isfinite(self.amount):
            raise InvalidRecord(f"usage amount must be finite, got {self.amount}")


def _parse_timestamp(value: "Any") -> "datetime | None":
    """
    accepts datetimes and the ISO-8601 forms found in billing
    exports, including the "2024-01-31 10:00:00 UTC" spelling.
    """
    if value is None or isinstance(value, datetime):
        return value

    text = str(value).strip()
    if text.endswith(" UTC"):
        text = text[: -len(" UTC")] + "+00:00"
    return datetime.fromisoformat(text)


def _nested(row: "dict[str, Any]", group: "str", field_name: "str") -> "Any":
    value = row.get(group)
    if not isinstance(value, dict):
        return None
    return value.get(field_name)


@dataclass(frozen=True, slots=True)
class BillingRecord:
    """
    BillingRecord is one usage or charge event. Every nested group
    may be absent; grouping code treats an absent group as a
    missing dimension rather than a default value.
    """

    billing_account_id: "str"
    cost: "float"
    currency: "str" = "USD"
    currency_conversion_rate: "float" = 1.0
    project: "ProjectRef | None" = None
    service: "ServiceRef | None" = None
    sku: "SkuRef | None" = None
    location: "LocationRef | None" = None
    usage: "UsageInfo | None" = None
    usage_start_time: "datetime | None" = None
    usage_end_time: "datetime | None" = None
    # identity reported back by the outlier detector, optional
    record_id: "str | None" = None

    def __post_init__(self) -> "None":
        if not math.isfinite(self.cost) or self.cost < 0:
            raise InvalidRecord(f"cost must be finite and non-negative, got {self.cost}")
        if (
            not math.isfinite(self.currency_conversion_rate)
            or self.currency_conversion_rate <= 0
        ):
            raise InvalidRecord(
                "currency_conversion_rate must be positive, "
                f"got {self.currency_conversion_rate}"
            )
        if (
            self.usage_start_time is not None
            and self.usage_end_time is not None
            and self.usage_start_time > self.usage_end_time
        ):
            raise InvalidRecord("usage_start_time is after usage_end_time")

    @classmethod
    def from_export(cls, row: "dict[str, Any]") -> "BillingRecord":
        """
        builds a record from a billing-export shaped mapping, where
        project, service, sku, location and usage are nested objects.
        A nested object whose identifying field is null counts as
        absent. A missing or null cost makes the row invalid.
        """
        if row.get("cost") is None:
            raise InvalidRecord("row has no cost")

        project_id = _nested(row, "project", "id")
        service = _nested(row, "service", "description")
        sku = _nested(row, "sku", "description")
        country = _nested(row, "location", "country")
        usage_amount = _nested(row, "usage", "amount")

        return cls(
            billing_account_id=str(row.get("billing_account_id") or ""),
            cost=float(row["cost"]),
            currency=row.get("currency") or "USD",
            currency_conversion_rate=float(
                row.get("currency_conversion_rate") or 1.0
            ),
            project=(
                ProjectRef(id=str(project_id), name=_nested(row, "project", "name"))
                if project_id is not None
                else None
            ),
            service=ServiceRef(description=service) if service is not None else None,
            sku=SkuRef(description=sku) if sku is not None else None,
            location=LocationRef(country=country) if country is not None else None,
            usage=(
                UsageInfo(
                    amount=float(usage_amount),
                    unit=_nested(row, "usage", "unit"),
                    pricing_unit=_nested(row, "usage", "pricing_unit"),
                )
                if usage_amount is not None
                else None
            ),
            usage_start_time=_parse_timestamp(row.get("usage_start_time")),
            usage_end_time=_parse_timestamp(row.get("usage_end_time")),
            record_id=row.get("record_id"),
        )


@dataclass(frozen=True, slots=True)
class GroupRow:
    key: "GroupKey"
    count: "int"
    total: "float"
    minimum: "float"
    maximum: "float"
    mean: "float"
    # None when the group holds a single record
    stddev: "float | None"


@dataclass(frozen=True, slots=True)
class OutlierRow:
    # record_id when the record carries one, scan position otherwise
    record_ref: "str | int"
    group: "GroupKey"
    cost: "float"
    mean: "float"
    z_score: "float"


@dataclass(frozen=True, slots=True)
class RollingRow:
    group: "GroupKey"
    day: "date"
    daily_cost: "float"
    # window size -> trailing average
    averages: "dict[int, float]" = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PairRow:
    entity_a: "Hashable"
    entity_b: "Hashable"
    count: "int"
    avg_combined_cost: "float"


@dataclass(frozen=True, slots=True)
class BucketRow:
    label: "str"
    count: "int"
    total: "float"


@dataclass(frozen=True, slots=True)
class CostSummary:
    total_records: "int"
    charged_records: "int"
    min_cost: "float | None"
    max_cost: "float | None"
    avg_cost: "float | None"
    total_cost: "float"


@dataclass(frozen=True, slots=True)
class EfficiencyRow:
    key: "GroupKey"
    records: "int"
    total_cost: "float"
    total_usage: "float"
    cost_per_unit: "float | None"


@dataclass(frozen=True, slots=True)
class TrendRow:
    year: "int"
    month: "int"
    group: "GroupKey"
    records: "int"
    total_cost: "float"
    avg_cost: "float"


@dataclass(frozen=True, slots=True)
class RecommendationRow:
    group: "GroupKey"
    total_records: "int"
    zero_cost_records: "int"
    zero_cost_percentage: "float | None"
    total_cost: "float"
    max_cost: "float"
    avg_cost: "float"
    recommendation: "str"
