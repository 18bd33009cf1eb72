"""
Key extractors: pure functions mapping a BillingRecord to a grouping
dimension or to the numeric value being aggregated.

Every extractor returns None when the nested group or field it needs
is absent. None is the "undefined" signal the aggregation engine uses
to exclude a record; it is never turned into a default key unless the
caller opts into a null bucket with key_of(..., null_key=UNKNOWN).
"""

from datetime import date
from typing import Callable, Hashable

from costlens.errors import UnknownDimension
from costlens.models import BillingRecord, GroupKey

Dimension = Callable[[BillingRecord], "Hashable | None"]
KeyFn = Callable[[BillingRecord], "GroupKey | None"]
ValueFn = Callable[[BillingRecord], "float | None"]

UNKNOWN = "unknown"


def service(record: "BillingRecord") -> "str | None":
    return record.service.description if record.service else None


def project_id(record: "BillingRecord") -> "str | None":
    return record.project.id if record.project else None


def project_name(record: "BillingRecord") -> "str | None":
    return record.project.name if record.project else None


def sku(record: "BillingRecord") -> "str | None":
    return record.sku.description if record.sku else None


def usage_unit(record: "BillingRecord") -> "str | None":
    return record.usage.unit if record.usage else None


def country(record: "BillingRecord") -> "str | None":
    return record.location.country if record.location else None


def currency(record: "BillingRecord") -> "str | None":
    return record.currency or None


def billing_account(record: "BillingRecord") -> "str | None":
    return record.billing_account_id or None


def day(record: "BillingRecord") -> "date | None":
    """
    calendar day of usage_start_time.
    """
    if record.usage_start_time is None:
        return None
    return record.usage_start_time.date()


def year(record: "BillingRecord") -> "int | None":
    if record.usage_start_time is None:
        return None
    return record.usage_start_time.year


def month(record: "BillingRecord") -> "int | None":
    if record.usage_start_time is None:
        return None
    return record.usage_start_time.month


def cost(record: "BillingRecord") -> "float":
    return record.cost


def usage_amount(record: "BillingRecord") -> "float | None":
    return record.usage.amount if record.usage else None


def charged(record: "BillingRecord") -> "bool":
    """
    where-predicate keeping only records with an actual charge.
    """
    return record.cost > 0


def used(record: "BillingRecord") -> "bool":
    return record.usage is not None and record.usage.amount > 0


DIMENSIONS: "dict[str, Dimension]" = {
    "service": service,
    "project": project_id,
    "project_id": project_id,
    "project_name": project_name,
    "sku": sku,
    "usage_unit": usage_unit,
    "country": country,
    "currency": currency,
    "billing_account": billing_account,
    "day": day,
    "year": year,
    "month": month,
}

VALUES: "dict[str, ValueFn]" = {
    "cost": cost,
    "usage_amount": usage_amount,
}


def key_of(*dimensions: "Dimension", null_key: "Hashable | None" = None) -> "KeyFn":
    """
    composes dimension extractors into a GroupKey extractor. The
    composite is undefined as soon as one component is, unless
    null_key is given, in which case missing components are replaced
    by it.
    """
    if not dimensions:
        raise ValueError("key_of needs at least one dimension")

    def _key(record: "BillingRecord") -> "GroupKey | None":
        parts = []
        for dimension in dimensions:
            value = dimension(record)
            if value is None:
                if null_key is None:
                    return None
                value = null_key
            parts.append(value)
        return tuple(parts)

    return _key


def extend_key(key_fn: "KeyFn", *dimensions: "Dimension") -> "KeyFn":
    """
    appends dimensions to the key produced by key_fn. The result is
    undefined when either part is.
    """
    tail = key_of(*dimensions)

    def _key(record: "BillingRecord") -> "GroupKey | None":
        head = key_fn(record)
        if head is None:
            return None
        rest = tail(record)
        if rest is None:
            return None
        return head + rest

    return _key


def resolve_dimension(name: "str") -> "Dimension":
    try:
        return DIMENSIONS[name]
    except KeyError:
        raise UnknownDimension(
            f"unknown dimension {name!r}, expected one of {sorted(DIMENSIONS)}"
        ) from None


def resolve_value(name: "str") -> "ValueFn":
    try:
        return VALUES[name]
    except KeyError:
        raise UnknownDimension(
            f"unknown value field {name!r}, expected one of {sorted(VALUES)}"
        ) from None


def resolve_key(
    names: "str | list[str] | tuple[str, ...]",
    null_key: "Hashable | None" = None,
) -> "KeyFn":
    """
    resolves dimension names (a list or a comma-separated string)
    into a composite key extractor.
    """
    if isinstance(names, str):
        names = [part.strip() for part in names.split(",") if part.strip()]
    if not names:
        raise UnknownDimension("at least one group key dimension is required")
    return key_of(*(resolve_dimension(n) for n in names), null_key=null_key)
