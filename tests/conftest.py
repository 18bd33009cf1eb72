from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

from costlens.models import (
    BillingRecord,
    LocationRef,
    ProjectRef,
    ServiceRef,
    SkuRef,
    UsageInfo,
)

DAY_ZERO = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


def _record(
    cost: "float",
    service: "str | None" = "Compute Engine",
    project: "str | None" = "proj-1",
    day: "int | None" = 0,
    sku: "str | None" = None,
    country: "str | None" = None,
    usage: "float | None" = None,
    unit: "str | None" = None,
    record_id: "str | None" = None,
) -> "BillingRecord":
    start = DAY_ZERO + timedelta(days=day) if day is not None else None
    return BillingRecord(
        billing_account_id="0000-AAAA",
        cost=cost,
        project=ProjectRef(id=project, name=project.upper()) if project else None,
        service=ServiceRef(service) if service else None,
        sku=SkuRef(sku) if sku else None,
        location=LocationRef(country) if country else None,
        usage=UsageInfo(amount=usage, unit=unit) if usage is not None else None,
        usage_start_time=start,
        usage_end_time=start + timedelta(hours=1) if start else None,
        record_id=record_id,
    )


@pytest.fixture()
def make_record() -> "Callable[..., BillingRecord]":
    """
    builds a BillingRecord; nested groups passed as None are absent.
    """
    return _record
