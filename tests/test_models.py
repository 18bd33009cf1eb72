import math
from datetime import datetime, timezone

import pytest

from costlens.errors import InvalidRecord
from costlens.models import BillingRecord, ServiceRef


class TestBillingRecord:
    def test_rejects_negative_cost(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord(billing_account_id="a", cost=-0.01)

    def test_accepts_zero_cost(self) -> "None":
        assert BillingRecord(billing_account_id="a", cost=0.0).cost == 0.0

    def test_rejects_non_positive_conversion_rate(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord(billing_account_id="a", cost=1.0, currency_conversion_rate=0)

    def test_rejects_inverted_usage_interval(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord(
                billing_account_id="a",
                cost=1.0,
                usage_start_time=datetime(2024, 1, 2, tzinfo=timezone.utc),
                usage_end_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )

    def test_is_immutable(self) -> "None":
        record = BillingRecord(billing_account_id="a", cost=1.0)
        with pytest.raises(AttributeError):
            record.service = ServiceRef("x")  # type: ignore[misc]


class TestFromExport:
    def test_full_row(self) -> "None":
        record = BillingRecord.from_export(
            {
                "billing_account_id": "01A2-B3C4",
                "project": {"id": "my-proj", "name": "My Project"},
                "service": {"description": "BigQuery"},
                "sku": {"description": "Analysis"},
                "location": {"country": "US"},
                "cost": 1.25,
                "currency": "EUR",
                "currency_conversion_rate": 0.92,
                "usage": {
                    "amount": 3.5,
                    "unit": "bytes",
                    "pricing_unit": "tebibyte",
                },
                "usage_start_time": "2024-03-01 10:00:00 UTC",
                "usage_end_time": "2024-03-01T11:00:00+00:00",
                "record_id": "row-1",
            }
        )
        assert record.project.id == "my-proj"
        assert record.project.name == "My Project"
        assert record.service.description == "BigQuery"
        assert record.sku.description == "Analysis"
        assert record.location.country == "US"
        assert record.cost == 1.25
        assert record.currency == "EUR"
        assert record.currency_conversion_rate == 0.92
        assert record.usage.amount == 3.5
        assert record.usage.pricing_unit == "tebibyte"
        assert record.usage_start_time == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert record.usage_end_time == datetime(2024, 3, 1, 11, tzinfo=timezone.utc)
        assert record.record_id == "row-1"

    def test_absent_and_null_groups(self) -> "None":
        record = BillingRecord.from_export(
            {
                "billing_account_id": "x",
                "cost": 0,
                "project": None,
                "service": {"description": None},
                "location": {},
            }
        )
        assert record.project is None
        assert record.service is None
        assert record.location is None
        assert record.sku is None
        assert record.usage is None
        assert record.usage_start_time is None

    def test_invalid_row_raises(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord.from_export({"billing_account_id": "x", "cost": -5})

    @pytest.mark.parametrize("cost", [None, "missing"])
    def test_missing_cost_is_invalid(self, cost) -> "None":
        row = {"billing_account_id": "x", "service": {"description": "BigQuery"}}
        if cost != "missing":
            row["cost"] = cost
        with pytest.raises(InvalidRecord, match="no cost"):
            BillingRecord.from_export(row)

    @pytest.mark.parametrize("cost", [math.nan, math.inf])
    def test_non_finite_cost_is_invalid(self, cost) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord.from_export({"billing_account_id": "x", "cost": cost})

    def test_non_finite_usage_is_invalid(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord.from_export(
                {"billing_account_id": "x", "cost": 1.0, "usage": {"amount": math.nan}}
            )

    def test_non_finite_conversion_rate_is_invalid(self) -> "None":
        with pytest.raises(InvalidRecord):
            BillingRecord(billing_account_id="a", cost=1.0, currency_conversion_rate=math.inf)
