import json

import pytest

from costlens.aggregate import aggregate
from costlens.errors import SourceExhaustionError
from costlens.keys import key_of, service
from costlens.source.jsonl import JsonlSource


def _row(cost, service_name="BigQuery") -> "dict":
    return {
        "billing_account_id": "0000-AAAA",
        "service": {"description": service_name},
        "cost": cost,
    }


class TestJsonlSource:
    def test_reads_rows(self, tmp_path) -> "None":
        path = tmp_path / "export.jsonl"
        path.write_text(
            json.dumps(_row(1.5)) + "\n\n" + json.dumps(_row(2.0, "Cloud Storage")) + "\n",
            encoding="utf-8",
        )
        records = list(JsonlSource(path).records())
        assert [r.cost for r in records] == [1.5, 2.0]
        assert records[1].service.description == "Cloud Storage"

    def test_each_call_restarts(self, tmp_path) -> "None":
        path = tmp_path / "export.jsonl"
        path.write_text(json.dumps(_row(1.0)) + "\n", encoding="utf-8")
        source = JsonlSource(path)
        assert len(list(source.records())) == 1
        assert len(list(source.records())) == 1

    def test_skips_invalid_records(self, tmp_path) -> "None":
        path = tmp_path / "export.jsonl"
        path.write_text(
            json.dumps(_row(-3.0)) + "\n" + json.dumps(_row(1.0)) + "\n",
            encoding="utf-8",
        )
        source = JsonlSource(path)
        assert [r.cost for r in source.records()] == [1.0]
        assert source.skipped == 1

    def test_skips_non_finite_and_missing_costs(self, tmp_path) -> "None":
        path = tmp_path / "export.jsonl"
        no_cost = _row(0.0)
        del no_cost["cost"]
        path.write_text(
            "\n".join(
                [
                    json.dumps(_row(float("nan"))),
                    json.dumps(no_cost),
                    json.dumps(_row(2.0)),
                ]
            )
            + "\n",
            encoding="utf-8",
        )
        source = JsonlSource(path)
        assert [r.cost for r in source.records()] == [2.0]
        assert source.skipped == 2

    def test_damaged_line_aborts(self, tmp_path) -> "None":
        path = tmp_path / "export.jsonl"
        path.write_text(json.dumps(_row(1.0)) + "\n{not json\n", encoding="utf-8")
        with pytest.raises(SourceExhaustionError, match=":2:"):
            aggregate(JsonlSource(path).records(), key_of(service))

    def test_missing_file_is_a_source_failure(self, tmp_path) -> "None":
        source = JsonlSource(tmp_path / "absent.jsonl")
        with pytest.raises(SourceExhaustionError):
            aggregate(source.records(), key_of(service))
