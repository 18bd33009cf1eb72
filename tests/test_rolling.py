from datetime import date

import pytest

from costlens.errors import InvalidConfiguration
from costlens.keys import key_of, project_id, sku
from costlens.rolling import (
    TrailingWindow,
    moving_averages,
    rolling_average,
    validate_windows,
)


class TestTrailingWindow:
    def test_partial_window_at_series_start(self) -> "None":
        assert moving_averages([10, 20, 30], 7) == [10, 15, 20]

    def test_full_window_slides(self) -> "None":
        assert moving_averages([1, 2, 3, 4, 5], 2) == [1, 1.5, 2.5, 3.5, 4.5]

    def test_window_of_one_is_identity(self) -> "None":
        assert moving_averages([4.0, 8.0, 1.0], 1) == [4.0, 8.0, 1.0]

    def test_rejects_empty_window(self) -> "None":
        with pytest.raises(InvalidConfiguration):
            TrailingWindow(0)


class TestValidateWindows:
    def test_deduplicates_in_order(self) -> "None":
        assert validate_windows([30, 7, 30]) == (30, 7)

    @pytest.mark.parametrize("windows", [[], [0], [-3], [2.5], [True]])
    def test_rejects_bad_sizes(self, windows) -> "None":
        with pytest.raises(InvalidConfiguration):
            validate_windows(windows)


class TestRollingAverage:
    def test_sparse_series_uses_present_rows(self, make_record) -> "None":
        # days 0, 5 and 40: far apart, still one row each
        records = [
            make_record(10.0, day=0),
            make_record(20.0, day=5),
            make_record(30.0, day=40),
        ]
        result = rolling_average(records, windows=[7])
        assert [r.day for r in result.rows] == [
            date(2024, 1, 1),
            date(2024, 1, 6),
            date(2024, 2, 10),
        ]
        assert [r.averages[7] for r in result.rows] == [10.0, 15.0, 20.0]

    def test_daily_sums_before_averaging(self, make_record) -> "None":
        records = [
            make_record(1.0, day=0),
            make_record(2.0, day=0),
            make_record(6.0, day=1),
        ]
        result = rolling_average(records, windows=[2])
        assert [r.daily_cost for r in result.rows] == [3.0, 6.0]
        assert [r.averages[2] for r in result.rows] == [3.0, 4.5]

    def test_default_windows(self, make_record) -> "None":
        records = [make_record(float(d), day=d) for d in range(1, 11)]
        result = rolling_average(records)
        assert result.windows == (7, 30)
        last = result.rows[-1]
        assert last.averages[7] == pytest.approx(sum(range(4, 11)) / 7)
        assert last.averages[30] == pytest.approx(5.5)

    def test_series_are_independent(self, make_record) -> "None":
        records = [
            make_record(100.0, service="A", day=0),
            make_record(1.0, service="B", day=1),
            make_record(300.0, service="A", day=2),
        ]
        result = rolling_average(records, windows=[7])
        by_group = {}
        for row in result.rows:
            by_group.setdefault(row.group, []).append(row.averages[7])
        assert by_group[("A",)] == [100.0, 200.0]
        assert by_group[("B",)] == [1.0]

    def test_rows_ordered_by_group_then_day(self, make_record) -> "None":
        records = [
            make_record(1.0, service="B", day=3),
            make_record(1.0, service="A", day=2),
            make_record(1.0, service="B", day=1),
        ]
        rows = rolling_average(records, windows=[7]).rows
        assert [(r.group[0], r.day.day) for r in rows] == [
            ("A", 3),
            ("B", 2),
            ("B", 4),
        ]

    def test_zero_cost_and_undated_records(self, make_record) -> "None":
        records = [
            make_record(0.0, day=0),
            make_record(5.0, day=None),
            make_record(4.0, day=1),
        ]
        result = rolling_average(records, windows=[7])
        assert len(result.rows) == 1
        assert result.excluded == 1

    def test_custom_group(self, make_record) -> "None":
        records = [make_record(2.0, project="p1"), make_record(4.0, project="p2")]
        result = rolling_average(records, group_fn=key_of(project_id), windows=[3])
        assert {r.group for r in result.rows} == {("p1",), ("p2",)}

    def test_composite_group(self, make_record) -> "None":
        records = [
            make_record(2.0, sku="cpu", day=0),
            make_record(4.0, sku="cpu", day=1),
            make_record(8.0, sku="ram", day=0),
        ]
        result = rolling_average(records, group_fn=key_of(project_id, sku), windows=[2])
        assert [(r.group, r.averages[2]) for r in result.rows] == [
            (("proj-1", "cpu"), 2.0),
            (("proj-1", "cpu"), 3.0),
            (("proj-1", "ram"), 8.0),
        ]
