import pytest

from costlens.errors import InvalidConfiguration
from costlens.keys import key_of, project_id
from costlens.outliers import detect_outliers, is_outlier, zscore
from costlens.source.base import ListSource


class TestZScore:
    def test_boundary_is_not_an_outlier(self) -> "None":
        # mean 5, population stddev 2 for [2, 4, 4, 4, 5, 5, 7, 9]
        z = zscore(9.0, 5.0, 2.0)
        assert z == 2.0
        assert is_outlier(z, 2.0) is False

    def test_just_above_boundary_is_an_outlier(self) -> "None":
        z = zscore(9.01, 5.0, 2.0)
        assert z == pytest.approx(2.005)
        assert is_outlier(z, 2.0) is True

    def test_negative_deviation_counts(self) -> "None":
        assert is_outlier(zscore(0.5, 5.0, 2.0)) is True

    def test_undefined_stddev(self) -> "None":
        assert zscore(3.0, 3.0, None) is None
        assert zscore(3.0, 3.0, 0.0) is None
        assert is_outlier(None) is False


class TestDetectOutliers:
    def test_textbook_series_with_population_stddev(self, make_record) -> "None":
        costs = [2, 4, 4, 4, 5, 5, 7, 9]
        source = ListSource(make_record(float(c)) for c in costs)

        # 9 sits two deviations out, everything else within 1.5
        below = detect_outliers(source, threshold=1.9, ddof=0)
        assert [r.cost for r in below.rows] == [9.0]
        assert below.rows[0].mean == 5.0
        assert below.rows[0].z_score == pytest.approx(2.0)

    def test_two_deviations_is_not_an_outlier(self, make_record) -> "None":
        at_threshold = ListSource(make_record(float(c)) for c in [2, 4, 4, 4, 5, 5, 7, 9])
        assert detect_outliers(at_threshold, threshold=2.0, ddof=0).rows == []

        past_threshold = ListSource(
            make_record(c) for c in [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.01]
        )
        rows = detect_outliers(past_threshold, threshold=2.0, ddof=0).rows
        assert [r.cost for r in rows] == [9.01]
        assert rows[0].z_score > 2.0

    def test_flags_spike_with_sample_stddev(self, make_record) -> "None":
        costs = [10.0] * 9 + [11.0] * 9 + [500.0]
        source = ListSource(
            make_record(c, record_id=f"r{i}") for i, c in enumerate(costs)
        )
        result = detect_outliers(source)
        assert len(result.rows) == 1
        row = result.rows[0]
        assert row.record_ref == "r18"
        assert row.group == ("Compute Engine",)
        assert row.cost == 500.0
        assert row.z_score > 2.0

    def test_record_ref_falls_back_to_position(self, make_record) -> "None":
        costs = [1.0] * 10 + [100.0]
        source = ListSource(make_record(c) for c in costs)
        result = detect_outliers(source)
        assert result.rows[0].record_ref == 10

    def test_single_record_group_is_excluded(self, make_record) -> "None":
        source = ListSource(
            [
                make_record(1000.0, service="Lonely"),
                make_record(1.0, service="Busy"),
                make_record(1.0, service="Busy"),
            ]
        )
        result = detect_outliers(source, threshold=0.0)
        assert result.rows == []
        # one undefined stddev (single record), two zero stddev
        assert result.undefined == 3

    def test_zero_cost_records_are_ignored(self, make_record) -> "None":
        records = [make_record(0.0) for _ in range(20)] + [
            make_record(5.0),
            make_record(5.0),
        ]
        result = detect_outliers(ListSource(records), threshold=0.0)
        assert result.rows == []

    def test_sorted_by_abs_z_then_cost(self, make_record) -> "None":
        records = [make_record(10.0, service="A") for _ in range(20)]
        records += [make_record(100.0, service="A"), make_record(60.0, service="A")]
        records += [make_record(1.0, service="B") for _ in range(20)]
        records += [make_record(30.0, service="B")]
        result = detect_outliers(ListSource(records))
        zs = [abs(r.z_score) for r in result.rows]
        assert zs == sorted(zs, reverse=True)

    def test_ties_break_on_cost(self, make_record) -> "None":
        # B is A shifted by 10, so both spikes sit at z = 9 / sqrt(10)
        records = [make_record(2.0, service="A") for _ in range(9)]
        records += [make_record(12.0, service="A")]
        records += [make_record(12.0, service="B") for _ in range(9)]
        records += [make_record(22.0, service="B")]
        result = detect_outliers(ListSource(records))
        assert [r.cost for r in result.rows] == [22.0, 12.0]
        assert [r.group for r in result.rows] == [("B",), ("A",)]
        assert result.rows[0].z_score == result.rows[1].z_score

    def test_limit_caps_result(self, make_record) -> "None":
        records = []
        for svc in "ABCD":
            records += [make_record(1.0, service=svc) for _ in range(10)]
            records.append(make_record(50.0, service=svc))
        result = detect_outliers(ListSource(records), limit=2)
        assert len(result.rows) == 2
        assert result.matched == 4

    def test_missing_group_is_counted(self, make_record) -> "None":
        records = [make_record(1.0) for _ in range(5)] + [make_record(3.0, project=None)]
        result = detect_outliers(ListSource(records), group_fn=key_of(project_id))
        assert result.excluded == 1

    def test_reads_the_source_twice(self, make_record) -> "None":
        class _Counting(ListSource):
            calls = 0

            def records(self):
                type(self).calls += 1
                return super().records()

        source = _Counting([make_record(1.0), make_record(2.0)])
        detect_outliers(source)
        assert _Counting.calls == 2

    def test_rejects_negative_threshold(self, make_record) -> "None":
        with pytest.raises(InvalidConfiguration):
            detect_outliers(ListSource([]), threshold=-1.0)

    def test_rejects_non_positive_limit(self) -> "None":
        with pytest.raises(InvalidConfiguration):
            detect_outliers(ListSource([]), limit=0)
