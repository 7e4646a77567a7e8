#!/usr/bin/env python3
"""
Tests for metric derivation.
"""

import math

import numpy as np
import pytest

from hs_metrics.core.accumulator import CoverageAccumulator, MetricKey, key_extractors_for
from hs_metrics.core.derive import (
    DropoutBucket,
    MetricsDeriver,
    PER_BASE_COLUMNS,
    PER_TARGET_COLUMNS,
    compute_dropout,
    estimate_library_size,
    hs_penalty,
)
from hs_metrics.core.gc_content import GCContentTable
from hs_metrics.models import AccumulationLevel, ReadGroup

from conftest import aligned_read


THRESHOLDS = (1, 2, 10, 20, 30, 40, 50, 51, 100)


@pytest.fixture
def fifty_x(simple_index):
    """50 reads covering chr1:1000-1099 end to end."""
    accumulator = CoverageAccumulator(simple_index)
    accumulator.accept_all(aligned_read(1000, name=f"r{i}") for i in range(50))
    return accumulator


def test_fifty_x_scenario(simple_index, fifty_x):
    record = MetricsDeriver(simple_index, coverage_thresholds=THRESHOLDS).derive_key(fifty_x)

    assert record.mean_target_coverage == 50.0
    assert record.median_target_coverage == 50.0
    assert record.max_target_coverage == 50
    assert record.pct_target_bases[50] == 1.0
    assert record.pct_target_bases[51] == 0.0
    assert record.zero_cvg_targets_pct == 0.0
    assert record.fold_80_base_penalty == 1.0
    assert record.on_bait_bases == 5000
    assert record.on_target_bases == 5000
    assert record.pct_selected_bases == 1.0
    assert record.pct_off_bait == 0.0
    assert record.bait_design_efficiency == 1.0
    assert record.mean_bait_coverage == 50.0
    assert record.bait_set == "baits"


def test_missing_reference_gives_no_dropout(simple_index, fifty_x):
    record = MetricsDeriver(simple_index).derive_key(fifty_x)

    assert record.at_dropout is None
    assert record.gc_dropout is None
    assert not record.dropout_available


def test_unavailable_gc_table_gives_no_dropout(simple_index, fifty_x):
    gc_table = GCContentTable.unavailable(simple_index.targets.intervals)

    record = MetricsDeriver(simple_index, gc_table=gc_table).derive_key(fifty_x)

    assert record.at_dropout is None


def test_derivation_is_idempotent(simple_index, fifty_x):
    deriver = MetricsDeriver(simple_index, genome_size=1_000_000)

    assert deriver.derive(fifty_x) == deriver.derive(fifty_x)
    assert fifty_x.counters().total_reads == 50


def test_fold_enrichment(simple_index, fifty_x):
    record = MetricsDeriver(simple_index, genome_size=1_000_000).derive_key(fifty_x)

    assert record.genome_size == 1_000_000
    assert record.fold_enrichment == pytest.approx(10000.0)


def test_selected_bases_and_enrichment_over_pf_bases(simple_index):
    accumulator = CoverageAccumulator(simple_index)
    accumulator.accept(aligned_read(1000, name="kept"))
    accumulator.accept(aligned_read(1000, name="dup", is_duplicate=True))

    record = MetricsDeriver(simple_index, genome_size=1_000_000).derive_key(accumulator)

    assert record.pf_bases == 200
    assert record.on_target_bases == 100
    assert record.pct_selected_bases == 0.5
    assert record.fold_enrichment == pytest.approx((100 / 100) / (200 / 1_000_000))


def test_empty_accumulator(simple_index):
    record = MetricsDeriver(simple_index).derive_key(CoverageAccumulator(simple_index))

    assert record.total_reads == 0
    assert record.mean_target_coverage == 0.0
    assert record.fold_80_base_penalty is None
    assert record.zero_cvg_targets_pct == 1.0
    assert record.hs_library_size is None
    assert all(value is None for value in record.hs_penalty.values())


class TestDropout:
    """AT/GC dropout reduction."""

    def test_at_shortfall(self):
        buckets = [
            DropoutBucket(bucket=20, normalized_coverage=0.5, base_count=100),
            DropoutBucket(bucket=80, normalized_coverage=1.5, base_count=100),
        ]

        at_dropout, gc_dropout = compute_dropout(buckets, 101)

        assert at_dropout == pytest.approx(25.0)
        assert gc_dropout == pytest.approx(0.0)

    def test_balanced_coverage(self):
        buckets = [
            DropoutBucket(bucket=30, normalized_coverage=1.0, base_count=100),
            DropoutBucket(bucket=70, normalized_coverage=1.0, base_count=300),
        ]

        assert compute_dropout(buckets, 101) == (pytest.approx(0.0), pytest.approx(0.0))

    def test_midpoint_bucket_counts_for_both(self):
        buckets = [
            DropoutBucket(bucket=50, normalized_coverage=0.0, base_count=100),
            DropoutBucket(bucket=10, normalized_coverage=2.0, base_count=100),
        ]

        at_dropout, gc_dropout = compute_dropout(buckets, 101)

        assert gc_dropout == pytest.approx(50.0)
        assert at_dropout == pytest.approx(50.0)

    def test_no_data(self):
        assert compute_dropout([], 101) == (None, None)
        assert compute_dropout([DropoutBucket(10, 0.0, 100)], 101) == (None, None)

    def test_dropout_from_accumulated_coverage(self, two_target_index):
        accumulator = CoverageAccumulator(two_target_index)
        accumulator.accept_all([aligned_read(1000) for _ in range(10)])
        accumulator.accept_all([aligned_read(2000) for _ in range(30)])
        gc_table = GCContentTable([0.2, 0.8])

        record = MetricsDeriver(two_target_index, gc_table=gc_table).derive_key(accumulator)

        assert record.at_dropout == pytest.approx(25.0)
        assert record.gc_dropout == pytest.approx(0.0)

    def test_no_coverage_with_reference(self, two_target_index):
        gc_table = GCContentTable([0.2, 0.8])

        record = MetricsDeriver(two_target_index, gc_table=gc_table).derive_key(
            CoverageAccumulator(two_target_index)
        )

        assert record.at_dropout is None


class TestLibraryComplexity:
    """Library size and HS penalty estimation."""

    def test_no_duplicates(self):
        assert estimate_library_size(100, 100) is None

    def test_library_size_solves_duplication_curve(self):
        size = estimate_library_size(1000, 900)

        assert size > 900
        assert 900 / size - 1 + math.exp(-1000 / size) == pytest.approx(0.0, abs=1e-3)

    def test_penalty_not_estimable_without_library_size(self):
        assert hs_penalty(20, None, 1000, 900, 30.0, 1.2, 0.5) is None

    def test_penalty_positive(self):
        size = estimate_library_size(1000, 900)

        penalty = hs_penalty(20, size, 1000, 900, 30.0, 1.2, 0.5)

        assert penalty is not None
        assert penalty > 0


def test_pair_counters_feed_library_size(simple_index):
    accumulator = CoverageAccumulator(simple_index)
    for i in range(100):
        accumulator.accept(aligned_read(1000 + i % 50, name=f"p{i}", is_paired=True,
                                        is_first_of_pair=True, is_duplicate=i % 10 == 0))

    record = MetricsDeriver(simple_index).derive_key(accumulator)

    assert record.pf_selected_pairs == 100
    assert record.pf_selected_unique_pairs == 90
    assert record.hs_library_size is not None
    assert record.hs_library_size > 90


def test_per_target_table(two_target_index):
    accumulator = CoverageAccumulator(two_target_index)
    accumulator.accept_all([aligned_read(1000), aligned_read(1000), aligned_read(1050)])
    gc_table = GCContentTable([0.4, None])

    table = MetricsDeriver(two_target_index, gc_table=gc_table).per_target_table(accumulator)

    assert list(table.columns) == PER_TARGET_COLUMNS
    assert len(table) == 2
    first, second = table.iloc[0], table.iloc[1]
    assert first["mean_coverage"] == pytest.approx(2.5)
    assert first["min_coverage"] == 2
    assert first["max_coverage"] == 3
    assert first["read_count"] == 3
    assert first["pct_gc"] == pytest.approx(0.4)
    assert second["mean_coverage"] == 0.0
    assert second["pct_0x"] == 1.0
    assert table["pct_gc"].isna().tolist() == [False, True]


def test_per_base_table(two_target_index):
    accumulator = CoverageAccumulator(two_target_index)
    accumulator.accept(aligned_read(2000, length=10))

    table = MetricsDeriver(two_target_index).per_base_table(accumulator)

    assert list(table.columns) == PER_BASE_COLUMNS
    assert len(table) == 10
    assert table["position"].tolist() == list(range(2000, 2010))
    assert set(table["target"]) == {"targets_1"}
    assert (table["coverage"] == 1).all()


def test_records_per_key(simple_index):
    extractors = key_extractors_for({AccumulationLevel.SAMPLE}, {"rg1": ReadGroup("rg1", "S1", "L1")})
    accumulator = CoverageAccumulator(simple_index, key_extractors=extractors)
    accumulator.accept(aligned_read(1000, read_group="rg1"))
    accumulator.accept(aligned_read(1000))

    records = MetricsDeriver(simple_index).derive(accumulator)

    assert [r.sample for r in records] == [None, "S1"]
    assert records[0].mean_target_coverage == 2.0
    assert records[1].mean_target_coverage == 1.0
    assert records[1].to_report_row()["SAMPLE"] == "S1"
    assert np.isclose(records[0].pct_target_bases[2], 1.0)
