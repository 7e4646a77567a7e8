"""
Derivation of hybrid-selection metrics from accumulated coverage.

Everything here is a pure function of an accumulator's state: deriving twice
gives identical records and nothing is re-accumulated.
"""

import math
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..models.metrics import HsMetrics
from .accumulator import ALL_READS_KEY, CoverageAccumulator, MetricKey, ReadCounters
from .gc_content import GCContentTable
from .interval_index import IntervalIndex


DEFAULT_COVERAGE_THRESHOLDS = (1, 2, 10, 20, 30, 40, 50, 100)
DEFAULT_PENALTY_THRESHOLDS = (10, 20, 30, 40, 50, 100)

PER_TARGET_COLUMNS = [
    "contig", "start", "end", "length", "name", "pct_gc", "mean_coverage",
    "normalized_coverage", "min_normalized_coverage", "max_normalized_coverage",
    "min_coverage", "max_coverage", "pct_0x", "read_count",
]
PER_BASE_COLUMNS = ["contig", "position", "target", "coverage"]


class DropoutBucket(NamedTuple):
    """One target's contribution to the GC dropout reduction."""

    bucket: int
    normalized_coverage: float
    base_count: int


def _ratio(numerator, denominator) -> float:
    return float(numerator) / denominator if denominator else 0.0


def compute_dropout(
    buckets: Iterable[DropoutBucket],
    bucket_count: int,
) -> Tuple[Optional[float], Optional[float]]:
    """AT and GC dropout (percent) from per-target (bucket, coverage, bases) triples.

    For every GC bucket the share of target bases is compared with the share
    of coverage; the shortfall is summed over buckets at or below 50% GC for
    AT dropout and at or above 50% GC for GC dropout. Returns (None, None)
    when there are no bases or no coverage to compare.
    """
    target_bases = np.zeros(bucket_count, dtype=np.float64)
    coverage = np.zeros(bucket_count, dtype=np.float64)
    for entry in buckets:
        target_bases[entry.bucket] += entry.base_count
        coverage[entry.bucket] += entry.normalized_coverage * entry.base_count

    total_bases = target_bases.sum()
    total_coverage = coverage.sum()
    if total_bases == 0 or total_coverage == 0:
        return None, None

    deficit = (target_bases / total_bases - coverage / total_coverage) * 100.0
    shortfall = np.where(deficit > 0, deficit, 0.0)
    midpoints = np.arange(bucket_count) / (bucket_count - 1)
    at_dropout = float(shortfall[midpoints <= 0.5].sum())
    gc_dropout = float(shortfall[midpoints >= 0.5].sum())
    return at_dropout, gc_dropout


def _duplication_curve(x: float, unique_pairs: float, pairs: float) -> float:
    return unique_pairs / x - 1 + math.exp(-pairs / x)


def estimate_library_size(read_pairs: int, unique_read_pairs: int) -> Optional[int]:
    """Lander-Waterman estimate of the number of distinct molecules.

    Returns None when there are no duplicates to fit against or the counts
    are inconsistent.
    """
    duplicates = read_pairs - unique_read_pairs
    if read_pairs <= 0 or unique_read_pairs <= 0 or duplicates <= 0:
        return None

    low, high = 1.0, 100.0
    if _duplication_curve(low * unique_read_pairs, unique_read_pairs, read_pairs) < 0:
        return None
    while _duplication_curve(high * unique_read_pairs, unique_read_pairs, read_pairs) > 0:
        high *= 10.0

    for _ in range(40):
        mid = (low + high) / 2.0
        value = _duplication_curve(mid * unique_read_pairs, unique_read_pairs, read_pairs)
        if value == 0:
            break
        elif value > 0:
            low = mid
        else:
            high = mid
    return int(unique_read_pairs * (low + high) / 2.0)


def estimate_roi(library_size: float, multiplier: float, pairs: int, unique_pairs: int) -> float:
    """Fold increase in unique pairs from sequencing ``multiplier`` times more pairs."""
    return library_size * (1 - math.exp(-(multiplier * pairs) / library_size)) / unique_pairs


def hs_penalty(
    coverage_goal: int,
    library_size: Optional[int],
    pairs: int,
    unique_pairs: int,
    mean_coverage: float,
    fold_80: Optional[float],
    on_target_fraction: float,
) -> Optional[float]:
    """Sequencing multiplier needed to bring 80% of target bases to ``coverage_goal``.

    The pairs multiplier is found by step-halving search until the predicted
    unique-pair gain is within 0.1% of the gain the goal requires.
    """
    if not library_size or fold_80 is None or mean_coverage <= 0 or on_target_fraction <= 0 \
            or pairs <= 0 or unique_pairs <= 0:
        return None

    goal_multiplier = (coverage_goal / mean_coverage) * fold_80
    multiplier = goal_multiplier
    increment = 1.0
    going_up = goal_multiplier >= 1
    final_multiplier = None

    for _ in range(10000):
        unique_multiplier = estimate_roi(library_size, multiplier, pairs, unique_pairs)
        if abs(unique_multiplier - goal_multiplier) / goal_multiplier <= 0.001:
            final_multiplier = multiplier
            break
        if (going_up and unique_multiplier > goal_multiplier) or \
                (not going_up and unique_multiplier < goal_multiplier):
            increment /= 2
            going_up = not going_up
        multiplier += increment if going_up else -increment

    if final_multiplier is None:
        return None
    unique_fraction = (unique_pairs * goal_multiplier) / (pairs * final_multiplier)
    return (1 / unique_fraction) * fold_80 * (1 / on_target_fraction)


class MetricsDeriver:
    """Turn accumulated counters and depth arenas into :class:`HsMetrics` records."""

    def __init__(
        self,
        index: IntervalIndex,
        gc_table: Optional[GCContentTable] = None,
        bait_set_name: Optional[str] = None,
        genome_size: Optional[int] = None,
        coverage_thresholds: Sequence[int] = DEFAULT_COVERAGE_THRESHOLDS,
        penalty_thresholds: Sequence[int] = DEFAULT_PENALTY_THRESHOLDS,
    ):
        self.index = index
        self.gc_table = gc_table
        self.bait_set_name = bait_set_name or index.baits.name
        self.genome_size = genome_size
        self.coverage_thresholds = sorted(set(coverage_thresholds))
        self.penalty_thresholds = sorted(set(penalty_thresholds))

    def derive(self, accumulator: CoverageAccumulator) -> List[HsMetrics]:
        """One record per observed key, ALL_READS first."""
        return [self.derive_key(accumulator, key) for key in accumulator.keys()]

    def derive_key(self, accumulator: CoverageAccumulator, key: MetricKey = ALL_READS_KEY) -> HsMetrics:
        counters = accumulator.counters(key)
        depths = accumulator.depths(key)
        return self._build_record(counters, depths, key)

    def target_totals(self, depths: np.ndarray) -> np.ndarray:
        """Summed depth of every target."""
        if not len(self.index.targets):
            return np.zeros(0, dtype=np.int64)
        return np.add.reduceat(depths.astype(np.int64), self.index.target_offsets)

    def target_means(self, depths: np.ndarray) -> np.ndarray:
        return self.target_totals(depths) / self.index.target_lengths

    def dropout_buckets(self, depths: np.ndarray) -> List[DropoutBucket]:
        """(bucket, normalised coverage, bases) for every target with a GC value."""
        if self.gc_table is None:
            return []
        overall_mean = _ratio(depths.sum(dtype=np.int64), self.index.target_territory)
        means = self.target_means(depths)
        buckets = []
        for target_id, mean in enumerate(means):
            bucket = self.gc_table.gc_bucket_for(target_id)
            if bucket is None:
                continue
            buckets.append(DropoutBucket(
                bucket=bucket,
                normalized_coverage=_ratio(mean, overall_mean),
                base_count=int(self.index.target_lengths[target_id]),
            ))
        return buckets

    def fold_80_base_penalty(self, depths: np.ndarray, mean_coverage: float) -> Optional[float]:
        """Mean coverage over the 20th percentile depth of bases in covered targets."""
        totals = self.target_totals(depths)
        covered = np.repeat(totals > 0, self.index.target_lengths)
        if not covered.any():
            return None
        twentieth = float(np.quantile(depths[covered], 0.2, method="inverted_cdf"))
        if twentieth == 0:
            return None
        return mean_coverage / twentieth

    def per_target_table(self, accumulator: CoverageAccumulator, key: MetricKey = ALL_READS_KEY) -> pd.DataFrame:
        """One row per target interval."""
        depths = accumulator.depths(key)
        targets = self.index.targets.intervals
        if not targets:
            return pd.DataFrame(columns=PER_TARGET_COLUMNS)

        offsets = self.index.target_offsets
        lengths = self.index.target_lengths
        overall_mean = _ratio(depths.sum(dtype=np.int64), self.index.target_territory)
        means = self.target_means(depths)
        minimum = np.minimum.reduceat(depths, offsets).astype(np.int64)
        maximum = np.maximum.reduceat(depths, offsets).astype(np.int64)
        zeros = np.add.reduceat((depths == 0).astype(np.int64), offsets)
        gc = [None if self.gc_table is None else self.gc_table.gc_fraction_for(i) for i in range(len(targets))]

        return pd.DataFrame({
            "contig": [t.contig for t in targets],
            "start": [t.start for t in targets],
            "end": [t.end for t in targets],
            "length": lengths,
            "name": [t.name or str(t) for t in targets],
            "pct_gc": pd.array(gc, dtype="Float64"),
            "mean_coverage": means,
            "normalized_coverage": means / overall_mean if overall_mean else np.zeros(len(targets)),
            "min_normalized_coverage": minimum / overall_mean if overall_mean else np.zeros(len(targets)),
            "max_normalized_coverage": maximum / overall_mean if overall_mean else np.zeros(len(targets)),
            "min_coverage": minimum,
            "max_coverage": maximum,
            "pct_0x": zeros / lengths,
            "read_count": np.asarray(accumulator.target_read_counts(key)),
        }, columns=PER_TARGET_COLUMNS)

    def per_base_table(self, accumulator: CoverageAccumulator, key: MetricKey = ALL_READS_KEY) -> pd.DataFrame:
        """One row per covered target base."""
        depths = accumulator.depths(key)
        targets = self.index.targets.intervals
        if not targets:
            return pd.DataFrame(columns=PER_BASE_COLUMNS)
        lengths = self.index.target_lengths
        table = pd.DataFrame({
            "contig": np.repeat([t.contig for t in targets], lengths),
            "position": np.concatenate([np.arange(t.start, t.end + 1) for t in targets]),
            "target": np.repeat([t.name or str(t) for t in targets], lengths),
            "coverage": depths.astype(np.int64),
        }, columns=PER_BASE_COLUMNS)
        return table[table["coverage"] > 0].reset_index(drop=True)

    def _build_record(self, c: ReadCounters, depths: np.ndarray, key: MetricKey) -> HsMetrics:
        bait_territory = self.index.bait_territory
        target_territory = self.index.target_territory
        usable = c.on_bait_bases + c.near_bait_bases + c.off_bait_bases
        selected = c.on_bait_bases + c.near_bait_bases

        mean_target_coverage = _ratio(depths.sum(dtype=np.int64), target_territory)
        totals = self.target_totals(depths)
        fold_80 = self.fold_80_base_penalty(depths, mean_target_coverage)

        fold_enrichment = None
        if self.genome_size and target_territory and c.pf_bases:
            fold_enrichment = _ratio(c.on_target_bases, target_territory) / \
                _ratio(c.pf_bases, self.genome_size)

        library_size = estimate_library_size(c.pf_selected_pairs, c.pf_selected_unique_pairs)
        pair_mean_coverage = _ratio(c.on_target_from_pair_bases, target_territory)
        on_target_fraction = _ratio(c.on_target_bases, c.pf_bases)
        penalties = {
            goal: hs_penalty(goal, library_size, c.pf_selected_pairs, c.pf_selected_unique_pairs,
                             pair_mean_coverage, fold_80, on_target_fraction)
            for goal in self.penalty_thresholds
        }

        at_dropout, gc_dropout = None, None
        if self.gc_table is not None and self.gc_table.available:
            at_dropout, gc_dropout = compute_dropout(self.dropout_buckets(depths), self.gc_table.bucket_count)

        return HsMetrics(
            bait_set=self.bait_set_name,
            genome_size=self.genome_size,
            bait_territory=bait_territory,
            target_territory=target_territory,
            bait_design_efficiency=_ratio(target_territory, bait_territory),
            total_reads=c.total_reads,
            pf_reads=c.pf_reads,
            pf_unique_reads=c.pf_unique_reads,
            pct_pf_reads=_ratio(c.pf_reads, c.total_reads),
            pct_pf_uq_reads=_ratio(c.pf_unique_reads, c.total_reads),
            pf_uq_reads_aligned=c.pf_unique_reads_aligned,
            pct_pf_uq_reads_aligned=_ratio(c.pf_unique_reads_aligned, c.pf_unique_reads),
            duplicate_reads=c.duplicate_reads,
            secondary_reads=c.secondary_reads,
            supplementary_reads=c.supplementary_reads,
            unmapped_reads=c.unmapped_reads,
            failed_mapping_quality_reads=c.failed_mapping_quality_reads,
            malformed_reads=c.malformed_reads,
            pf_selected_pairs=c.pf_selected_pairs,
            pf_selected_unique_pairs=c.pf_selected_unique_pairs,
            pf_bases=c.pf_bases,
            pf_bases_aligned=c.pf_bases_aligned,
            pf_uq_bases_aligned=c.pf_unique_bases_aligned,
            on_bait_bases=c.on_bait_bases,
            near_bait_bases=c.near_bait_bases,
            off_bait_bases=c.off_bait_bases,
            on_target_bases=c.on_target_bases,
            pct_selected_bases=on_target_fraction,
            pct_off_bait=_ratio(c.off_bait_bases, usable),
            on_bait_vs_selected=_ratio(c.on_bait_bases, selected),
            pct_usable_bases_on_bait=_ratio(c.on_bait_bases, c.pf_bases),
            pct_usable_bases_on_target=_ratio(c.on_target_bases, c.pf_bases),
            fold_enrichment=fold_enrichment,
            mean_bait_coverage=_ratio(c.on_bait_bases, bait_territory),
            mean_target_coverage=mean_target_coverage,
            median_target_coverage=float(np.median(depths)) if depths.size else 0.0,
            max_target_coverage=int(depths.max()) if depths.size else 0,
            zero_cvg_targets_pct=_ratio(int(np.count_nonzero(totals == 0)), len(totals)),
            pct_target_bases={
                depth: _ratio(int(np.count_nonzero(depths >= depth)), target_territory)
                for depth in self.coverage_thresholds
            },
            fold_80_base_penalty=fold_80,
            pct_exc_dupe=_ratio(c.excluded_duplicate_bases, c.pf_bases_aligned),
            pct_exc_mapq=_ratio(c.excluded_mapq_bases, c.pf_bases_aligned),
            pct_exc_baseq=_ratio(c.excluded_baseq_bases, c.pf_bases_aligned),
            pct_exc_overlap=_ratio(c.excluded_overlap_bases, c.pf_bases_aligned),
            pct_exc_off_target=_ratio(c.excluded_off_target_bases, c.pf_bases_aligned),
            hs_library_size=library_size,
            hs_penalty=penalties,
            at_dropout=at_dropout,
            gc_dropout=gc_dropout,
            sample=key.sample,
            library=key.library,
            read_group=key.read_group,
        )
