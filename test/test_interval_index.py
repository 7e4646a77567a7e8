#!/usr/bin/env python3
"""
Tests for bait classification and target lookup.
"""

import numpy as np
import pytest

from hs_metrics.core.interval_index import BaitClass, IntervalIndex, pad_and_merge


@pytest.fixture
def index(make_probe_set):
    baits = make_probe_set("baits", ("chr1", 1000, 1099))
    targets = make_probe_set(
        "targets", ("chr1", 1000, 1049), ("chr1", 1060, 1099), ("chr2", 10, 19)
    )
    return IntervalIndex(baits, targets, near_distance=250)


@pytest.mark.parametrize("position,expected", [
    (1000, BaitClass.ON_BAIT),
    (1099, BaitClass.ON_BAIT),
    (999, BaitClass.NEAR_BAIT),
    (750, BaitClass.NEAR_BAIT),
    (749, BaitClass.OFF_BAIT),
    (1349, BaitClass.NEAR_BAIT),
    (1350, BaitClass.OFF_BAIT),
])
def test_classify_boundaries(index, position, expected):
    assert index.classify("chr1", position) == expected


def test_unknown_contig_is_off_bait(index):
    assert index.classify("chrX", 1000) == BaitClass.OFF_BAIT
    assert index.target_for("chrX", 1000) is None


def test_target_lookup(index):
    assert index.target_for("chr1", 1000) == 0
    assert index.target_for("chr1", 1049) == 0
    assert index.target_for("chr1", 1050) is None
    assert index.target_for("chr1", 1060) == 1
    assert index.target_for("chr2", 19) == 2
    assert index.on_target("chr1", 1099)
    assert not index.on_target("chr1", 1100)


def test_arena_layout(index):
    assert index.arena_size == 100
    assert index.target_territory == 100
    assert index.bait_territory == 100
    assert list(index.target_offsets) == [0, 50, 90]
    assert index.target_slice(2) == slice(90, 100)

    slots = index.arena_indices("chr1", np.array([1000, 1049, 1050, 1060, 1099]))
    assert list(slots) == [0, 49, -1, 50, 89]
    assert list(index.arena_indices("chr2", np.array([10, 20]))) == [90, -1]


def test_vectorised_classification_matches_scalar(index):
    positions = np.arange(700, 1400)
    classes = index.classify_positions("chr1", positions)

    assert classes.dtype == np.int8
    for position in (700, 760, 1000, 1200, 1399):
        assert classes[position - 700] == index.classify("chr1", position)


def test_padding_clamped_at_contig_start(make_probe_set):
    baits = make_probe_set("baits", ("chr1", 100, 200))
    index = IntervalIndex(baits, baits, near_distance=250)

    assert index.classify("chr1", 1) == BaitClass.NEAR_BAIT


def test_pad_and_merge_joins_close_baits(make_probe_set):
    baits = make_probe_set("baits", ("chr1", 1000, 1099), ("chr1", 1500, 1599), ("chr2", 5000, 5009))

    merged = pad_and_merge(list(baits.intervals), 250)

    assert merged["chr1"] == [(750, 1849)]
    assert merged["chr2"] == [(4750, 5259)]


def test_zero_near_distance(make_probe_set):
    baits = make_probe_set("baits", ("chr1", 1000, 1099))
    index = IntervalIndex(baits, baits, near_distance=0)

    assert index.classify("chr1", 999) == BaitClass.OFF_BAIT
    assert index.classify("chr1", 1000) == BaitClass.ON_BAIT


def test_negative_near_distance_rejected(make_probe_set):
    baits = make_probe_set("baits", ("chr1", 1000, 1099))
    with pytest.raises(ValueError):
        IntervalIndex(baits, baits, near_distance=-1)
