#!/usr/bin/env python3
"""
Tests for the pysam alignment source.
"""

import pytest

pysam = pytest.importorskip("pysam")

from hs_metrics.core.alignment import (
    alignment_blocks,
    clip_blocks,
    iter_aligned_reads,
    read_alignment_header,
    read_groups_from_header,
    sequence_dictionary_from_header,
    to_aligned_read,
)
from hs_metrics.exceptions import AlignmentSourceError
from hs_metrics.models import AlignmentBlock, ReadGroup


# Flag combinations for an inward-facing pair
READ1_FORWARD = 1 | 32 | 64
READ2_REVERSE = 1 | 16 | 128


def test_alignment_blocks_follow_cigar():
    """Soft clips and insertions shift read offsets; deletions shift the reference."""
    pysam_cigar = [(4, 10), (0, 20), (2, 5), (0, 30), (1, 2), (0, 10)]
    blocks = alignment_blocks(pysam_cigar, 1000)

    assert blocks == (
        AlignmentBlock(1000, 10, 20),
        AlignmentBlock(1025, 30, 30),
        AlignmentBlock(1055, 62, 10),
    )


def test_clip_blocks_splits_block_at_mate_start():
    blocks = (AlignmentBlock(1000, 0, 50), AlignmentBlock(1060, 50, 40))

    kept, clipped = clip_blocks(blocks, 1020)

    assert kept == (AlignmentBlock(1000, 0, 20),)
    assert clipped == 70


def test_to_aligned_read_simple(make_segment):
    read = to_aligned_read(make_segment(start=1000))

    assert read.contig == "chr1"
    assert read.start == 1000
    assert read.blocks == (AlignmentBlock(1000, 0, 100),)
    assert read.read_length == 100
    assert read.read_group == "rg1"
    assert list(read.qualities) == [40] * 100
    assert read.is_pf
    assert not read.is_unmapped


def test_to_aligned_read_flags(make_segment):
    read = to_aligned_read(make_segment(flag=512 | 1024 | 256))

    assert not read.is_pf
    assert read.is_duplicate
    assert read.is_secondary
    assert not read.is_paired


def test_unmapped_read_has_no_blocks(make_segment):
    read = to_aligned_read(make_segment(start=0, cigar=None, flag=4, contig_id=-1))

    assert read.is_unmapped
    assert read.contig is None
    assert read.blocks == ()


class TestOverlapClipping:
    """Mate overlap clipping on synthetic pairs."""

    def test_left_mate_clipped_at_mate_start(self, make_segment):
        segment = make_segment(start=1000, flag=READ1_FORWARD, mate_start=1050)

        read = to_aligned_read(segment, clip_overlapping_reads=True)

        assert read.blocks == (AlignmentBlock(1000, 0, 50),)
        assert read.overlap_clipped_bases == 50
        assert read.total_aligned_bases == 100

    def test_right_mate_not_clipped(self, make_segment):
        segment = make_segment(start=1050, flag=READ2_REVERSE, mate_start=1000)

        read = to_aligned_read(segment, clip_overlapping_reads=True)

        assert read.blocks == (AlignmentBlock(1050, 0, 100),)
        assert read.overlap_clipped_bases == 0

    def test_same_start_clips_second_of_pair_only(self, make_segment):
        first = to_aligned_read(make_segment(start=1000, flag=READ1_FORWARD, mate_start=1000))
        second = to_aligned_read(make_segment(start=1000, flag=READ2_REVERSE, mate_start=1000))

        assert first.overlap_clipped_bases == 0
        assert second.blocks == ()
        assert second.overlap_clipped_bases == 100

    def test_same_strand_pair_not_clipped(self, make_segment):
        segment = make_segment(start=1000, flag=1 | 64, mate_start=1050)

        read = to_aligned_read(segment)

        assert read.overlap_clipped_bases == 0

    def test_clipping_disabled(self, make_segment):
        segment = make_segment(start=1000, flag=READ1_FORWARD, mate_start=1050)

        read = to_aligned_read(segment, clip_overlapping_reads=False)

        assert read.aligned_bases == 100
        assert read.overlap_clipped_bases == 0

    def test_non_overlapping_mate(self, make_segment):
        segment = make_segment(start=1000, flag=READ1_FORWARD, mate_start=1500)

        read = to_aligned_read(segment)

        assert read.aligned_bases == 100
        assert read.overlap_clipped_bases == 0


def test_header_helpers(make_segment):
    header = make_segment.header

    assert read_groups_from_header(header) == {
        "rg1": ReadGroup("rg1", "S1", "L1"),
        "rg2": ReadGroup("rg2", "S1", "L2"),
    }
    assert sequence_dictionary_from_header(header) == {"chr1": 10000, "chr2": 5000}


def test_iter_aligned_reads_from_bam(hs_inputs):
    reads = list(iter_aligned_reads(hs_inputs["bam"]))

    assert len(reads) == 55
    assert reads[-1].name == "unplaced"
    assert reads[-1].contig is None


def test_iter_aligned_reads_by_contig(hs_inputs):
    chr2 = list(iter_aligned_reads(hs_inputs["bam"], contig="chr2"))
    unplaced = list(iter_aligned_reads(hs_inputs["bam"], unplaced_only=True))

    assert [read.name for read in chr2] == ["chr2read"]
    assert [read.name for read in unplaced] == ["unplaced"]


def test_read_alignment_header(hs_inputs):
    header = read_alignment_header(hs_inputs["bam"])

    assert header.has_index
    assert header.contigs == ["chr1", "chr2"]
    assert header.read_groups["rg1"].sample == "S1"


def test_missing_alignment_file_raises(tmp_path):
    with pytest.raises(AlignmentSourceError):
        list(iter_aligned_reads(tmp_path / "missing.bam"))
