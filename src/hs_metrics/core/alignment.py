"""
Alignment source: turns SAM/BAM/CRAM records into AlignedRead objects using pysam.
"""

from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

import pysam
import structlog

from ..exceptions import AlignmentSourceError
from ..models.reads import AlignedRead, AlignmentBlock, ReadGroup


# CIGAR operations by what they consume
_ALIGNED_OPS = {0, 7, 8}  # M, =, X
_REFERENCE_ONLY_OPS = {2, 3}  # D, N
_READ_ONLY_OPS = {1, 4}  # I, S


class AlignmentHeader(NamedTuple):
    """What the accumulator needs from the alignment header."""

    read_groups: Dict[str, ReadGroup]
    sequence_dictionary: Dict[str, int]
    contigs: List[str]
    has_index: bool


def read_groups_from_header(header: pysam.AlignmentHeader) -> Dict[str, ReadGroup]:
    """Read group id -> ReadGroup(sample, library)."""
    groups = {}
    for record in header.to_dict().get("RG", []):
        groups[record["ID"]] = ReadGroup(id=record["ID"], sample=record.get("SM"), library=record.get("LB"))
    return groups


def sequence_dictionary_from_header(header: pysam.AlignmentHeader) -> Dict[str, int]:
    return dict(zip(header.references, header.lengths))


def alignment_blocks(cigartuples, reference_start: int) -> Tuple[AlignmentBlock, ...]:
    """Aligned blocks from a CIGAR; ``reference_start`` is 1-based."""
    blocks = []
    reference = reference_start
    offset = 0
    for op, length in cigartuples or ():
        if op in _ALIGNED_OPS:
            blocks.append(AlignmentBlock(reference, offset, length))
            reference += length
            offset += length
        elif op in _REFERENCE_ONLY_OPS:
            reference += length
        elif op in _READ_ONLY_OPS:
            offset += length
    return tuple(blocks)


def overlap_clip_start(segment: pysam.AlignedSegment) -> Optional[int]:
    """
    First 1-based reference position of this read that overlaps its mate, or None.

    Only the left-most mate of an inward-facing pair on one contig is clipped
    (the second of pair when both start at the same position), so every
    overlapping base is counted once.
    """
    if not segment.is_paired or segment.is_unmapped or segment.mate_is_unmapped:
        return None
    if segment.reference_id != segment.next_reference_id:
        return None
    if segment.is_reverse == segment.mate_is_reverse:
        return None
    if segment.next_reference_start < segment.reference_start:
        return None
    if segment.next_reference_start == segment.reference_start and segment.is_read1:
        return None
    return segment.next_reference_start + 1


def clip_blocks(blocks: Tuple[AlignmentBlock, ...], clip_from: int) -> Tuple[Tuple[AlignmentBlock, ...], int]:
    """Drop aligned bases at or after ``clip_from``; returns (kept blocks, bases removed)."""
    kept = []
    clipped = 0
    for block in blocks:
        if block.reference_end < clip_from:
            kept.append(block)
        elif block.reference_start >= clip_from:
            clipped += block.length
        else:
            keep = clip_from - block.reference_start
            kept.append(AlignmentBlock(block.reference_start, block.read_start, keep))
            clipped += block.length - keep
    return tuple(kept), clipped


def to_aligned_read(segment: pysam.AlignedSegment, clip_overlapping_reads: bool = True) -> AlignedRead:
    """Convert one pysam record."""
    placed = segment.reference_id >= 0
    blocks: Tuple[AlignmentBlock, ...] = ()
    clipped = 0
    if not segment.is_unmapped:
        blocks = alignment_blocks(segment.cigartuples, segment.reference_start + 1)
        if clip_overlapping_reads:
            clip_from = overlap_clip_start(segment)
            if clip_from is not None:
                blocks, clipped = clip_blocks(blocks, clip_from)

    qualities = segment.query_qualities
    return AlignedRead(
        name=segment.query_name,
        contig=segment.reference_name if placed else None,
        start=segment.reference_start + 1 if placed else 0,
        blocks=blocks,
        qualities=None if qualities is None else list(qualities),
        mapping_quality=segment.mapping_quality,
        read_length=segment.query_length or (segment.infer_query_length() or 0),
        read_group=segment.get_tag("RG") if segment.has_tag("RG") else None,
        is_unmapped=segment.is_unmapped,
        is_secondary=segment.is_secondary,
        is_supplementary=segment.is_supplementary,
        is_duplicate=segment.is_duplicate,
        is_pf=not segment.is_qcfail,
        is_paired=segment.is_paired,
        is_first_of_pair=segment.is_read1,
        is_mate_unmapped=segment.is_paired and segment.mate_is_unmapped,
        overlap_clipped_bases=clipped,
    )


def _open(path: Path, reference_fasta: Optional[Path] = None) -> pysam.AlignmentFile:
    try:
        return pysam.AlignmentFile(
            str(path), "r",
            reference_filename=str(reference_fasta) if reference_fasta else None,
        )
    except (OSError, ValueError) as e:
        raise AlignmentSourceError(f"Cannot open alignment file {path}: {e}") from e


def read_alignment_header(path: Path, reference_fasta: Optional[Path] = None) -> AlignmentHeader:
    """Read groups, sequence dictionary and index availability of an alignment file."""
    with _open(path, reference_fasta) as alignments:
        header = alignments.header
        try:
            has_index = alignments.check_index()
        except (AttributeError, ValueError):
            has_index = False
        return AlignmentHeader(
            read_groups=read_groups_from_header(header),
            sequence_dictionary=sequence_dictionary_from_header(header),
            contigs=list(header.references),
            has_index=has_index,
        )


def iter_aligned_reads(
    path: Path,
    clip_overlapping_reads: bool = True,
    contig: Optional[str] = None,
    unplaced_only: bool = False,
    reference_fasta: Optional[Path] = None,
    logger: Optional[structlog.BoundLogger] = None,
) -> Iterator[AlignedRead]:
    """
    Stream reads from an alignment file in file order.

    Args:
        path: SAM/BAM/CRAM file
        clip_overlapping_reads: Clip bases that overlap the mate
        contig: Only reads placed on this contig (needs an index)
        unplaced_only: Only reads without a reference position
        reference_fasta: Reference for CRAM decoding
        logger: Logger instance

    Raises:
        AlignmentSourceError: If the file cannot be opened or read
    """
    logger = logger or structlog.get_logger(__name__)
    logger.debug("Opening alignment file", path=str(path), contig=contig, unplaced_only=unplaced_only)
    with _open(path, reference_fasta) as alignments:
        try:
            if contig is not None:
                records = alignments.fetch(contig)
            else:
                records = alignments.fetch(until_eof=True)
            for segment in records:
                if unplaced_only and segment.reference_id >= 0:
                    continue
                yield to_aligned_read(segment, clip_overlapping_reads)
        except (OSError, ValueError) as e:
            raise AlignmentSourceError(f"Failed reading {path}: {e}") from e
