"""
Shared fixtures for the HS metrics tests.
"""

import sys
from pathlib import Path

import pytest

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hs_metrics.core.interval_index import IntervalIndex
from hs_metrics.models import AlignedRead, AlignmentBlock, Interval, ProbeSet


CHR1_LENGTH = 10000

HEADER = {
    "HD": {"VN": "1.6", "SO": "coordinate"},
    "SQ": [{"SN": "chr1", "LN": CHR1_LENGTH}, {"SN": "chr2", "LN": 5000}],
    "RG": [
        {"ID": "rg1", "SM": "S1", "LB": "L1"},
        {"ID": "rg2", "SM": "S1", "LB": "L2"},
    ],
}


def probe_set(name, *spans, sequence_dictionary=None) -> ProbeSet:
    """ProbeSet from (contig, start, end) tuples."""
    intervals = tuple(
        Interval(contig=contig, start=start, end=end, name=f"{name}_{i}")
        for i, (contig, start, end) in enumerate(spans)
    )
    return ProbeSet(name=name, intervals=intervals, sequence_dictionary=sequence_dictionary or {})


def aligned_read(start, length=100, contig="chr1", mapq=60, quality=30, name="read", **kwargs) -> AlignedRead:
    """Gapless mapped read with uniform base quality."""
    return AlignedRead(
        name=name,
        contig=contig,
        start=start,
        blocks=(AlignmentBlock(start, 0, length),),
        qualities=[quality] * length,
        mapping_quality=mapq,
        read_length=length,
        **kwargs
    )


@pytest.fixture
def make_probe_set():
    return probe_set


@pytest.fixture
def make_read():
    return aligned_read


@pytest.fixture
def simple_index():
    """One bait and one identical target at chr1:1000-1099."""
    baits = probe_set("baits", ("chr1", 1000, 1099))
    targets = probe_set("targets", ("chr1", 1000, 1099))
    return IntervalIndex(baits, targets)


@pytest.fixture
def two_target_index():
    """Targets chr1:1000-1099 and chr1:2000-2099, each under its own bait."""
    baits = probe_set("baits", ("chr1", 1000, 1099), ("chr1", 2000, 2099))
    targets = probe_set("targets", ("chr1", 1000, 1099), ("chr1", 2000, 2099))
    return IntervalIndex(baits, targets)


@pytest.fixture
def make_segment():
    """Factory for synthetic pysam records against HEADER."""
    pysam = pytest.importorskip("pysam")
    header = pysam.AlignmentHeader.from_dict(HEADER)

    def _make(name="r1", start=1000, cigar="100M", flag=0, mapq=60, mate_start=None,
              read_group="rg1", contig_id=0, quality="I"):
        segment = pysam.AlignedSegment(header)
        segment.query_name = name
        length = sum(n for op, n in _parse_cigar(cigar) if op in "MIS=X") if cigar else 100
        segment.query_sequence = "A" * length
        segment.flag = flag
        segment.reference_id = contig_id
        segment.reference_start = start - 1 if start > 0 else -1
        segment.mapping_quality = mapq
        if cigar:
            segment.cigarstring = cigar
        segment.query_qualities = pysam.qualitystring_to_array(quality * length)
        if mate_start is not None:
            segment.next_reference_id = contig_id
            segment.next_reference_start = mate_start - 1
        if read_group:
            segment.set_tag("RG", read_group)
        return segment

    _make.header = header
    return _make


def _parse_cigar(cigar):
    number = ""
    for char in cigar:
        if char.isdigit():
            number += char
        else:
            yield char, int(number)
            number = ""


def write_interval_list(path: Path, *spans, header=True) -> Path:
    lines = []
    if header:
        lines.append("@HD\tVN:1.6")
        for record in HEADER["SQ"]:
            lines.append(f"@SQ\tSN:{record['SN']}\tLN:{record['LN']}")
    for i, (contig, start, end) in enumerate(spans):
        lines.append(f"{contig}\t{start}\t{end}\t+\tinterval_{i}")
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def hs_inputs(tmp_path, make_segment):
    """Indexed BAM, interval lists and reference for an end-to-end run.

    50 proper reads cover chr1:1000-1099 exactly; a duplicate, an off-bait
    read, a low-MAPQ read and an unplaced read are mixed in.
    """
    pysam = pytest.importorskip("pysam")

    baits = write_interval_list(tmp_path / "baits.interval_list", ("chr1", 1000, 1099))
    targets = write_interval_list(tmp_path / "targets.interval_list", ("chr1", 1000, 1099))

    reference = tmp_path / "reference.fa"
    with open(reference, "w") as handle:
        handle.write(">chr1\n")
        sequence = "ACGT" * (CHR1_LENGTH // 4)
        for i in range(0, len(sequence), 60):
            handle.write(sequence[i:i + 60] + "\n")
        handle.write(">chr2\n")
        sequence = "AT" * 2500
        for i in range(0, len(sequence), 60):
            handle.write(sequence[i:i + 60] + "\n")
    pysam.faidx(str(reference))

    records = [make_segment(name=f"cov{i}", start=1000) for i in range(50)]
    records.append(make_segment(name="dup", start=1000, flag=1024))
    records.append(make_segment(name="lowmapq", start=1000, mapq=5))
    records.append(make_segment(name="offbait", start=6000))
    records.append(make_segment(name="chr2read", start=100, contig_id=1))
    unplaced = make_segment(name="unplaced", start=0, cigar=None, flag=4, contig_id=-1)
    records.append(unplaced)

    bam = tmp_path / "reads.bam"
    with pysam.AlignmentFile(str(bam), "wb", header=make_segment.header) as out:
        for record in records:
            out.write(record)
    pysam.index(str(bam))

    return {
        "bam": bam,
        "baits": baits,
        "targets": targets,
        "reference": reference,
        "output": tmp_path / "out" / "hs_metrics.txt",
    }
