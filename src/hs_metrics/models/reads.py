"""
Aligned read records handed from the alignment source to the accumulator.
"""

from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence, Tuple


class AlignmentBlock(NamedTuple):
    """A gapless stretch of the alignment consuming both read and reference."""

    reference_start: int  # 1-based
    read_start: int  # 0-based offset into the read bases
    length: int

    @property
    def reference_end(self) -> int:
        return self.reference_start + self.length - 1


class ReadGroup(NamedTuple):
    """Read group header record."""

    id: str
    sample: Optional[str] = None
    library: Optional[str] = None


@dataclass(frozen=True)
class AlignedRead:
    """One alignment record, already overlap-clipped if clipping was requested."""

    name: str
    contig: Optional[str]
    start: int
    blocks: Tuple[AlignmentBlock, ...] = ()
    qualities: Optional[Sequence[int]] = None
    mapping_quality: int = 0
    read_length: int = 0
    read_group: Optional[str] = None
    is_unmapped: bool = False
    is_secondary: bool = False
    is_supplementary: bool = False
    is_duplicate: bool = False
    is_pf: bool = True
    is_paired: bool = False
    is_first_of_pair: bool = False
    is_mate_unmapped: bool = False
    overlap_clipped_bases: int = 0

    @property
    def aligned_bases(self) -> int:
        """Number of aligned bases after clipping."""
        return sum(block.length for block in self.blocks)

    @property
    def total_aligned_bases(self) -> int:
        """Aligned bases including those removed by overlap clipping."""
        return self.aligned_bases + self.overlap_clipped_bases

    @property
    def has_mapped_mate(self) -> bool:
        return self.is_paired and not self.is_mate_unmapped
