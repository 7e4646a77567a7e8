"""
Genomic interval models for bait and target designs.
"""

from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Interval(BaseModel):
    """A genomic interval with 1-based, inclusive coordinates."""

    model_config = ConfigDict(frozen=True)

    contig: str = Field(description="Reference sequence name")
    start: int = Field(description="Start position (1-based, inclusive)")
    end: int = Field(description="End position (1-based, inclusive)")
    strand: str = Field(default="+", description="Strand (+ or -)")
    name: Optional[str] = Field(default=None, description="Interval name")

    @field_validator('start')
    @classmethod
    def validate_start(cls, v):
        """Validate that the start position is 1-based."""
        if v < 1:
            raise ValueError("Interval start must be >= 1")
        return v

    @field_validator('strand')
    @classmethod
    def validate_strand(cls, v):
        """Validate strand symbol."""
        if v not in ('+', '-'):
            raise ValueError("Strand must be '+' or '-'")
        return v

    @model_validator(mode='after')
    def validate_end_after_start(self):
        """Validate that end is not before start."""
        if self.end < self.start:
            raise ValueError("Interval end must be >= start")
        return self

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.contig}:{self.start}-{self.end}"


class ProbeSet(BaseModel):
    """A named, normalized collection of intervals (baits or targets).

    Intervals are sorted by contig then start and do not overlap. The
    optional sequence dictionary comes from interval_list headers.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Probe set name")
    intervals: Tuple[Interval, ...] = Field(description="Sorted, non-overlapping intervals")
    sequence_dictionary: Dict[str, int] = Field(
        default_factory=dict,
        description="Contig lengths from the interval file header"
    )

    @model_validator(mode='after')
    def validate_disjoint(self):
        """Validate that intervals are sorted and non-overlapping per contig."""
        last: Dict[str, int] = {}
        for interval in self.intervals:
            previous_end = last.get(interval.contig)
            if previous_end is not None and interval.start <= previous_end:
                raise ValueError(
                    f"Intervals in probe set '{self.name}' overlap or are unsorted at {interval}"
                )
            last[interval.contig] = interval.end
        return self

    @property
    def territory(self) -> int:
        """Number of bases covered by the probe set."""
        return sum(interval.length for interval in self.intervals)

    @property
    def contigs(self) -> List[str]:
        """Contigs in first-seen order."""
        return list(dict.fromkeys(interval.contig for interval in self.intervals))

    def __len__(self) -> int:
        return len(self.intervals)
