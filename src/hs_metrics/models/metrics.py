"""
Metric record produced for each stratification key.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccumulationLevel(str, Enum):
    """Granularity at which separate metric records are produced."""

    ALL_READS = "ALL_READS"
    SAMPLE = "SAMPLE"
    LIBRARY = "LIBRARY"
    READ_GROUP = "READ_GROUP"


class HsMetrics(BaseModel):
    """Hybrid-selection metrics for one stratification key.

    Fractions are reported in [0, 1]; dropout values are percentages.
    ``None`` marks a value that cannot be computed from the inputs, e.g.
    dropout without a reference sequence.
    """

    model_config = ConfigDict(frozen=True)

    # Design
    bait_set: str = Field(description="Name of the bait set")
    genome_size: Optional[int] = Field(default=None, description="Total reference length")
    bait_territory: int = Field(description="Bases covered by baits")
    target_territory: int = Field(description="Bases covered by targets")
    bait_design_efficiency: float = Field(description="Target territory / bait territory")

    # Read level
    total_reads: int = Field(description="Reads examined")
    pf_reads: int = Field(description="Reads passing vendor filter")
    pf_unique_reads: int = Field(description="PF reads not marked duplicate")
    pct_pf_reads: float = Field(description="PF reads / total reads")
    pct_pf_uq_reads: float = Field(description="PF unique reads / total reads")
    pf_uq_reads_aligned: int = Field(description="PF unique reads that aligned")
    pct_pf_uq_reads_aligned: float = Field(description="PF unique aligned reads / PF unique reads")
    duplicate_reads: int = Field(default=0, description="PF aligned reads marked duplicate")
    secondary_reads: int = Field(default=0, description="Secondary alignments seen")
    supplementary_reads: int = Field(default=0, description="Supplementary alignments seen")
    unmapped_reads: int = Field(default=0, description="PF reads that did not align")
    failed_mapping_quality_reads: int = Field(default=0, description="Reads below minimum mapping quality")
    malformed_reads: int = Field(default=0, description="Records skipped as malformed")
    pf_selected_pairs: int = Field(default=0, description="PF pairs with a read on or near bait")
    pf_selected_unique_pairs: int = Field(default=0, description="Non-duplicate selected pairs")

    # Base level
    pf_bases: int = Field(description="Bases in PF reads")
    pf_bases_aligned: int = Field(description="Aligned bases in PF reads")
    pf_uq_bases_aligned: int = Field(description="Aligned bases in PF unique reads")
    on_bait_bases: int = Field(description="Usable bases aligned on bait")
    near_bait_bases: int = Field(description="Usable bases aligned near bait")
    off_bait_bases: int = Field(description="Usable bases aligned off bait")
    on_target_bases: int = Field(description="Usable bases aligned on target")
    pct_selected_bases: float = Field(description="On-target bases / PF bases")
    pct_off_bait: float = Field(description="Off-bait bases / usable aligned bases")
    on_bait_vs_selected: float = Field(description="On-bait bases / on+near bait bases")
    pct_usable_bases_on_bait: float = Field(description="On-bait bases / PF bases")
    pct_usable_bases_on_target: float = Field(description="On-target bases / PF bases")
    fold_enrichment: Optional[float] = Field(default=None, description="Target enrichment over genome background")

    # Coverage
    mean_bait_coverage: float = Field(description="On-bait bases / bait territory")
    mean_target_coverage: float = Field(description="Mean depth over target bases")
    median_target_coverage: float = Field(description="Median depth over target bases")
    max_target_coverage: int = Field(description="Highest depth on any target base")
    zero_cvg_targets_pct: float = Field(description="Fraction of targets with no coverage")
    pct_target_bases: Dict[int, float] = Field(
        default_factory=dict,
        description="Fraction of target bases at or above each depth threshold"
    )
    fold_80_base_penalty: Optional[float] = Field(
        default=None,
        description="Fold over-coverage needed to bring 80% of bases to the mean"
    )

    # Exclusions
    pct_exc_dupe: float = Field(description="Aligned bases dropped as duplicates")
    pct_exc_mapq: float = Field(description="Aligned bases dropped for mapping quality")
    pct_exc_baseq: float = Field(description="Aligned bases dropped for base quality")
    pct_exc_overlap: float = Field(description="Aligned bases dropped by mate overlap clipping")
    pct_exc_off_target: float = Field(description="Usable aligned bases outside targets")

    # Complexity and GC
    hs_library_size: Optional[int] = Field(default=None, description="Estimated unique selected pairs")
    hs_penalty: Dict[int, Optional[float]] = Field(
        default_factory=dict,
        description="Sequencing multiplier to reach 80% of target bases at each depth"
    )
    at_dropout: Optional[float] = Field(default=None, description="Coverage lost in GC <= 50% targets (%)")
    gc_dropout: Optional[float] = Field(default=None, description="Coverage lost in GC >= 50% targets (%)")

    # Stratification
    sample: Optional[str] = Field(default=None, description="Sample name")
    library: Optional[str] = Field(default=None, description="Library name")
    read_group: Optional[str] = Field(default=None, description="Read group id")

    @field_validator(
        'pct_pf_reads', 'pct_pf_uq_reads', 'pct_pf_uq_reads_aligned', 'pct_selected_bases',
        'pct_off_bait', 'on_bait_vs_selected', 'zero_cvg_targets_pct', 'pct_exc_dupe',
        'pct_exc_mapq', 'pct_exc_baseq', 'pct_exc_overlap', 'pct_exc_off_target'
    )
    @classmethod
    def validate_fraction(cls, v):
        """Validate that fractions are between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Fraction values must be between 0 and 1")
        return v

    @field_validator('total_reads', 'pf_reads', 'pf_unique_reads', 'pf_bases', 'on_target_bases')
    @classmethod
    def validate_counts(cls, v):
        """Validate that counts are non-negative."""
        if v < 0:
            raise ValueError("Counts must be non-negative")
        return v

    @property
    def dropout_available(self) -> bool:
        return self.at_dropout is not None and self.gc_dropout is not None

    def to_report_row(self) -> Dict[str, Any]:
        """Flatten into upper-case report columns; threshold maps become one column each."""
        row: Dict[str, Any] = {}
        for key, value in self.model_dump().items():
            if key == 'pct_target_bases':
                for depth, fraction in sorted(value.items()):
                    row[f"PCT_TARGET_BASES_{depth}X"] = fraction
            elif key == 'hs_penalty':
                for depth, penalty in sorted(value.items()):
                    row[f"HS_PENALTY_{depth}X"] = penalty
            else:
                row[key.upper()] = value
        return row
