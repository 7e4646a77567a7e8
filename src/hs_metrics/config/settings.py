"""
Configuration settings for the HS metrics engine.
"""

import os
from pathlib import Path
from typing import List, Optional, Set
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from ..models.metrics import AccumulationLevel


DEFAULT_COVERAGE_CAP = 32767
DEFAULT_COVERAGE_THRESHOLDS = [1, 2, 10, 20, 30, 40, 50, 100]


class HsMetricsConfig(BaseSettings):
    """Configuration for a hybrid-selection metrics run."""

    # Inputs and outputs
    input_bam: Path = Field(description="Coordinate-sorted SAM/BAM/CRAM file")
    output: Path = Field(description="Metrics output file")
    bait_intervals: List[Path] = Field(description="Interval files with bait locations")
    target_intervals: List[Path] = Field(description="Interval files with target locations")
    bait_set_name: Optional[str] = Field(
        default=None,
        description="Bait set name; inferred from the bait file names when absent"
    )
    reference_fasta: Optional[Path] = Field(
        default=None,
        description="Indexed reference FASTA; enables GC metrics"
    )
    per_target_coverage: Optional[Path] = Field(default=None, description="Per-target coverage output")
    per_base_coverage: Optional[Path] = Field(default=None, description="Per-base coverage output")

    # Filters
    minimum_mapping_quality: int = Field(default=20, description="Minimum mapping quality for a read to contribute coverage")
    minimum_base_quality: int = Field(default=20, description="Minimum base quality for a base to contribute coverage")
    clip_overlapping_reads: bool = Field(default=True, description="Clip overlapping mate bases before counting")

    # Accumulation
    coverage_cap: int = Field(default=DEFAULT_COVERAGE_CAP, description="Saturating maximum per-base depth")
    sample_size: Optional[int] = Field(
        default=None,
        description="Stop after this many qualifying reads; unlimited when absent"
    )
    near_distance: int = Field(default=250, description="Distance from a bait that still counts as near bait")
    accumulation_levels: Set[AccumulationLevel] = Field(
        default_factory=lambda: {AccumulationLevel.ALL_READS},
        description="Stratification levels that get their own metric records"
    )
    coverage_thresholds: List[int] = Field(
        default_factory=lambda: list(DEFAULT_COVERAGE_THRESHOLDS),
        description="Depths reported as PCT_TARGET_BASES_<n>X"
    )
    gc_bucket_count: int = Field(default=101, description="Number of GC buckets for dropout")

    # Performance
    threads: int = Field(default=1, description="Worker processes for contig-sharded accumulation")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Log file path")

    @field_validator('input_bam', 'output', 'reference_fasta', 'per_target_coverage', 'per_base_coverage')
    @classmethod
    def validate_paths(cls, v):
        """Validate that paths are absolute or can be resolved."""
        if isinstance(v, str):
            v = Path(v)
        return v

    @field_validator('minimum_mapping_quality', 'minimum_base_quality', 'near_distance')
    @classmethod
    def validate_non_negative(cls, v):
        """Validate quality thresholds and distances are non-negative."""
        if v < 0:
            raise ValueError("Quality thresholds and distances must be non-negative")
        return v

    @field_validator('coverage_cap')
    @classmethod
    def validate_coverage_cap(cls, v):
        """Validate the coverage cap is positive."""
        if v <= 0:
            raise ValueError("Coverage cap must be positive")
        return v

    @field_validator('sample_size')
    @classmethod
    def validate_sample_size(cls, v):
        """Validate the sample size is positive when given."""
        if v is not None and v <= 0:
            raise ValueError("Sample size must be positive")
        return v

    @field_validator('coverage_thresholds')
    @classmethod
    def validate_thresholds(cls, v):
        """Validate and sort coverage thresholds."""
        if any(t <= 0 for t in v):
            raise ValueError("Coverage thresholds must be positive")
        return sorted(set(v))

    @field_validator('gc_bucket_count')
    @classmethod
    def validate_bucket_count(cls, v):
        """Validate there are enough buckets to split at 50% GC."""
        if v < 2:
            raise ValueError("GC bucket count must be at least 2")
        return v

    @field_validator('threads')
    @classmethod
    def validate_threads(cls, v):
        """Validate thread count is positive."""
        if v <= 0:
            raise ValueError("Threads must be positive")
        return v

    @field_validator('accumulation_levels')
    @classmethod
    def validate_levels(cls, v):
        """ALL_READS is always collected."""
        return set(v) | {AccumulationLevel.ALL_READS}

    model_config = {
        "env_prefix": "HS_METRICS_",
        "case_sensitive": False,
        "env_file": ".env"
    }

    def validate_setup(self) -> List[str]:
        """Validate that every input can be read before accumulation starts."""
        errors = []

        required_files = [self.input_bam, *self.bait_intervals, *self.target_intervals]
        if self.reference_fasta is not None:
            required_files.append(self.reference_fasta)

        for file_path in required_files:
            if not file_path.exists():
                errors.append(f"Required file not found: {file_path}")
            elif not os.access(file_path, os.R_OK):
                errors.append(f"Required file not readable: {file_path}")

        if not self.bait_intervals:
            errors.append("At least one bait interval file is required")
        if not self.target_intervals:
            errors.append("At least one target interval file is required")

        for output_path in (self.output, self.per_target_coverage, self.per_base_coverage):
            if output_path is not None and output_path.parent != Path("") \
                    and output_path.parent.exists() and not os.access(output_path.parent, os.W_OK):
                errors.append(f"Output directory not writable: {output_path.parent}")

        return errors

    def get_summary(self) -> dict:
        """Get a summary of the configuration for logging."""
        return {
            "input_bam": str(self.input_bam),
            "output": str(self.output),
            "reference_fasta": str(self.reference_fasta) if self.reference_fasta else None,
            "minimum_mapping_quality": self.minimum_mapping_quality,
            "minimum_base_quality": self.minimum_base_quality,
            "coverage_cap": self.coverage_cap,
            "sample_size": self.sample_size,
            "near_distance": self.near_distance,
            "accumulation_levels": sorted(level.value for level in self.accumulation_levels),
            "threads": self.threads,
        }
