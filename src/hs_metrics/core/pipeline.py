"""
Main pipeline class for collecting hybrid-selection metrics.
"""

from concurrent.futures import ProcessPoolExecutor
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

import structlog

from ..config.settings import HsMetricsConfig
from ..exceptions import ConfigurationError
from ..models.metrics import HsMetrics
from ..utils import PipelineLogger, PerformanceMonitor, log_error
from . import report
from .accumulator import CoverageAccumulator, key_extractors_for
from .alignment import AlignmentHeader, iter_aligned_reads, read_alignment_header
from .derive import MetricsDeriver
from .gc_content import GCContentTable, load_reference
from .interval_index import IntervalIndex
from .intervals import load_probe_set


class Shard(NamedTuple):
    """A slice of the alignment file processed by one worker."""

    contig: Optional[str]
    unplaced_only: bool = False


def _accumulate_shard(
    shard: Shard,
    input_bam: Path,
    reference_fasta: Optional[Path],
    clip_overlapping_reads: bool,
    index: IntervalIndex,
    accumulator_options: Dict[str, Any],
) -> CoverageAccumulator:
    """Worker entry point: accumulate one shard in its own process."""
    logger = structlog.get_logger(__name__).bind(contig=shard.contig, unplaced_only=shard.unplaced_only)
    accumulator = CoverageAccumulator(index, logger=logger, **accumulator_options)
    reads = iter_aligned_reads(
        input_bam,
        clip_overlapping_reads=clip_overlapping_reads,
        contig=shard.contig,
        unplaced_only=shard.unplaced_only,
        reference_fasta=reference_fasta,
        logger=logger,
    )
    return accumulator.accept_all(reads)


class CollectionResult(NamedTuple):
    records: List[HsMetrics]
    accumulator: CoverageAccumulator
    deriver: MetricsDeriver


class HsMetricsPipeline:
    """Load the design, accumulate coverage in one pass and write the reports."""

    def __init__(self, config: HsMetricsConfig, logger: structlog.BoundLogger):
        """
        Initialize the pipeline.

        Args:
            config: Run configuration
            logger: Structured logger instance

        Raises:
            ConfigurationError: If any input is missing or unreadable
        """
        self.config = config
        self.logger = logger
        self.monitor = PerformanceMonitor(logger)

        errors = self.config.validate_setup()
        if errors:
            error_msg = "Pipeline setup validation failed:\n" + \
                "\n".join(f"  - {e}" for e in errors)
            raise ConfigurationError(error_msg)

        self.logger.info("Pipeline initialized successfully",
                         config_summary=self.config.get_summary())

    def load_index(self) -> IntervalIndex:
        """Load bait and target interval files into an IntervalIndex."""
        baits = load_probe_set(self.config.bait_intervals, name=self.config.bait_set_name, logger=self.logger)
        targets = load_probe_set(self.config.target_intervals, logger=self.logger)
        index = IntervalIndex(baits, targets, near_distance=self.config.near_distance)
        self.logger.info("Interval index built",
                         bait_set=baits.name,
                         bait_territory=index.bait_territory,
                         target_territory=index.target_territory,
                         targets=len(targets))
        return index

    def load_gc_table(self, index: IntervalIndex) -> Optional[GCContentTable]:
        """GC table from the reference, or None when no reference is configured."""
        if self.config.reference_fasta is None:
            self.logger.info("No reference supplied; GC dropout will not be reported")
            return None
        with load_reference(self.config.reference_fasta) as reference:
            return GCContentTable.from_reference(
                index.targets.intervals, reference,
                bucket_count=self.config.gc_bucket_count,
                logger=self.logger,
            )

    def check_dictionaries(self, index: IntervalIndex, header: AlignmentHeader) -> None:
        """Interval and alignment dictionaries must agree on shared contig lengths."""
        for probe_set in (index.baits, index.targets):
            for contig, length in probe_set.sequence_dictionary.items():
                expected = header.sequence_dictionary.get(contig)
                if expected is not None and expected != length:
                    raise ConfigurationError(
                        f"Length of {contig} in {probe_set.name} ({length}) "
                        f"does not match the alignment header ({expected})"
                    )
        unknown = sorted({iv.contig for iv in index.targets.intervals} - set(header.sequence_dictionary))
        if header.sequence_dictionary and unknown:
            self.logger.warning("Targets on contigs absent from the alignment header", contigs=unknown)

    def genome_size(self, index: IntervalIndex, header: AlignmentHeader) -> Optional[int]:
        dictionary = header.sequence_dictionary or index.targets.sequence_dictionary
        return sum(dictionary.values()) or None

    def accumulate(self, index: IntervalIndex, header: AlignmentHeader) -> CoverageAccumulator:
        """Run the single pass over the alignment file, sharded by contig when allowed."""
        options = {
            "minimum_mapping_quality": self.config.minimum_mapping_quality,
            "minimum_base_quality": self.config.minimum_base_quality,
            "coverage_cap": self.config.coverage_cap,
            "sample_size": self.config.sample_size,
            "key_extractors": key_extractors_for(self.config.accumulation_levels, header.read_groups),
            "sequence_dictionary": header.sequence_dictionary,
        }

        sharded = self.config.threads > 1 and header.has_index and self.config.sample_size is None
        if self.config.threads > 1 and not sharded:
            self.logger.warning("Falling back to a serial pass",
                                has_index=header.has_index,
                                sample_size=self.config.sample_size)

        if not sharded:
            accumulator = CoverageAccumulator(index, logger=self.logger, **options)
            reads = iter_aligned_reads(
                self.config.input_bam,
                clip_overlapping_reads=self.config.clip_overlapping_reads,
                reference_fasta=self.config.reference_fasta,
                logger=self.logger,
            )
            return accumulator.accept_all(reads)

        shards = [Shard(contig) for contig in header.contigs] + [Shard(None, unplaced_only=True)]
        worker = partial(
            _accumulate_shard,
            input_bam=self.config.input_bam,
            reference_fasta=self.config.reference_fasta,
            clip_overlapping_reads=self.config.clip_overlapping_reads,
            index=index,
            accumulator_options=options,
        )
        self.logger.info("Accumulating in parallel", shards=len(shards), workers=self.config.threads)
        with ProcessPoolExecutor(max_workers=self.config.threads) as executor:
            accumulators = list(executor.map(worker, shards))
        merged = CoverageAccumulator.merge_all(accumulators)
        merged.logger = self.logger
        return merged

    def run(self) -> CollectionResult:
        """
        Run the complete metrics collection.

        Returns:
            CollectionResult with the derived records, the accumulator and the deriver

        Raises:
            ConfigurationError: If the design or inputs are invalid
            AlignmentSourceError: If the alignment file cannot be read
            ReportWriteError: If an output cannot be written
        """
        with PipelineLogger(self.logger, "collect_hs_metrics", input_bam=str(self.config.input_bam)) as plog:
            try:
                self.monitor.start_timer("setup")
                header = read_alignment_header(self.config.input_bam, self.config.reference_fasta)
                index = self.load_index()
                self.check_dictionaries(index, header)
                gc_table = self.load_gc_table(index)
                self.monitor.stop_timer("setup")

                self.monitor.start_timer("accumulate")
                accumulator = self.accumulate(index, header)
                self.monitor.stop_timer("accumulate")
                self.monitor.log_memory_usage("accumulate")
                plog.log_progress("Accumulation finished",
                                  qualifying_reads=accumulator.qualifying_reads,
                                  malformed_reads=accumulator.malformed_reads)

                deriver = MetricsDeriver(
                    index,
                    gc_table=gc_table,
                    bait_set_name=self.config.bait_set_name,
                    genome_size=self.genome_size(index, header),
                    coverage_thresholds=self.config.coverage_thresholds,
                )
                records = deriver.derive(accumulator)

                self.monitor.start_timer("write_reports")
                self.write_reports(records, accumulator, deriver)
                self.monitor.stop_timer("write_reports")
            except Exception as e:
                log_error(self.logger, e, context={"operation": "collect_hs_metrics",
                                                   "input_bam": str(self.config.input_bam)})
                raise

            self.logger.info("Performance summary", **self.monitor.get_summary())
            return CollectionResult(records, accumulator, deriver)

    def write_reports(
        self,
        records: List[HsMetrics],
        accumulator: CoverageAccumulator,
        deriver: MetricsDeriver,
    ) -> List[Path]:
        """Write the metrics file and any requested coverage tables."""
        written = [report.write_metrics(records, self.config.output, logger=self.logger)]
        if self.config.per_target_coverage is not None:
            written.append(report.write_per_target_coverage(
                deriver.per_target_table(accumulator), self.config.per_target_coverage, logger=self.logger
            ))
        if self.config.per_base_coverage is not None:
            written.append(report.write_per_base_coverage(
                deriver.per_base_table(accumulator), self.config.per_base_coverage, logger=self.logger
            ))
        return written
