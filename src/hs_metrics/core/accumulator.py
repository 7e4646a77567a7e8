"""
Coverage accumulation over bait and target intervals.

One :class:`CoverageAccumulator` consumes aligned reads in input order and
keeps, for every stratification key a read maps to, a set of read/base
counters plus a capped depth arena covering every target base.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

import numpy as np
import structlog

from ..exceptions import MalformedRecordError
from ..models.metrics import AccumulationLevel
from ..models.reads import AlignedRead, ReadGroup
from .interval_index import BaitClass, IntervalIndex


DEFAULT_COVERAGE_CAP = 32767


class MetricKey(NamedTuple):
    """Stratification key; unused levels are None."""

    sample: Optional[str] = None
    library: Optional[str] = None
    read_group: Optional[str] = None


ALL_READS_KEY = MetricKey()

KeyExtractor = Callable[[AlignedRead], Optional[MetricKey]]


def all_reads_key(read: AlignedRead) -> MetricKey:
    return ALL_READS_KEY


class ReadGroupKeyExtractor:
    """Map a read to its SAMPLE, LIBRARY or READ_GROUP key through the header read groups."""

    def __init__(self, level: AccumulationLevel, read_groups: Mapping[str, ReadGroup]):
        if level == AccumulationLevel.ALL_READS:
            raise ValueError("ALL_READS does not depend on read groups")
        self.level = level
        self.read_groups = dict(read_groups)

    def __call__(self, read: AlignedRead) -> Optional[MetricKey]:
        group = self.read_groups.get(read.read_group) if read.read_group else None
        if group is None:
            return None
        if self.level == AccumulationLevel.SAMPLE:
            return MetricKey(group.sample)
        if self.level == AccumulationLevel.LIBRARY:
            return MetricKey(group.sample, group.library)
        return MetricKey(group.sample, group.library, group.id)


def key_extractors_for(
    levels: Iterable[AccumulationLevel],
    read_groups: Optional[Mapping[str, ReadGroup]] = None,
) -> List[KeyExtractor]:
    """Extractors for the requested levels; ALL_READS is always first."""
    extractors: List[KeyExtractor] = [all_reads_key]
    order = [AccumulationLevel.SAMPLE, AccumulationLevel.LIBRARY, AccumulationLevel.READ_GROUP]
    requested = set(levels)
    for level in order:
        if level in requested:
            extractors.append(ReadGroupKeyExtractor(level, read_groups or {}))
    return extractors


class ReadOutcome(Enum):
    ACCEPTED = "accepted"
    FILTERED = "filtered"
    MALFORMED = "malformed"
    SAMPLE_LIMIT = "sample_limit"


@dataclass
class ReadCounters:
    """Running totals for one stratification key."""

    total_reads: int = 0
    pf_reads: int = 0
    pf_bases: int = 0
    pf_reads_aligned: int = 0
    pf_bases_aligned: int = 0
    pf_unique_reads: int = 0
    pf_unique_reads_aligned: int = 0
    pf_unique_bases_aligned: int = 0
    duplicate_reads: int = 0
    secondary_reads: int = 0
    supplementary_reads: int = 0
    unmapped_reads: int = 0
    failed_mapping_quality_reads: int = 0
    malformed_reads: int = 0
    qualifying_reads: int = 0
    on_bait_bases: int = 0
    near_bait_bases: int = 0
    off_bait_bases: int = 0
    on_target_bases: int = 0
    on_target_from_pair_bases: int = 0
    bases_examined: int = 0
    excluded_duplicate_bases: int = 0
    excluded_mapq_bases: int = 0
    excluded_baseq_bases: int = 0
    excluded_overlap_bases: int = 0
    excluded_off_target_bases: int = 0
    pf_selected_pairs: int = 0
    pf_selected_unique_pairs: int = 0

    def merge(self, other: "ReadCounters") -> "ReadCounters":
        return ReadCounters(**{
            f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)
        })

    def add(self, **increments: int) -> None:
        for name, value in increments.items():
            setattr(self, name, getattr(self, name) + int(value))


def _depth_dtype(coverage_cap: int):
    for dtype in (np.uint16, np.int32):
        if coverage_cap <= np.iinfo(dtype).max:
            return dtype
    return np.int64


def _capped_sum(left: np.ndarray, right: np.ndarray, coverage_cap: int) -> np.ndarray:
    total = left.astype(np.int64) + right.astype(np.int64)
    return np.minimum(total, coverage_cap).astype(left.dtype)


class _KeyState:
    """Counters and coverage arena owned by one stratification key."""

    def __init__(self, arena_size: int, target_count: int, coverage_cap: int):
        self.counters = ReadCounters()
        self.depths = np.zeros(arena_size, dtype=_depth_dtype(coverage_cap))
        self.target_reads = np.zeros(target_count, dtype=np.int64)

    def absorb(self, other: "_KeyState", coverage_cap: int) -> None:
        self.counters = self.counters.merge(other.counters)
        self.depths = _capped_sum(self.depths, other.depths, coverage_cap)
        self.target_reads = self.target_reads + other.target_reads


class CoverageAccumulator:
    """Single-pass accumulator of coverage and read/base counters.

    Args:
        index: Shared bait/target index
        minimum_mapping_quality: Reads below this contribute no coverage
        minimum_base_quality: Bases below this contribute no coverage
        coverage_cap: Saturating maximum depth per target base
        sample_size: Stop after this many qualifying reads
        key_extractors: Functions mapping a read to its stratification keys
        sequence_dictionary: Contig lengths used to reject out-of-range records
        logger: Logger instance
    """

    def __init__(
        self,
        index: IntervalIndex,
        minimum_mapping_quality: int = 20,
        minimum_base_quality: int = 20,
        coverage_cap: int = DEFAULT_COVERAGE_CAP,
        sample_size: Optional[int] = None,
        key_extractors: Optional[List[KeyExtractor]] = None,
        sequence_dictionary: Optional[Mapping[str, int]] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        if coverage_cap <= 0:
            raise ValueError("Coverage cap must be positive")
        if sample_size is not None and sample_size <= 0:
            raise ValueError("Sample size must be positive")
        self.index = index
        self.minimum_mapping_quality = minimum_mapping_quality
        self.minimum_base_quality = minimum_base_quality
        self.coverage_cap = coverage_cap
        self.sample_size = sample_size
        self.key_extractors = list(key_extractors) if key_extractors else [all_reads_key]
        self.sequence_dictionary = dict(sequence_dictionary) if sequence_dictionary else {}
        self.logger = logger or structlog.get_logger(__name__)

        self.malformed_reads = 0
        self.qualifying_reads = 0
        self._saturated = False
        self._states: Dict[MetricKey, _KeyState] = {}
        self._state(ALL_READS_KEY)

    def __getstate__(self):
        state = self.__dict__.copy()
        state.pop("logger", None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.logger = structlog.get_logger(__name__)

    @property
    def is_saturated(self) -> bool:
        """True once the sample size has been reached."""
        return self._saturated

    def keys(self) -> List[MetricKey]:
        """Observed keys, ALL_READS first and the rest sorted."""
        others = sorted((k for k in self._states if k != ALL_READS_KEY),
                        key=lambda k: tuple("" if v is None else v for v in k))
        return [ALL_READS_KEY, *others]

    def counters(self, key: MetricKey = ALL_READS_KEY) -> ReadCounters:
        return self._states[key].counters

    def depths(self, key: MetricKey = ALL_READS_KEY) -> np.ndarray:
        """Read-only view of the coverage arena for a key."""
        view = self._states[key].depths.view()
        view.setflags(write=False)
        return view

    def target_read_counts(self, key: MetricKey = ALL_READS_KEY) -> np.ndarray:
        view = self._states[key].target_reads.view()
        view.setflags(write=False)
        return view

    def accept_all(self, reads: Iterable[AlignedRead]) -> "CoverageAccumulator":
        """Feed reads in order until the input ends or the sample size is reached."""
        for read in reads:
            self.accept(read)
            if self._saturated:
                self.logger.info("Sample size reached; remaining reads ignored",
                                 sample_size=self.sample_size)
                break
        return self

    def accept(self, read: AlignedRead) -> ReadOutcome:
        """Process one read, updating every key it belongs to."""
        if self._saturated:
            return ReadOutcome.SAMPLE_LIMIT
        try:
            self._validate(read)
        except MalformedRecordError as e:
            self.malformed_reads += 1
            self._states[ALL_READS_KEY].counters.malformed_reads += 1
            self.logger.debug("Skipping malformed record", read_name=e.read_name, reason=str(e))
            return ReadOutcome.MALFORMED

        states = self._states_for(read)
        self._add(states, total_reads=1)

        if read.is_secondary:
            self._add(states, secondary_reads=1)
            return ReadOutcome.FILTERED
        if read.is_supplementary:
            self._add(states, supplementary_reads=1)
            return ReadOutcome.FILTERED
        if not read.is_pf:
            return ReadOutcome.FILTERED
        self._add(states, pf_reads=1, pf_bases=read.read_length)

        if read.is_unmapped:
            self._add(states, unmapped_reads=1)
            return ReadOutcome.FILTERED

        aligned = read.total_aligned_bases
        self._add(states, pf_reads_aligned=1, pf_bases_aligned=aligned)

        positions, offsets = self._positions(read)
        classes = self.index.classify_positions(read.contig, positions)
        if read.is_first_of_pair and read.has_mapped_mate and np.any(classes != BaitClass.OFF_BAIT):
            self._add(states, pf_selected_pairs=1, pf_selected_unique_pairs=0 if read.is_duplicate else 1)

        if read.is_duplicate:
            self._add(states, duplicate_reads=1, excluded_duplicate_bases=aligned)
            return ReadOutcome.FILTERED
        self._add(states, pf_unique_reads=1, pf_unique_reads_aligned=1, pf_unique_bases_aligned=aligned)

        if read.mapping_quality < self.minimum_mapping_quality:
            self._add(states, failed_mapping_quality_reads=1, excluded_mapq_bases=aligned)
            return ReadOutcome.FILTERED

        self._accumulate(read, states, positions, offsets, classes)

        self.qualifying_reads += 1
        if self.sample_size is not None and self.qualifying_reads >= self.sample_size:
            self._saturated = True
        return ReadOutcome.ACCEPTED

    def merge(self, other: "CoverageAccumulator") -> "CoverageAccumulator":
        """Combine two accumulators built over the same index into a new one."""
        if other.index is not self.index and other.index.arena_size != self.index.arena_size:
            raise ValueError("Cannot merge accumulators built over different targets")
        if other.coverage_cap != self.coverage_cap:
            raise ValueError("Cannot merge accumulators with different coverage caps")
        merged = CoverageAccumulator(
            self.index,
            minimum_mapping_quality=self.minimum_mapping_quality,
            minimum_base_quality=self.minimum_base_quality,
            coverage_cap=self.coverage_cap,
            sample_size=self.sample_size,
            key_extractors=self.key_extractors,
            sequence_dictionary=self.sequence_dictionary,
            logger=self.logger,
        )
        merged.malformed_reads = self.malformed_reads + other.malformed_reads
        merged.qualifying_reads = self.qualifying_reads + other.qualifying_reads
        merged._saturated = self._saturated or other._saturated
        for source in (self, other):
            for key, state in source._states.items():
                merged._state(key).absorb(state, self.coverage_cap)
        return merged

    @classmethod
    def merge_all(cls, accumulators: Iterable["CoverageAccumulator"]) -> "CoverageAccumulator":
        accumulators = list(accumulators)
        if not accumulators:
            raise ValueError("Nothing to merge")
        merged = accumulators[0]
        for accumulator in accumulators[1:]:
            merged = merged.merge(accumulator)
        return merged

    def _state(self, key: MetricKey) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState(self.index.arena_size, len(self.index.targets), self.coverage_cap)
            self._states[key] = state
        return state

    def _states_for(self, read: AlignedRead) -> List[_KeyState]:
        keys = dict.fromkeys(k for k in (extract(read) for extract in self.key_extractors) if k is not None)
        return [self._state(key) for key in keys]

    @staticmethod
    def _add(states: List[_KeyState], **increments: int) -> None:
        for state in states:
            state.counters.add(**increments)

    def _accumulate(
        self,
        read: AlignedRead,
        states: List[_KeyState],
        positions: np.ndarray,
        offsets: np.ndarray,
        classes: np.ndarray,
    ) -> None:
        if read.qualities is None:
            passing = np.zeros(positions.shape, dtype=bool)
        else:
            passing = np.asarray(read.qualities)[offsets] >= self.minimum_base_quality
        kept = classes[passing]
        slots = self.index.arena_indices(read.contig, positions)
        # target cells only count bases that sit on a bait
        on_bait_target = (slots >= 0) & (classes == BaitClass.ON_BAIT)
        on_target_slots = slots[passing & on_bait_target]
        n_passing = int(passing.sum())
        n_on_target = int(on_target_slots.size)

        touched = slots[on_bait_target]
        if touched.size:
            touched = np.unique(np.searchsorted(self.index.target_offsets, touched, side="right") - 1)

        self._add(
            states,
            qualifying_reads=1,
            bases_examined=positions.size,
            excluded_overlap_bases=read.overlap_clipped_bases,
            excluded_baseq_bases=positions.size - n_passing,
            on_bait_bases=int(np.count_nonzero(kept == BaitClass.ON_BAIT)),
            near_bait_bases=int(np.count_nonzero(kept == BaitClass.NEAR_BAIT)),
            off_bait_bases=int(np.count_nonzero(kept == BaitClass.OFF_BAIT)),
            on_target_bases=n_on_target,
            on_target_from_pair_bases=n_on_target if read.has_mapped_mate else 0,
            excluded_off_target_bases=n_passing - n_on_target,
        )
        for state in states:
            if n_on_target:
                cells = state.depths[on_target_slots].astype(np.int64)
                state.depths[on_target_slots] = np.minimum(cells + 1, self.coverage_cap)
            if touched.size:
                state.target_reads[touched] += 1

    @staticmethod
    def _positions(read: AlignedRead) -> Tuple[np.ndarray, np.ndarray]:
        """Reference positions and read offsets of every aligned base."""
        if not read.blocks:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty
        positions = np.concatenate([
            np.arange(b.reference_start, b.reference_start + b.length, dtype=np.int64) for b in read.blocks
        ])
        offsets = np.concatenate([
            np.arange(b.read_start, b.read_start + b.length, dtype=np.int64) for b in read.blocks
        ])
        return positions, offsets

    def _validate(self, read: AlignedRead) -> None:
        if read.is_unmapped:
            return
        name = read.name
        if not read.contig:
            raise MalformedRecordError("mapped read without a reference sequence", name)
        contig_length = self.sequence_dictionary.get(read.contig)
        if self.sequence_dictionary and contig_length is None:
            raise MalformedRecordError(f"unknown reference sequence {read.contig}", name)
        if not read.blocks:
            if read.overlap_clipped_bases > 0:
                return
            raise MalformedRecordError("mapped read without aligned bases", name)
        if read.blocks[0].reference_start != read.start:
            raise MalformedRecordError("first aligned block does not start at the alignment start", name)

        reference_end = 0
        read_end = 0
        for block in read.blocks:
            if block.length <= 0:
                raise MalformedRecordError("aligned block with non-positive length", name)
            if block.reference_start < 1 or block.read_start < 0:
                raise MalformedRecordError("aligned block outside the sequence", name)
            if block.reference_start <= reference_end or block.read_start < read_end:
                raise MalformedRecordError("aligned blocks overlap or are out of order", name)
            reference_end = block.reference_end
            read_end = block.read_start + block.length

        if contig_length is not None and reference_end > contig_length:
            raise MalformedRecordError(
                f"alignment ends at {reference_end}, past the end of {read.contig} ({contig_length})", name
            )
        if read.qualities is not None and read_end > len(read.qualities):
            raise MalformedRecordError("aligned blocks extend past the base qualities", name)
