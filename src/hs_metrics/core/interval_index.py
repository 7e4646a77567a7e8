"""
Per-contig index over bait, near-bait and target intervals.

Each contig keeps sorted start/end arrays so that the interval containing a
position is found with one binary search. Positions are 1-based and interval
boundaries are inclusive.
"""

from enum import IntEnum
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from ..models.intervals import Interval, ProbeSet


class BaitClass(IntEnum):
    """Classification of a reference position relative to the baits."""

    OFF_BAIT = 0
    NEAR_BAIT = 1
    ON_BAIT = 2


class _Spans(NamedTuple):
    starts: np.ndarray
    ends: np.ndarray


class _TargetSpans(NamedTuple):
    starts: np.ndarray
    ends: np.ndarray
    ids: np.ndarray  # global target index
    offsets: np.ndarray  # arena offset of each target's first base


def _frozen(values, dtype=np.int64) -> np.ndarray:
    array = np.asarray(values, dtype=dtype)
    array.setflags(write=False)
    return array


def _spans(intervals: List[Tuple[int, int]]) -> _Spans:
    return _Spans(_frozen([s for s, _ in intervals]), _frozen([e for _, e in intervals]))


def _locate(starts: np.ndarray, ends: np.ndarray, positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (slot, hit) for each position; slot is only meaningful where hit."""
    slots = np.searchsorted(starts, positions, side="right") - 1
    hit = slots >= 0
    hit[hit] = positions[hit] <= ends[slots[hit]]
    return slots, hit


def pad_and_merge(intervals: List[Interval], distance: int) -> Dict[str, List[Tuple[int, int]]]:
    """Pad every interval by ``distance`` on both sides and merge per contig."""
    padded: Dict[str, List[Tuple[int, int]]] = {}
    for interval in intervals:
        padded.setdefault(interval.contig, []).append(
            (max(1, interval.start - distance), interval.end + distance)
        )
    merged: Dict[str, List[Tuple[int, int]]] = {}
    for contig, spans in padded.items():
        out: List[Tuple[int, int]] = []
        for start, end in sorted(spans):
            if out and start <= out[-1][1] + 1:
                out[-1] = (out[-1][0], max(out[-1][1], end))
            else:
                out.append((start, end))
        merged[contig] = out
    return merged


class IntervalIndex:
    """Read-only lookup structure shared across the whole run.

    Targets are laid out back to back in a single coverage arena: target
    ``i`` owns slots ``target_offsets[i]`` to
    ``target_offsets[i] + target_lengths[i] - 1``.
    """

    def __init__(self, baits: ProbeSet, targets: ProbeSet, near_distance: int = 250):
        if near_distance < 0:
            raise ValueError("Near distance must be non-negative")
        self.baits = baits
        self.targets = targets
        self.near_distance = near_distance

        bait_spans: Dict[str, List[Tuple[int, int]]] = {}
        for bait in baits.intervals:
            bait_spans.setdefault(bait.contig, []).append((bait.start, bait.end))
        self._baits: Dict[str, _Spans] = {
            contig: _spans(sorted(spans)) for contig, spans in bait_spans.items()
        }
        self._padded: Dict[str, _Spans] = {
            contig: _spans(spans) for contig, spans in pad_and_merge(list(baits.intervals), near_distance).items()
        }

        lengths = [target.length for target in targets.intervals]
        self.target_lengths = _frozen(lengths)
        self.target_offsets = _frozen(np.concatenate(([0], np.cumsum(lengths)[:-1])) if lengths else [])
        self.arena_size = int(sum(lengths))

        by_contig: Dict[str, List[int]] = {}
        for target_id, target in enumerate(targets.intervals):
            by_contig.setdefault(target.contig, []).append(target_id)
        self._targets: Dict[str, _TargetSpans] = {}
        for contig, ids in by_contig.items():
            ids = sorted(ids, key=lambda i: targets.intervals[i].start)
            self._targets[contig] = _TargetSpans(
                starts=_frozen([targets.intervals[i].start for i in ids]),
                ends=_frozen([targets.intervals[i].end for i in ids]),
                ids=_frozen(ids),
                offsets=_frozen([self.target_offsets[i] for i in ids]),
            )

    @property
    def bait_territory(self) -> int:
        return self.baits.territory

    @property
    def target_territory(self) -> int:
        return self.arena_size

    @property
    def contigs(self) -> List[str]:
        return list(dict.fromkeys([*self._padded, *self._targets]))

    def classify(self, contig: str, position: int) -> BaitClass:
        """Classify a single 1-based position."""
        return BaitClass(int(self.classify_positions(contig, np.array([position]))[0]))

    def on_target(self, contig: str, position: int) -> bool:
        return self.target_for(contig, position) is not None

    def target_for(self, contig: str, position: int) -> Optional[int]:
        """Index of the target containing the position, if any."""
        target_id = int(self.target_indices(contig, np.array([position]))[0])
        return None if target_id < 0 else target_id

    def classify_positions(self, contig: Optional[str], positions: np.ndarray) -> np.ndarray:
        """Vectorised :meth:`classify`; returns an int8 array of BaitClass values."""
        positions = np.asarray(positions, dtype=np.int64)
        result = np.full(positions.shape, BaitClass.OFF_BAIT, dtype=np.int8)
        padded = self._padded.get(contig)
        if padded is None or positions.size == 0:
            return result
        _, near = _locate(padded.starts, padded.ends, positions)
        result[near] = BaitClass.NEAR_BAIT
        baits = self._baits[contig]
        _, on = _locate(baits.starts, baits.ends, positions)
        result[on] = BaitClass.ON_BAIT
        return result

    def target_indices(self, contig: Optional[str], positions: np.ndarray) -> np.ndarray:
        """Target id per position, -1 where the position is not on target."""
        positions = np.asarray(positions, dtype=np.int64)
        result = np.full(positions.shape, -1, dtype=np.int64)
        spans = self._targets.get(contig)
        if spans is None or positions.size == 0:
            return result
        slots, hit = _locate(spans.starts, spans.ends, positions)
        result[hit] = spans.ids[slots[hit]]
        return result

    def arena_indices(self, contig: Optional[str], positions: np.ndarray) -> np.ndarray:
        """Coverage arena slot per position, -1 where the position is not on target."""
        positions = np.asarray(positions, dtype=np.int64)
        result = np.full(positions.shape, -1, dtype=np.int64)
        spans = self._targets.get(contig)
        if spans is None or positions.size == 0:
            return result
        slots, hit = _locate(spans.starts, spans.ends, positions)
        result[hit] = spans.offsets[slots[hit]] + (positions[hit] - spans.starts[slots[hit]])
        return result

    def target_slice(self, target_id: int) -> slice:
        """Arena slice holding the depth of one target."""
        offset = int(self.target_offsets[target_id])
        return slice(offset, offset + int(self.target_lengths[target_id]))
