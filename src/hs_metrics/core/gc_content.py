"""
Per-target GC content and GC bucket assignment.
"""

from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pysam
import structlog

from ..exceptions import ConfigurationError
from ..models.intervals import Interval


_GC = np.frombuffer(b"GCgc", dtype=np.uint8)
_AT = np.frombuffer(b"ATat", dtype=np.uint8)


def load_reference(reference_fasta: Path) -> pysam.FastaFile:
    """Open an indexed FASTA file; a missing or unindexable file is fatal."""
    try:
        return pysam.FastaFile(str(reference_fasta))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot open reference {reference_fasta}: {e}") from e


def gc_fraction(bases: str) -> Optional[float]:
    """G+C over A+C+G+T; other symbols are ignored. None when no ACGT base is present."""
    codes = np.frombuffer(bases.encode("ascii"), dtype=np.uint8)
    gc = int(np.isin(codes, _GC).sum())
    at = int(np.isin(codes, _AT).sum())
    if gc + at == 0:
        return None
    return gc / (gc + at)


class GCContentTable:
    """GC fraction and bucket for every target, computed once per run.

    Buckets are equal-width over [0, 1]: bucket ``b`` is centred on
    ``b / (bucket_count - 1)``, so the default 101 buckets give one bucket per
    GC percent.
    """

    def __init__(self, fractions: Sequence[Optional[float]], bucket_count: int = 101):
        if bucket_count < 2:
            raise ValueError("GC bucket count must be at least 2")
        self.bucket_count = bucket_count
        self._fractions: List[Optional[float]] = list(fractions)
        self._buckets: List[Optional[int]] = [
            None if f is None else self.bucket_for_fraction(f) for f in self._fractions
        ]

    @classmethod
    def from_reference(
        cls,
        targets: Sequence[Interval],
        reference,
        bucket_count: int = 101,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> "GCContentTable":
        """Build the table from any object exposing pysam's ``fetch``/``references``."""
        logger = logger or structlog.get_logger(__name__)
        known = set(reference.references)
        fractions: List[Optional[float]] = []
        missing = 0
        for target in targets:
            if target.contig not in known:
                fractions.append(None)
                missing += 1
                continue
            bases = reference.fetch(target.contig, target.start - 1, target.end)
            fraction = gc_fraction(bases)
            if fraction is None:
                missing += 1
            fractions.append(fraction)
        if missing:
            logger.warning("Targets without usable reference bases are excluded from GC metrics",
                           targets_without_gc=missing,
                           total_targets=len(fractions))
        return cls(fractions, bucket_count)

    @classmethod
    def unavailable(cls, targets: Sequence[Interval], bucket_count: int = 101) -> "GCContentTable":
        """Table used when no reference sequence is supplied."""
        return cls([None] * len(targets), bucket_count)

    @property
    def available(self) -> bool:
        """True when at least one target has a GC value."""
        return any(f is not None for f in self._fractions)

    def __len__(self) -> int:
        return len(self._fractions)

    def bucket_for_fraction(self, fraction: float) -> int:
        bucket = int(np.floor(fraction * (self.bucket_count - 1) + 0.5))
        return min(max(bucket, 0), self.bucket_count - 1)

    def bucket_midpoint(self, bucket: int) -> float:
        return bucket / (self.bucket_count - 1)

    def gc_fraction_for(self, target_id: int) -> Optional[float]:
        return self._fractions[target_id]

    def gc_bucket_for(self, target_id: int) -> Optional[int]:
        return self._buckets[target_id]
