"""
Data models for the HS metrics engine.
"""

from .intervals import Interval, ProbeSet
from .metrics import AccumulationLevel, HsMetrics
from .reads import AlignedRead, AlignmentBlock, ReadGroup

__all__ = [
    "Interval",
    "ProbeSet",
    "AccumulationLevel",
    "HsMetrics",
    "AlignedRead",
    "AlignmentBlock",
    "ReadGroup",
]
