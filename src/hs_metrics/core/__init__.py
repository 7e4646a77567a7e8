"""
Core modules of the HS metrics engine.
"""

from .pipeline import HsMetricsPipeline

# Import submodules
from . import accumulator
from . import alignment
from . import derive
from . import gc_content
from . import interval_index
from . import intervals
from . import report

__all__ = [
    "HsMetricsPipeline",
    "accumulator",
    "alignment",
    "derive",
    "gc_content",
    "interval_index",
    "intervals",
    "report",
]
