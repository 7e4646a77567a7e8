"""
Utility modules for the HS metrics engine.
"""

from .logging import (
    setup_logging,
    PipelineLogger,
    PerformanceMonitor,
    log_file_operation,
    log_error,
)

__all__ = [
    "setup_logging",
    "PipelineLogger",
    "PerformanceMonitor",
    "log_file_operation",
    "log_error",
]
