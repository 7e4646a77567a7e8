"""
Logging utilities for the HS metrics engine.
"""


from pathlib import Path
from structlog.stdlib import LoggerFactory
from typing import Any, Dict, Optional

import logging
import psutil
import structlog
import sys
import time


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    log_format: str = "json"
) -> structlog.BoundLogger:
    """
    Set up structured logging for a metrics run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Log format ("json" or "console")

    Returns:
        Configured logger instance
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, mode="w")
    else:
        # stderr keeps stdout free for the rich summary table
        handler = logging.StreamHandler(sys.stderr)
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    return structlog.get_logger("hs_metrics")


class PipelineLogger:
    """Context manager that logs the start, end and duration of a run stage.

    Context passed at construction is bound to the logger, so every event of
    the stage carries it.
    """

    def __init__(self, logger: structlog.BoundLogger, operation: str, **context: Any):
        self.operation = operation
        self.logger = logger.bind(operation=operation, **context)
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = round(time.perf_counter() - self.start_time, 3)
        if exc_type is None:
            self.logger.info(f"Completed {self.operation}", duration_seconds=duration, status="success")
        else:
            self.logger.error(
                f"Failed {self.operation}",
                duration_seconds=duration,
                status="error",
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            )

    def add_context(self, **kwargs: Any) -> "PipelineLogger":
        """Bind further context for the remaining events of the stage."""
        self.logger = self.logger.bind(**kwargs)
        return self

    def log_progress(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)


class PerformanceMonitor:
    """Record stage timings and memory use."""

    def __init__(self, logger: structlog.BoundLogger):
        self.logger = logger
        self.metrics: Dict[str, float] = {}
        self.start_times: Dict[str, float] = {}
        self.peak_ram_mb = 0.0

    def start_timer(self, name: str):
        """Start a timer for a named operation."""
        self.start_times[name] = time.time()

    def stop_timer(self, name: str) -> float:
        """Stop a timer and return the duration."""
        if name not in self.start_times:
            raise ValueError(f"Timer '{name}' was not started")

        duration = time.time() - self.start_times[name]
        self.metrics[name] = duration

        self.logger.info(
            f"Operation '{name}' completed",
            operation=name,
            duration_seconds=duration
        )

        del self.start_times[name]
        return duration

    def log_memory_usage(self, section: Optional[str] = None):
        """Log current memory usage and keep track of the peak."""
        process = psutil.Process()
        memory_info = process.memory_info()
        rss_mb = memory_info.rss / 1024 / 1024
        self.peak_ram_mb = max(self.peak_ram_mb, rss_mb)

        self.logger.info(
            "Memory usage",
            section=section,
            memory_rss_mb=rss_mb,
            memory_vms_mb=memory_info.vms / 1024 / 1024,
            memory_percent=process.memory_percent()
        )

    def get_summary(self) -> Dict[str, float]:
        """Get a summary of all recorded metrics."""
        summary = self.metrics.copy()
        summary["peak_ram_mb"] = self.peak_ram_mb
        return summary


def log_file_operation(logger: structlog.BoundLogger, operation: str, file_path: Path, **kwargs):
    """Log a file operation."""
    logger.info(
        f"File {operation}",
        operation=operation,
        file_path=str(file_path),
        file_size_mb=file_path.stat().st_size / 1024 / 1024 if file_path.exists() else 0,
        **kwargs
    )


def log_error(logger: structlog.BoundLogger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """Log an error with context."""
    logger.error(
        "Pipeline error",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context or {}
    )
