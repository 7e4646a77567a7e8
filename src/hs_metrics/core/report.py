"""
Tab-separated report output for metrics records and coverage tables.
"""

from pathlib import Path
from typing import Optional, Sequence

import pandas as pd
import structlog

from ..exceptions import ReportWriteError
from ..models.metrics import HsMetrics
from ..utils.logging import log_file_operation


METRICS_CLASS = "HsMetrics"


def metrics_frame(records: Sequence[HsMetrics]) -> pd.DataFrame:
    """One row per record, columns in field order."""
    return pd.DataFrame([record.to_report_row() for record in records])


def _write_table(
    frame: pd.DataFrame,
    path: Path,
    header_lines: Sequence[str],
    logger: structlog.BoundLogger,
) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as handle:
            for line in header_lines:
                handle.write(f"{line}\n")
            frame.to_csv(handle, sep="\t", index=False, na_rep="", lineterminator="\n")
    except OSError as e:
        raise ReportWriteError(f"Cannot write {path}: {e}", path=path) from e
    log_file_operation(logger, "written", path, rows=len(frame))
    return path


def write_metrics(
    records: Sequence[HsMetrics],
    path: Path,
    command_line: Optional[str] = None,
    logger: Optional[structlog.BoundLogger] = None,
) -> Path:
    """
    Write metrics records as a tab-separated table.

    Args:
        records: Derived records, ALL_READS first
        path: Output file
        command_line: Recorded in a leading comment line when given
        logger: Logger instance

    Returns:
        Path of the written file

    Raises:
        ReportWriteError: If the file cannot be written
    """
    logger = logger or structlog.get_logger(__name__)
    header = [f"## {command_line}"] if command_line else []
    header.append(f"## METRICS CLASS\t{METRICS_CLASS}")
    return _write_table(metrics_frame(records), path, header, logger)


def write_per_target_coverage(
    table: pd.DataFrame,
    path: Path,
    logger: Optional[structlog.BoundLogger] = None,
) -> Path:
    """Write the per-target coverage table."""
    logger = logger or structlog.get_logger(__name__)
    return _write_table(table, path, [], logger)


def write_per_base_coverage(
    table: pd.DataFrame,
    path: Path,
    logger: Optional[structlog.BoundLogger] = None,
) -> Path:
    logger = logger or structlog.get_logger(__name__)
    return _write_table(table, path, [], logger)
