"""
Loading and normalisation of bait and target interval files.

Two formats are understood: interval lists (``@`` header lines
followed by 1-based, inclusive ``contig start end strand name`` rows) and
BED files (0-based, half-open).
"""

import gzip
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..exceptions import ConfigurationError
from ..models.intervals import Interval, ProbeSet


_SUFFIXES = (".gz", ".interval_list", ".intervals", ".bed", ".txt")


def render_probe_name_from_file(path: Path) -> str:
    """Probe set name from a file name, with interval file extensions removed."""
    name = Path(path).name
    stripped = True
    while stripped:
        stripped = False
        for suffix in _SUFFIXES:
            if name.endswith(suffix) and len(name) > len(suffix):
                name = name[: -len(suffix)]
                stripped = True
    return name


def _open_text(path: Path):
    if str(path).endswith(".gz"):
        return gzip.open(path, "rt")
    return open(path, "r")


def _is_bed(path: Path, lines: Sequence[str]) -> bool:
    if any(line.startswith("@") for line in lines):
        return False
    return ".bed" in Path(path).name


def parse_interval_file(path: Path) -> Tuple[List[Interval], Dict[str, int]]:
    """
    Parse one interval_list or BED file.

    Args:
        path: Interval file path

    Returns:
        Intervals in file order and the header sequence dictionary (empty for BED)

    Raises:
        ConfigurationError: If the file is unreadable or a row cannot be parsed
    """
    path = Path(path)
    if not path.is_file() or not os.access(path, os.R_OK):
        raise ConfigurationError(f"Interval file is not readable: {path}")

    try:
        with _open_text(path) as handle:
            lines = [line.rstrip("\n\r") for line in handle]
    except OSError as e:
        raise ConfigurationError(f"Cannot read interval file {path}: {e}") from e

    bed = _is_bed(path, lines)
    intervals: List[Interval] = []
    dictionary: Dict[str, int] = {}

    for line_number, line in enumerate(lines, start=1):
        if not line.strip() or line.startswith("#") or line.startswith("track") or line.startswith("browser"):
            continue
        if line.startswith("@"):
            if line.startswith("@SQ"):
                tags = dict(field.split(":", 1) for field in line.split("\t")[1:] if ":" in field)
                if "SN" in tags and "LN" in tags:
                    dictionary[tags["SN"]] = int(tags["LN"])
            continue

        fields = line.split("\t")
        if len(fields) < 3:
            raise ConfigurationError(f"{path}:{line_number}: expected at least 3 columns")
        try:
            start, end = int(fields[1]), int(fields[2])
        except ValueError:
            raise ConfigurationError(f"{path}:{line_number}: start and end must be integers")

        if bed:
            start += 1
            name = fields[3] if len(fields) > 3 else None
            strand = fields[5] if len(fields) > 5 and fields[5] in ("+", "-") else "+"
        else:
            strand = fields[3] if len(fields) > 3 and fields[3] in ("+", "-") else "+"
            name = fields[4] if len(fields) > 4 else None

        try:
            intervals.append(Interval(contig=fields[0], start=start, end=end, strand=strand, name=name))
        except ValueError as e:
            raise ConfigurationError(f"{path}:{line_number}: invalid interval: {e}") from e

    return intervals, dictionary


def normalize_intervals(
    intervals: Iterable[Interval],
    contig_order: Optional[Sequence[str]] = None,
) -> List[Interval]:
    """Sort intervals and merge any that overlap or abut; merged names are joined with '|'."""
    order = {contig: i for i, contig in enumerate(contig_order or [])}
    ordered = sorted(
        intervals,
        key=lambda iv: (order.get(iv.contig, len(order)), iv.contig, iv.start, iv.end),
    )
    merged: List[Interval] = []
    for interval in ordered:
        if merged and merged[-1].contig == interval.contig and interval.start <= merged[-1].end + 1:
            last = merged[-1]
            names = [n for n in (last.name, interval.name) if n]
            merged[-1] = Interval(
                contig=last.contig,
                start=last.start,
                end=max(last.end, interval.end),
                strand=last.strand,
                name="|".join(dict.fromkeys("|".join(names).split("|"))) if names else None,
            )
        else:
            merged.append(interval)
    return merged


def load_probe_set(
    paths: Sequence[Path],
    name: Optional[str] = None,
    logger: Optional[structlog.BoundLogger] = None,
) -> ProbeSet:
    """
    Load and normalise one or more interval files into a ProbeSet.

    Args:
        paths: Interval files (interval_list or BED)
        name: Probe set name; derived from the file names when absent
        logger: Logger instance

    Returns:
        Normalised ProbeSet

    Raises:
        ConfigurationError: If no file is given, a file is unreadable or the set is empty
    """
    logger = logger or structlog.get_logger(__name__)
    if not paths:
        raise ConfigurationError("No interval files given")

    intervals: List[Interval] = []
    dictionary: Dict[str, int] = {}
    for path in paths:
        file_intervals, file_dictionary = parse_interval_file(Path(path))
        for contig, length in file_dictionary.items():
            if dictionary.get(contig, length) != length:
                raise ConfigurationError(
                    f"Sequence dictionaries disagree on the length of {contig}: {path}"
                )
            dictionary[contig] = length
        intervals.extend(file_intervals)

    if not intervals:
        raise ConfigurationError(f"No intervals found in {', '.join(str(p) for p in paths)}")

    normalized = normalize_intervals(intervals, contig_order=list(dictionary))
    if name is None:
        name = ".".join(sorted({render_probe_name_from_file(Path(p)) for p in paths}))

    logger.info("Loaded intervals",
                probe_set=name,
                files=[str(p) for p in paths],
                raw_intervals=len(intervals),
                normalized_intervals=len(normalized))
    return ProbeSet(name=name, intervals=tuple(normalized), sequence_dictionary=dictionary)
