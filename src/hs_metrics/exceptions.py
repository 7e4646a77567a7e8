"""Custom exceptions for the HS metrics engine."""


class HsMetricsError(Exception):
    """Base exception for all HS metrics errors."""

    pass


class ConfigurationError(HsMetricsError):
    """Raised when configuration or the interval design is invalid or unreadable."""

    pass


class MalformedRecordError(HsMetricsError):
    """Raised when an aligned read is internally inconsistent.

    The accumulator catches this, tallies the read and carries on.
    """

    def __init__(self, message="", read_name=None):
        """Initialize MalformedRecordError.

        Args:
            message: Reason the record was rejected
            read_name: Name of the offending read, if known
        """
        super().__init__(message)
        self.read_name = read_name


class AlignmentSourceError(HsMetricsError):
    """Raised when the alignment file cannot be read; aborts the run."""

    pass


class ReportWriteError(HsMetricsError):
    """Raised when metrics were computed but could not be written out."""

    def __init__(self, message="", path=None):
        super().__init__(message)
        self.path = path
