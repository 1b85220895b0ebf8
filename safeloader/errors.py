"""Exception hierarchy for SafeLoader image handling."""


class SafeloaderError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(SafeloaderError, ValueError):
    """Bad board database, unknown board, or invalid user input."""


class FormatError(SafeloaderError):
    """Image contents do not follow the SafeLoader format."""


class PartitionTableNotFound(FormatError):
    """The expected partition-table keyword was not found."""


class CapacityError(SafeloaderError):
    """Something does not fit into the space reserved for it."""


class TruncatedImageError(SafeloaderError, EOFError):
    """Input image ended before the data it declares."""
