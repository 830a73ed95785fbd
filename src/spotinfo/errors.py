"""Error kinds surfaced to spotinfo callers."""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine readable error categories."""

    INVALID_OS = "INVALID_OS"
    INVALID_PATTERN = "INVALID_PATTERN"
    REGION_NOT_FOUND = "REGION_NOT_FOUND"
    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


class SpotinfoError(Exception):
    """Base class for errors that fail a whole request."""

    kind: ErrorKind = ErrorKind.INTERNAL


class InvalidOSError(SpotinfoError):
    """Raised when the requested OS is neither linux nor windows."""

    kind = ErrorKind.INVALID_OS


class InvalidPatternError(SpotinfoError):
    """Raised when the instance type pattern is not a valid regular expression."""

    kind = ErrorKind.INVALID_PATTERN


class RegionNotFoundError(SpotinfoError):
    """Raised when a requested region is absent from the advisor dataset."""

    kind = ErrorKind.REGION_NOT_FOUND


class DataUnavailableError(SpotinfoError):
    """Raised when neither the live dataset nor the embedded copy can be parsed."""

    kind = ErrorKind.DATA_UNAVAILABLE


class OperationCancelledError(SpotinfoError):
    """Raised at the process boundary when the caller cancelled the request."""

    kind = ErrorKind.CANCELLED


class InternalError(SpotinfoError):
    """Raised for unexpected failures."""

    kind = ErrorKind.INTERNAL


def as_spotinfo_error(error: BaseException) -> SpotinfoError:
    """Return ``error`` unchanged, or wrapped in ``InternalError`` if unexpected.

    The original exception is kept as ``__cause__``.
    """
    if isinstance(error, SpotinfoError):
        return error
    internal = InternalError(str(error))
    internal.__cause__ = error
    return internal


__all__ = [
    "DataUnavailableError",
    "ErrorKind",
    "InternalError",
    "InvalidOSError",
    "InvalidPatternError",
    "OperationCancelledError",
    "RegionNotFoundError",
    "SpotinfoError",
    "as_spotinfo_error",
]
