"""
Calendar Engine Exceptions
"""

from typing import Optional


class CalendarError(Exception):
    """Base exception for the manufacturing calendar engine."""


class InvalidRecordError(CalendarError, ValueError):
    """Raised when a single operation or machine record cannot be parsed."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class UnsupportedRecordError(InvalidRecordError):
    """
    Raised for a well-formed record this engine does not schedule, such as
    calendar events of a type other than manufacturing or maintenance.
    """


class CalendarFetchError(CalendarError):
    """
    Raised when the operation record source or machine registry is unavailable.

    The whole view build fails; callers keep their last good view and retry.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
