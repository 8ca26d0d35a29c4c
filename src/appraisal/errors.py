from __future__ import annotations


NO_COMPARABLES_MESSAGE = "Add at least one comparable vehicle to calculate market value"


class AppraisalError(Exception):
    """Base class for failures raised by the market value engine."""


class InvalidArgument(AppraisalError, ValueError):
    pass


class NoValidComparables(AppraisalError):
    def __init__(self, reason: str = "") -> None:
        message = f"{reason}. {NO_COMPARABLES_MESSAGE}" if reason else NO_COMPARABLES_MESSAGE
        super().__init__(message)
        self.reason = reason


class IncompleteComparable(AppraisalError):
    """A comparable reached the aggregator without usable score/adjustment data."""

    def __init__(self, index: int, field: str, message: str) -> None:
        super().__init__(f"Comparable {index}: {message}")
        self.index = index
        self.field = field
