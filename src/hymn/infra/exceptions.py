"""
Custom exceptions for Hymn.

This module provides custom exception classes for the error taxonomy of the
broadcast timeline engine. Upstream failures are raised by collaborator
adapters and always absorbed at the component boundary that made the call;
invariant violations and caller misuse are the only errors that escape.
"""


class HymnError(Exception):
    """Base exception for all Hymn errors."""

    pass


class ValidationError(HymnError):
    """Raised when a caller hands the core an invalid argument."""

    pass


class InvalidBlockError(ValidationError):
    """Raised when a block's time range is empty or inverted."""

    pass


class InvariantViolation(HymnError):
    """A block breaks the segment containment/overlap contract."""

    def __init__(self, block_id: str, message: str) -> None:
        super().__init__(f"block {block_id!r}: {message}")
        self.block_id = block_id


class ContainmentViolation(InvariantViolation):
    """A segment starts before 0 or ends after the block duration."""

    pass


class OverlapViolation(InvariantViolation):
    """Two segments claim the same offset range."""

    pass


class UpstreamError(HymnError):
    """An external collaborator failed."""

    error_code = "UPSTREAM_UNAVAILABLE"


class UpstreamTimeout(UpstreamError):
    """An external collaborator did not answer in time."""

    error_code = "UPSTREAM_TIMEOUT"


class MalformedResponse(UpstreamError):
    """An external collaborator answered with an unexpected shape."""

    error_code = "MALFORMED_RESPONSE"


class LockedSegmentError(HymnError):
    """Raised when a past or locked segment would be mutated."""

    pass
