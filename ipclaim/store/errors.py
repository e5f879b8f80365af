"""Errors raised by resource store clients."""

from typing import Optional


class StoreError(Exception):
    """
    Base class for resource store failures.

    Attributes:
        kind: Resource kind the operation targeted
        name: Resource name, when the operation targeted a single object
    """

    retryable = True

    def __init__(self, message: str, kind: Optional[str] = None, name: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.name = name


class AlreadyExistsError(StoreError):
    """Create of a name that is already present."""

    retryable = False


class NotFoundError(StoreError):
    """Update or delete of a name that is not present."""

    retryable = False


class ConflictError(StoreError):
    """Update carrying a stale resource version."""

    retryable = False


class AbortedError(StoreError):
    """Call not issued because the controller is stopping."""

    retryable = False
