"""
Error kinds shared by every layer.

Each service defines its own exception subclass next to the code that raises
it; the kind tells callers how to surface the failure.
"""

from enum import Enum


class ErrorKind(str, Enum):
    NETWORK = "network"
    HTTP_STATUS = "http-status"
    CANCELLED = "cancelled"
    VALIDATION = "validation"
    GENERATION = "generation"
    PERMISSION = "permission"
    STORE_MISS = "store-miss"


class OutreachError(Exception):
    """Base exception carrying a human-readable message and an error kind."""

    def __init__(self, message: str, kind: ErrorKind, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.recoverable = recoverable

    @property
    def is_cancelled(self) -> bool:
        return self.kind is ErrorKind.CANCELLED
