"""
Exception types raised by the arm control layer.

Every failure surfaced to callers derives from ArmError, so application code
can catch the whole family at once or pick out a specific case.
"""

from typing import Optional


class ArmError(Exception):
    """Base class for all arm control failures."""


class ValidationError(ArmError, ValueError):
    """A parameter or enumerant was rejected before reaching the controller."""


class ArmConnectionError(ArmError, ConnectionError):
    """Opening the controller session failed."""

    def __init__(self, message: str, code: Optional[int] = None, cause=None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class ArmNotReadyError(ArmConnectionError):
    """A command needed a READY session but the arm is not connected."""


class GatewayError(ArmError):
    """The controller answered with a code outside the accepted set."""

    def __init__(self, operation: str, code: Optional[int], message: Optional[str] = None):
        super().__init__(message or f"{operation} failed: code={code}")
        self.operation = operation
        self.code = code


class MotionTimeoutError(ArmError, TimeoutError):
    """The arm did not report completion within the wait budget."""


class MotionCancelledError(ArmError):
    """A completion wait was cancelled by the caller."""
