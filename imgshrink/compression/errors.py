"""Exceptions raised by the compression layer."""


class CompressionError(Exception):
    """Base class for all compression errors"""


class InvalidTarget(CompressionError, ValueError):
    """
    A target-size request with a missing or non-positive byte budget.

    Raised before any encode attempt is made.
    """

    def __init__(self, target_size_bytes):
        self.target_size_bytes = target_size_bytes
        super().__init__(f"Target size must be positive, got {target_size_bytes!r}")


class DecodeError(CompressionError):
    """Source bytes could not be decoded as an image"""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Could not decode {name}: {reason}")
