"""
errors.py
~~~~~~~~~

Typed failure conditions raised by the network engine and its
collaborators. Nothing in the engine catches these; they reach the
immediate caller unchanged.
"""


class NetworkError(Exception):
    """Base class for every libcmyk failure."""


class InvalidInputLength(NetworkError, ValueError):
    """An input vector does not have ``n_inputs - 1`` components."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"wrong number of inputs: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class InvalidTargetLength(NetworkError, ValueError):
    """A target vector does not have ``n_outputs`` components."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"wrong number of target values: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class NotFound(NetworkError, FileNotFoundError):
    """No persisted network exists at the requested location."""


class CorruptState(NetworkError, ValueError):
    """A persisted network record fails shape or type validation."""


class ImageMismatch(NetworkError, ValueError):
    """A CMYK/RGB image pair cannot be turned into training patterns."""
