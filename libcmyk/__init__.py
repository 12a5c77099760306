"""
libcmyk package
~~~~~~~~~~~~~~~

Learns a CMYK -> RGB color mapping with a small feedforward network
trained by backpropagation, optionally with an Elman-style context buffer.
Contains the network engine, pattern supply, persistence, color
conversion, and the API server.
"""

from libcmyk.errors import (
    NetworkError,
    InvalidInputLength,
    InvalidTargetLength,
    NotFound,
    CorruptState,
    ImageMismatch,
)
from libcmyk.network import FeedForward, BIAS

__version__ = "1.0.0"

__all__ = [
    'FeedForward',
    'BIAS',
    'NetworkError',
    'InvalidInputLength',
    'InvalidTargetLength',
    'NotFound',
    'CorruptState',
    'ImageMismatch',
]
