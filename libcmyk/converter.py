"""
converter.py
~~~~~~~~~~~~

CMYK -> RGB conversion with a trained network.
"""

import logging
from typing import Tuple

import numpy as np

from libcmyk.network import FeedForward
from libcmyk.patterns import (
    CMYK_CHANNELS,
    RGB_CHANNELS,
    CHANNEL_MAX,
    normalize_channels,
    denormalize_channels,
)
from libcmyk.errors import ImageMismatch
from libcmyk import imaging
from libcmyk import model_persistence

logger = logging.getLogger(__name__)


class Converter:
    """Runs one forward pass per pixel and rescales the result to 8 bits."""

    def __init__(self, network: FeedForward):
        if network.n_outputs < RGB_CHANNELS:
            raise ValueError(
                f"network has {network.n_outputs} outputs, needs at least "
                f"{RGB_CHANNELS}"
            )
        self.network = network

    @classmethod
    def from_file(cls, path: str) -> 'Converter':
        """Load the network at ``path``; NotFound and CorruptState propagate."""
        return cls(model_persistence.load(path))

    def cmyk_to_rgba(self, c: int, m: int, y: int, k: int) -> Tuple[int, int, int, int]:
        """Convert one 8-bit CMYK pixel. Alpha is always opaque."""
        outputs = self.network.update(normalize_channels([c, m, y, k]))
        r, g, b = denormalize_channels(outputs[:RGB_CHANNELS])
        return int(r), int(g), int(b), CHANNEL_MAX

    def convert_pixels(self, cmyk: np.ndarray) -> np.ndarray:
        """
        Convert a (height, width, 4) CMYK array to (height, width, 3) RGB.

        Pixels are fed row by row; with a context window configured the
        result depends on that order.
        """
        cmyk = np.asarray(cmyk)
        if cmyk.ndim != 3 or cmyk.shape[2] != CMYK_CHANNELS:
            raise ImageMismatch(f"not a CMYK pixel array: shape {cmyk.shape}")

        height, width = cmyk.shape[:2]
        rgb = np.empty((height, width, RGB_CHANNELS), dtype=np.uint8)
        inputs = normalize_channels(cmyk)
        for y in range(height):
            for x in range(width):
                outputs = self.network.update(inputs[y, x])
                rgb[y, x] = denormalize_channels(outputs[:RGB_CHANNELS])
        return rgb

    def convert_file(self, src: str, dst: str, quality: int = 100) -> None:
        """Convert a CMYK JPEG at ``src`` into an RGB JPEG at ``dst``."""
        cmyk = imaging.read_cmyk(src)
        logger.info(f"Converting {src} ({cmyk.shape[1]}x{cmyk.shape[0]})")
        imaging.write_rgb(self.convert_pixels(cmyk), dst, quality=quality)
        logger.info(f"Wrote {dst}")
