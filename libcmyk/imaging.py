"""
imaging.py
~~~~~~~~~~

JPEG reading and writing with Pillow, and pairing of CMYK/RGB training
images by file name.
"""

import os
import logging
from typing import List, Tuple

import numpy as np
from PIL import Image

from libcmyk.errors import ImageMismatch

logger = logging.getLogger(__name__)

JPEG_SUFFIXES = ('.jpg', '.jpeg')


def read_cmyk(path: str) -> np.ndarray:
    """
    Decode a CMYK image into a (height, width, 4) uint8 array.

    Raises:
        ImageMismatch: If the image is not stored as CMYK
    """
    with Image.open(path) as img:
        if img.mode != 'CMYK':
            raise ImageMismatch(f"{path} is {img.mode}, not CMYK")
        return np.asarray(img, dtype=np.uint8)


def read_rgb(path: str) -> np.ndarray:
    """Decode any image into a (height, width, 3) uint8 RGB array."""
    with Image.open(path) as img:
        return np.asarray(img.convert('RGB'), dtype=np.uint8)


def write_rgb(pixels: np.ndarray, path: str, quality: int = 100) -> None:
    """Encode a (height, width, 3) uint8 array as a JPEG."""
    Image.fromarray(np.asarray(pixels, dtype=np.uint8)).save(
        path, format='JPEG', quality=quality
    )
    logger.debug(f"Wrote {pixels.shape[1]}x{pixels.shape[0]} image to {path}")


def paired_image_paths(cmyk_dir: str, rgb_dir: str) -> List[Tuple[str, str]]:
    """
    Pair every JPEG in ``cmyk_dir`` with the same-named file in ``rgb_dir``.

    Returns:
        (cmyk_path, rgb_path) tuples sorted by file name

    Raises:
        ImageMismatch: If a CMYK image has no RGB counterpart
    """
    pairs = []
    for name in sorted(os.listdir(cmyk_dir)):
        cmyk_path = os.path.join(cmyk_dir, name)
        if not os.path.isfile(cmyk_path):
            continue
        if not name.lower().endswith(JPEG_SUFFIXES):
            continue

        rgb_path = os.path.join(rgb_dir, name)
        if not os.path.isfile(rgb_path):
            raise ImageMismatch(f"no RGB counterpart for {name} in {rgb_dir}")
        pairs.append((cmyk_path, rgb_path))

    logger.debug(f"Found {len(pairs)} image pair(s) in {cmyk_dir}")
    return pairs
