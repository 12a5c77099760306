"""
patterns.py
~~~~~~~~~~~

Turns paired CMYK/RGB pixel data into normalized (input, target) training
patterns, and maps network outputs back to 8-bit channels.

Pixel arrays use numpy's image convention: shape (height, width, channels),
dtype uint8.
"""

from typing import Iterator, List, Sequence, Tuple

import numpy as np

from libcmyk.errors import ImageMismatch

CHANNEL_MAX = 0xff

CMYK_CHANNELS = 4
RGB_CHANNELS = 3

# C M Y K R G B
PACKED_RECORD_SIZE = CMYK_CHANNELS + RGB_CHANNELS

# Value of the reserved alpha slot when targets carry one
OPAQUE = 1.0

Pattern = Tuple[np.ndarray, np.ndarray]


def normalize_channels(values: Sequence[int]) -> np.ndarray:
    """Map 8-bit channel samples onto [0, 1]."""
    return np.asarray(values, dtype=np.float64) / CHANNEL_MAX


def denormalize_channels(values: Sequence[float]) -> np.ndarray:
    """Map [0, 1] channel values back to uint8, rounding and clipping."""
    scaled = np.rint(np.asarray(values, dtype=np.float64) * CHANNEL_MAX)
    return np.clip(scaled, 0, CHANNEL_MAX).astype(np.uint8)


def pixel_pattern(
    cmyk: Sequence[int],
    rgb: Sequence[int],
    alpha: bool = False
) -> Pattern:
    """
    Build one training pattern from an 8-bit CMYK and RGB pixel.

    Args:
        cmyk: (C, M, Y, K) samples
        rgb: (R, G, B) samples
        alpha: Append a fixed, fully opaque 4th target slot

    Returns:
        (inputs, targets), both float64 arrays in [0, 1]
    """
    if len(cmyk) != CMYK_CHANNELS or len(rgb) != RGB_CHANNELS:
        raise ImageMismatch(
            f"expected {CMYK_CHANNELS} CMYK and {RGB_CHANNELS} RGB channels, "
            f"got {len(cmyk)} and {len(rgb)}"
        )

    inputs = normalize_channels(cmyk)
    targets = normalize_channels(rgb)
    if alpha:
        targets = np.append(targets, OPAQUE)
    return inputs, targets


def _check_pair(cmyk: np.ndarray, rgb: np.ndarray) -> None:
    if cmyk.ndim != 3 or cmyk.shape[2] != CMYK_CHANNELS:
        raise ImageMismatch(f"not a CMYK pixel array: shape {cmyk.shape}")
    if rgb.ndim != 3 or rgb.shape[2] != RGB_CHANNELS:
        raise ImageMismatch(f"not an RGB pixel array: shape {rgb.shape}")
    if cmyk.shape[:2] != rgb.shape[:2]:
        raise ImageMismatch(
            f"image sizes differ: CMYK {cmyk.shape[1]}x{cmyk.shape[0]}, "
            f"RGB {rgb.shape[1]}x{rgb.shape[0]}"
        )


def patterns_from_arrays(
    cmyk: np.ndarray,
    rgb: np.ndarray,
    alpha: bool = False
) -> List[Pattern]:
    """
    Build one pattern per pixel from a pair of same-sized images.

    Pixels are visited column by column (x outer, y inner).

    Args:
        cmyk: (height, width, 4) uint8 array
        rgb: (height, width, 3) uint8 array
        alpha: Append a fully opaque 4th target slot

    Raises:
        ImageMismatch: If the arrays differ in size or channel count
    """
    cmyk = np.asarray(cmyk)
    rgb = np.asarray(rgb)
    _check_pair(cmyk, rgb)

    # Transpose to (width, height, channels) so reshape walks x outer, y inner
    inputs = normalize_channels(cmyk.transpose(1, 0, 2).reshape(-1, CMYK_CHANNELS))
    targets = normalize_channels(rgb.transpose(1, 0, 2).reshape(-1, RGB_CHANNELS))
    if alpha:
        targets = np.hstack([targets, np.full((len(targets), 1), OPAQUE)])

    return list(zip(inputs, targets))


def pack_pixels(cmyk: np.ndarray, rgb: np.ndarray) -> bytes:
    """
    Encode an image pair as a stream of 7-byte C M Y K R G B records.

    Pixels are written row by row (y outer, x inner).
    """
    cmyk = np.asarray(cmyk, dtype=np.uint8)
    rgb = np.asarray(rgb, dtype=np.uint8)
    _check_pair(cmyk, rgb)
    return np.concatenate([cmyk, rgb], axis=2).tobytes()


def iter_packed_patterns(data: bytes, alpha: bool = False) -> Iterator[Pattern]:
    """
    Decode a stream written by pack_pixels() into single patterns.

    A trailing partial record is ignored.
    """
    usable = len(data) - len(data) % PACKED_RECORD_SIZE
    records = np.frombuffer(data[:usable], dtype=np.uint8)
    for record in records.reshape(-1, PACKED_RECORD_SIZE):
        yield pixel_pattern(record[:CMYK_CHANNELS], record[CMYK_CHANNELS:], alpha)
