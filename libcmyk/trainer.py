"""
trainer.py
~~~~~~~~~~

Drives FeedForward.train over CMYK/RGB image pairs.

Two schedules are supported:
- per image: every pixel of a pair forms one pattern set, trained for a
  few passes (train_image_pair, train_directory)
- per pixel: each pixel from a packed stream is trained on its own for
  a few passes before moving on (train_stream)
"""

import os
import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from libcmyk.config import TrainingDefaults
from libcmyk.network import FeedForward
from libcmyk.patterns import patterns_from_arrays, iter_packed_patterns, pack_pixels
from libcmyk import imaging

logger = logging.getLogger(__name__)


def train_image_pair(
    network: FeedForward,
    cmyk: np.ndarray,
    rgb: np.ndarray,
    iterations: int = TrainingDefaults.iterations,
    learning_rate: float = TrainingDefaults.learning_rate,
    momentum: float = TrainingDefaults.momentum,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None
) -> List[float]:
    """
    Train on every pixel of one image pair.

    The 4th target slot is filled with full alpha when the network has
    four outputs.

    Returns:
        Per-pass loss history from FeedForward.train
    """
    alpha = network.n_outputs == 4
    patterns = patterns_from_arrays(cmyk, rgb, alpha=alpha)
    return network.train(
        patterns, iterations, learning_rate, momentum,
        debug=True, callback=callback
    )


def train_directory(
    network: FeedForward,
    cmyk_dir: str,
    rgb_dir: str,
    iterations: int = TrainingDefaults.iterations,
    learning_rate: float = TrainingDefaults.learning_rate,
    momentum: float = TrainingDefaults.momentum,
    per_pixel: bool = False
) -> Dict[str, List[float]]:
    """
    Train on every CMYK/RGB JPEG pair found in two directories.

    Args:
        network: Network to train in place
        cmyk_dir: Directory of CMYK JPEGs
        rgb_dir: Directory holding same-named RGB JPEGs
        iterations: Passes per image (or per pixel with ``per_pixel``)
        learning_rate, momentum: Passed to FeedForward.train
        per_pixel: Use the per-pixel schedule instead of per image

    Returns:
        File name -> loss history. With ``per_pixel`` the history holds the
        final-pass loss of each pixel.
    """
    histories = {}
    for cmyk_path, rgb_path in imaging.paired_image_paths(cmyk_dir, rgb_dir):
        name = os.path.basename(cmyk_path)
        logger.info(f"Training on {name}")

        cmyk = imaging.read_cmyk(cmyk_path)
        rgb = imaging.read_rgb(rgb_path)

        if per_pixel:
            history = train_stream(
                network, pack_pixels(cmyk, rgb),
                iterations, learning_rate, momentum
            )
        else:
            history = train_image_pair(
                network, cmyk, rgb, iterations, learning_rate, momentum
            )

        if history:
            logger.info(f"Finished {name}: final loss {history[-1]:.6f}")
        histories[name] = history

    return histories


def train_stream(
    network: FeedForward,
    data: bytes,
    iterations: int = TrainingDefaults.stream_iterations,
    learning_rate: float = TrainingDefaults.learning_rate,
    momentum: float = TrainingDefaults.momentum
) -> List[float]:
    """
    Train pixel by pixel from a packed C M Y K R G B stream.

    Returns:
        The final-pass loss for each pixel, in stream order
    """
    losses = []
    alpha = network.n_outputs == 4
    for pattern in iter_packed_patterns(data, alpha=alpha):
        history = network.train([pattern], iterations, learning_rate, momentum, debug=True)
        losses.append(history[-1] if history else 0.0)

    logger.debug(f"Trained on {len(losses)} pixel(s) from stream")
    return losses
