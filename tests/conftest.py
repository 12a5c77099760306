"""
conftest.py
~~~~~~~~~~~

Shared fixtures for the libcmyk test suite.
"""

import numpy as np
import pytest
from PIL import Image

from libcmyk.network import FeedForward


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """A seeded 4-12-3 network without recurrence."""
    return FeedForward(4, 12, 3, seed=7)


@pytest.fixture
def context_network():
    """A seeded 4-5-3 network with a three-snapshot context window."""
    net = FeedForward(4, 5, 3, seed=11)
    net.set_contexts(3)
    return net


@pytest.fixture
def training_patterns():
    """A handful of CMYK -> RGB style patterns."""
    return [
        ([0.0, 0.0, 0.0, 0.0], [1.0, 1.0, 1.0]),
        ([0.0, 0.0, 0.0, 1.0], [0.0, 0.0, 0.0]),
        ([1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 1.0]),
        ([0.0, 1.0, 1.0, 0.0], [1.0, 0.0, 0.0]),
    ]


@pytest.fixture
def trained_network(simple_network, training_patterns):
    """A network with a few passes of training applied."""
    simple_network.train(training_patterns, 5, 0.6, 0.4)
    return simple_network


def _save_cmyk_jpeg(pixels, path):
    height, width = pixels.shape[:2]
    Image.frombytes('CMYK', (width, height), pixels.tobytes()).save(path, 'JPEG')


@pytest.fixture
def image_dirs(tmp_path):
    """Two directories holding one matching CMYK/RGB JPEG pair."""
    cmyk_dir = tmp_path / "cmyk"
    rgb_dir = tmp_path / "rgb"
    cmyk_dir.mkdir()
    rgb_dir.mkdir()

    rng = np.random.default_rng(3)
    cmyk = rng.integers(0, 256, size=(6, 5, 4), dtype=np.uint8)
    rgb = rng.integers(0, 256, size=(6, 5, 3), dtype=np.uint8)

    _save_cmyk_jpeg(cmyk, cmyk_dir / "sample.jpg")
    Image.fromarray(rgb).save(rgb_dir / "sample.jpg", 'JPEG')

    # Files that must be ignored when pairing
    (cmyk_dir / "notes.txt").write_text("not an image")
    (cmyk_dir / "nested").mkdir()

    return str(cmyk_dir), str(rgb_dir)
