"""
test_patterns.py
~~~~~~~~~~~~~~~~

Unit tests for building training patterns from pixel data.
"""

import numpy as np
import pytest

from libcmyk.errors import ImageMismatch
from libcmyk.patterns import (
    normalize_channels,
    denormalize_channels,
    pixel_pattern,
    patterns_from_arrays,
    pack_pixels,
    iter_packed_patterns,
    PACKED_RECORD_SIZE,
)


@pytest.fixture
def image_pair():
    """A 2x3 CMYK image and its RGB partner with distinct pixels."""
    cmyk = np.arange(2 * 3 * 4, dtype=np.uint8).reshape(2, 3, 4) * 10
    rgb = np.arange(2 * 3 * 3, dtype=np.uint8).reshape(2, 3, 3) * 12
    return cmyk, rgb


@pytest.mark.unit
class TestChannels:
    """Test channel scaling."""

    def test_normalize(self):
        """Test 8-bit samples map onto [0, 1]."""
        assert np.array_equal(normalize_channels([0, 255]), [0.0, 1.0])
        assert normalize_channels([51])[0] == 51 / 255

    def test_denormalize_rounds_and_clips(self):
        """Test values round to the nearest level and clip to 0..255."""
        result = denormalize_channels([0.0, 0.5, 1.0, 1.2, -0.1, 0.1])

        assert result.dtype == np.uint8
        assert list(result) == [0, 128, 255, 255, 0, 26]

    def test_normalize_round_trip(self):
        """Test every 8-bit level survives normalize then denormalize."""
        levels = np.arange(256)
        assert np.array_equal(denormalize_channels(normalize_channels(levels)), levels)


@pytest.mark.unit
class TestPixelPatterns:
    """Test single-pixel and whole-image pattern building."""

    def test_pixel_pattern(self):
        """Test one pixel becomes a 4-input, 3-target pattern."""
        inputs, targets = pixel_pattern([255, 0, 51, 0], [0, 255, 102])

        assert np.array_equal(inputs, [1.0, 0.0, 0.2, 0.0])
        assert np.array_equal(targets, [0.0, 1.0, 0.4])

    def test_pixel_pattern_alpha(self):
        """Test the optional opaque 4th target slot."""
        _, targets = pixel_pattern([0, 0, 0, 0], [255, 255, 255], alpha=True)
        assert np.array_equal(targets, [1.0, 1.0, 1.0, 1.0])

    def test_pixel_pattern_wrong_channels(self):
        """Test that channel counts are checked."""
        with pytest.raises(ImageMismatch):
            pixel_pattern([0, 0, 0], [0, 0, 0])

    def test_patterns_from_arrays_order(self, image_pair):
        """Test pixels are visited column by column."""
        cmyk, rgb = image_pair
        patterns = patterns_from_arrays(cmyk, rgb)

        assert len(patterns) == 6
        # x=0,y=0 then x=0,y=1 then x=1,y=0
        assert np.array_equal(patterns[0][0], cmyk[0, 0] / 255)
        assert np.array_equal(patterns[1][0], cmyk[1, 0] / 255)
        assert np.array_equal(patterns[2][0], cmyk[0, 1] / 255)
        assert np.array_equal(patterns[2][1], rgb[0, 1] / 255)

    def test_patterns_from_arrays_alpha(self, image_pair):
        """Test alpha targets have four components ending in 1.0."""
        patterns = patterns_from_arrays(*image_pair, alpha=True)
        assert all(len(t) == 4 and t[3] == 1.0 for _, t in patterns)

    def test_size_mismatch(self, image_pair):
        """Test that differently sized images are refused."""
        cmyk, rgb = image_pair
        with pytest.raises(ImageMismatch):
            patterns_from_arrays(cmyk, rgb[:1])

    def test_channel_mismatch(self, image_pair):
        """Test that swapped or flat arrays are refused."""
        cmyk, rgb = image_pair
        with pytest.raises(ImageMismatch):
            patterns_from_arrays(rgb, cmyk)
        with pytest.raises(ImageMismatch):
            patterns_from_arrays(cmyk.reshape(-1, 4), rgb)


@pytest.mark.unit
class TestPackedStream:
    """Test the 7-byte C M Y K R G B pixel stream."""

    def test_record_layout(self, image_pair):
        """Test the stream is row-major with 7 bytes per pixel."""
        cmyk, rgb = image_pair
        data = pack_pixels(cmyk, rgb)

        assert len(data) == 6 * PACKED_RECORD_SIZE
        assert list(data[:7]) == list(cmyk[0, 0]) + list(rgb[0, 0])
        assert list(data[7:14]) == list(cmyk[0, 1]) + list(rgb[0, 1])

    def test_stream_patterns(self, image_pair):
        """Test decoding the stream yields one pattern per pixel."""
        cmyk, rgb = image_pair
        patterns = list(iter_packed_patterns(pack_pixels(cmyk, rgb)))

        assert len(patterns) == 6
        assert np.array_equal(patterns[1][0], cmyk[0, 1] / 255)
        assert np.array_equal(patterns[1][1], rgb[0, 1] / 255)

    def test_partial_record_ignored(self, image_pair):
        """Test a truncated trailing record is dropped."""
        data = pack_pixels(*image_pair)
        assert len(list(iter_packed_patterns(data[:-3]))) == 5
        assert list(iter_packed_patterns(b'\x00' * 6)) == []
