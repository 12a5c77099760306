"""
test_conversion.py
~~~~~~~~~~~~~~~~~~

Tests for image I/O, training orchestration, and CMYK -> RGB conversion.
"""

import os

import numpy as np
import pytest
from PIL import Image

from libcmyk.converter import Converter
from libcmyk.errors import ImageMismatch, NotFound
from libcmyk.network import FeedForward
from libcmyk.model_persistence import dump
from libcmyk.patterns import pack_pixels
from libcmyk import imaging
from libcmyk import trainer


@pytest.fixture
def small_pair():
    rng = np.random.default_rng(9)
    cmyk = rng.integers(0, 256, size=(3, 4, 4), dtype=np.uint8)
    rgb = rng.integers(0, 256, size=(3, 4, 3), dtype=np.uint8)
    return cmyk, rgb


@pytest.mark.unit
class TestConverter:
    """Test pixel conversion with a network."""

    def test_cmyk_to_rgba(self, simple_network):
        """Test one pixel converts to opaque 8-bit RGBA."""
        rgba = Converter(simple_network).cmyk_to_rgba(0, 128, 255, 10)

        assert len(rgba) == 4
        assert rgba[3] == 255
        assert all(isinstance(v, int) and 0 <= v <= 255 for v in rgba)

    def test_cmyk_to_rgba_matches_update(self):
        """Test conversion is a rescaled forward pass."""
        a = FeedForward(4, 12, 3, seed=4)
        b = FeedForward(4, 12, 3, seed=4)

        r, g, _, _ = Converter(a).cmyk_to_rgba(51, 102, 153, 204)
        outputs = b.update([0.2, 0.4, 0.6, 0.8])
        assert r == int(np.rint(outputs[0] * 255))
        assert g == int(np.rint(outputs[1] * 255))

    def test_alpha_network_uses_rgb_slots(self):
        """Test a four-output network still yields RGB plus opaque alpha."""
        rgba = Converter(FeedForward(4, 6, 4, seed=1)).cmyk_to_rgba(1, 2, 3, 4)
        assert rgba[3] == 255

    def test_too_few_outputs(self):
        """Test that a network without three outputs is refused."""
        with pytest.raises(ValueError):
            Converter(FeedForward(4, 6, 2))

    def test_convert_pixels(self, small_pair):
        """Test a whole array converts pixel by pixel in row order."""
        cmyk, _ = small_pair
        rgb = Converter(FeedForward(4, 12, 3, seed=6)).convert_pixels(cmyk)

        reference = Converter(FeedForward(4, 12, 3, seed=6))
        assert rgb.shape == (3, 4, 3)
        assert rgb.dtype == np.uint8
        for y in range(3):
            for x in range(4):
                assert tuple(rgb[y, x]) == reference.cmyk_to_rgba(*cmyk[y, x])[:3]

    def test_convert_pixels_wrong_shape(self, simple_network):
        """Test that a non-CMYK array is refused."""
        with pytest.raises(ImageMismatch):
            Converter(simple_network).convert_pixels(np.zeros((2, 2, 3), dtype=np.uint8))

    def test_from_file_missing(self, tmp_path):
        """Test that a missing network file propagates NotFound."""
        with pytest.raises(NotFound):
            Converter.from_file(str(tmp_path / "absent.json"))


@pytest.mark.unit
class TestTrainer:
    """Test training schedules over in-memory images."""

    def test_train_image_pair(self, small_pair):
        """Test one image pair trains for the requested passes."""
        net = FeedForward(4, 6, 3, seed=2)
        before = net.input_weights.copy()

        losses = trainer.train_image_pair(net, *small_pair, iterations=3)

        assert len(losses) == 3
        assert not np.array_equal(net.input_weights, before)

    def test_train_image_pair_alpha(self, small_pair):
        """Test a four-output network trains with an alpha target slot."""
        net = FeedForward(4, 6, 4, seed=2)
        assert len(trainer.train_image_pair(net, *small_pair, iterations=1)) == 1

    def test_train_stream(self, small_pair):
        """Test per-pixel training reports one loss per pixel."""
        net = FeedForward(4, 6, 3, seed=2)
        losses = trainer.train_stream(net, pack_pixels(*small_pair), iterations=4)

        assert len(losses) == 12
        assert all(loss >= 0 for loss in losses)

    def test_train_stream_matches_single_patterns(self, small_pair):
        """Test the stream schedule is a single-pattern train per pixel."""
        a = FeedForward(4, 6, 3, seed=2)
        b = FeedForward(4, 6, 3, seed=2)
        cmyk, rgb = small_pair

        trainer.train_stream(a, pack_pixels(cmyk, rgb), iterations=2)
        for y in range(3):
            for x in range(4):
                b.train([(cmyk[y, x] / 255, rgb[y, x] / 255)], 2, 0.6, 0.4)

        assert np.array_equal(a.output_weights, b.output_weights)


@pytest.mark.integration
class TestImageFiles:
    """Tests that read and write JPEG files."""

    def test_paired_image_paths(self, image_dirs):
        """Test only same-named JPEG files are paired."""
        cmyk_dir, rgb_dir = image_dirs
        pairs = imaging.paired_image_paths(cmyk_dir, rgb_dir)

        assert pairs == [(
            os.path.join(cmyk_dir, "sample.jpg"),
            os.path.join(rgb_dir, "sample.jpg")
        )]

    def test_missing_rgb_counterpart(self, image_dirs):
        """Test that an unpaired CMYK image is an error."""
        cmyk_dir, rgb_dir = image_dirs
        os.remove(os.path.join(rgb_dir, "sample.jpg"))

        with pytest.raises(ImageMismatch):
            imaging.paired_image_paths(cmyk_dir, rgb_dir)

    def test_read_images(self, image_dirs):
        """Test decoded arrays have the expected shapes."""
        cmyk_dir, rgb_dir = image_dirs

        cmyk = imaging.read_cmyk(os.path.join(cmyk_dir, "sample.jpg"))
        rgb = imaging.read_rgb(os.path.join(rgb_dir, "sample.jpg"))

        assert cmyk.shape == (6, 5, 4)
        assert rgb.shape == (6, 5, 3)
        assert cmyk.dtype == np.uint8

    def test_read_cmyk_refuses_rgb(self, image_dirs):
        """Test that an RGB file is not accepted as CMYK."""
        _, rgb_dir = image_dirs
        with pytest.raises(ImageMismatch):
            imaging.read_cmyk(os.path.join(rgb_dir, "sample.jpg"))

    def test_write_rgb(self, tmp_path):
        """Test an RGB array is written as a JPEG of the same size."""
        path = str(tmp_path / "out.jpg")
        imaging.write_rgb(np.full((4, 7, 3), 200, dtype=np.uint8), path)

        with Image.open(path) as img:
            assert img.format == 'JPEG'
            assert img.size == (7, 4)
            assert img.mode == 'RGB'

    def test_train_directory(self, image_dirs):
        """Test training over a directory of image pairs."""
        net = FeedForward(4, 6, 3, seed=2)
        histories = trainer.train_directory(net, *image_dirs, iterations=2)

        assert list(histories) == ["sample.jpg"]
        assert len(histories["sample.jpg"]) == 2

    def test_train_directory_per_pixel(self, image_dirs):
        """Test the per-pixel schedule over a directory."""
        net = FeedForward(4, 6, 3, seed=2)
        histories = trainer.train_directory(net, *image_dirs, iterations=1, per_pixel=True)

        assert len(histories["sample.jpg"]) == 30

    def test_convert_file(self, image_dirs, tmp_path):
        """Test converting a CMYK JPEG with a saved network."""
        cmyk_dir, _ = image_dirs
        network_file = str(tmp_path / "network.json")
        dump(FeedForward(4, 6, 3, seed=2), network_file)

        dst = str(tmp_path / "converted.jpg")
        Converter.from_file(network_file).convert_file(
            os.path.join(cmyk_dir, "sample.jpg"), dst
        )

        with Image.open(dst) as img:
            assert img.size == (5, 6)
