"""
Image preprocessor tests.

Tests image loading and the letterbox canvas.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tempfile
import unittest

import numpy as np


class TestLetterbox(unittest.TestCase):
    """Test letterboxing onto a white square canvas."""

    def test_canvas_geometry(self):
        """A 100x50 image should be scaled to 486x243 and centred."""
        from utils.image_preprocessor import letterbox
        image = np.zeros((50, 100, 3), dtype=np.uint8)
        canvas = letterbox(image, target=640, pad_frac=0.12)
        self.assertEqual(canvas.shape, (640, 640, 3))
        self.assertEqual(canvas.dtype, np.uint8)
        # inner = round(640 * 0.76) = 486; x = round(77) = 77; y = round(198.5) = 199
        self.assertTrue(np.all(canvas[199:442, 77:563] == 0))
        self.assertTrue(np.all(canvas[198, :] == 255))
        self.assertTrue(np.all(canvas[442, :] == 255))
        self.assertTrue(np.all(canvas[:, 76] == 255))
        self.assertTrue(np.all(canvas[:, 563] == 255))

    def test_white_border(self):
        """Every canvas should keep a white margin around the image."""
        from utils.image_preprocessor import letterbox
        image = np.zeros((300, 300, 3), dtype=np.uint8)
        canvas = letterbox(image)
        self.assertTrue(np.all(canvas[:10, :] == 255))
        self.assertTrue(np.all(canvas[-10:, :] == 255))
        self.assertTrue(np.all(canvas[:, :10] == 255))
        self.assertTrue(np.all(canvas[:, -10:] == 255))

    def test_tiny_image_keeps_one_pixel(self):
        """Extreme aspect ratios should never produce a zero-sized side."""
        from utils.image_preprocessor import letterbox
        canvas = letterbox(np.zeros((1, 2000, 3), dtype=np.uint8), target=64, pad_frac=0.1)
        self.assertEqual(canvas.shape, (64, 64, 3))
        self.assertTrue(np.any(canvas == 0))

    def test_grayscale_and_bgra_converted(self):
        """Grayscale and BGRA input should produce a 3-channel canvas."""
        from utils.image_preprocessor import letterbox
        gray = np.full((40, 40), 10, dtype=np.uint8)
        bgra = np.full((40, 40, 4), 10, dtype=np.uint8)
        self.assertEqual(letterbox(gray, target=100).shape, (100, 100, 3))
        self.assertEqual(letterbox(bgra, target=100).shape, (100, 100, 3))

    def test_transparency_composited_over_white(self):
        """Transparent pixels become white and opaque pixels keep their colour."""
        from utils.image_preprocessor import letterbox, load_image
        transparent = np.zeros((100, 100, 4), dtype=np.uint8)
        canvas = letterbox(transparent, target=200, pad_frac=0.1)
        np.testing.assert_array_equal(canvas[100, 100], [255, 255, 255])

        mixed = np.zeros((2, 2, 4), dtype=np.uint8)
        mixed[0, 0] = [10, 20, 30, 255]
        mixed[0, 1] = [0, 0, 0, 128]
        bgr = load_image(mixed)
        np.testing.assert_array_equal(bgr[0, 0], [10, 20, 30])
        np.testing.assert_array_equal(bgr[0, 1], [127, 127, 127])
        np.testing.assert_array_equal(bgr[1, 1], [255, 255, 255])

    def test_deterministic(self):
        """The same image should always give the same canvas."""
        from utils.image_preprocessor import letterbox
        image = np.random.default_rng(3).integers(0, 255, (123, 77, 3), dtype=np.uint8)
        np.testing.assert_array_equal(letterbox(image), letterbox(image))

    def test_invalid_arguments(self):
        """Empty images and out-of-range padding should raise ValueError."""
        from utils.image_preprocessor import letterbox
        with self.assertRaises(ValueError):
            letterbox(np.zeros((0, 0, 3), dtype=np.uint8))
        with self.assertRaises(ValueError):
            letterbox(np.zeros((10, 10, 3), dtype=np.uint8), pad_frac=0.5)


class TestLoadImage(unittest.TestCase):
    """Test image loading from paths and bytes."""

    def _png_bytes(self, image):
        import cv2
        ok, buf = cv2.imencode(".png", image)
        self.assertTrue(ok)
        return buf.tobytes()

    def test_load_from_bytes(self):
        """Encoded PNG bytes should decode to the original pixels."""
        from utils.image_preprocessor import load_image
        image = np.random.default_rng(1).integers(0, 255, (20, 30, 3), dtype=np.uint8)
        np.testing.assert_array_equal(load_image(self._png_bytes(image)), image)

    def test_load_from_path(self):
        """A PNG file on disk should load as BGR."""
        from utils.image_preprocessor import load_image
        image = np.random.default_rng(2).integers(0, 255, (16, 16, 3), dtype=np.uint8)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "face.png")
            with open(path, "wb") as f:
                f.write(self._png_bytes(image))
            np.testing.assert_array_equal(load_image(path), image)

    def test_unreadable_input_raises(self):
        """Garbage bytes and missing files should raise ValueError."""
        from utils.image_preprocessor import load_image
        with self.assertRaises(ValueError):
            load_image(b"not an image")
        with self.assertRaises(ValueError):
            load_image(b"")
        with self.assertRaises(ValueError):
            load_image("/nonexistent/face.jpg")

    def test_prepare_canvas(self):
        """prepare_canvas should load and letterbox in one step."""
        from utils.image_preprocessor import prepare_canvas
        image = np.zeros((50, 50, 3), dtype=np.uint8)
        canvas = prepare_canvas(self._png_bytes(image), target=200, pad_frac=0.1)
        self.assertEqual(canvas.shape, (200, 200, 3))


if __name__ == "__main__":
    unittest.main()
