"""
Image Preprocessor Module

Loads images from disk or memory and letterboxes them onto a fixed-size
square canvas before face detection. Detectors are sensitive to absolute
scale and tight crops; a white border of PAD_FRAC on every side gives them
context and noticeably improves recall on small or off-centre faces.

The canvas is deterministic for a given image and (target, pad_frac), and the
image is never cropped.
"""

import math
import os
from typing import Union

import cv2
import numpy as np

import config

ImageSource = Union[str, os.PathLike, bytes, bytearray, memoryview, np.ndarray]

BACKGROUND_BGR = (255, 255, 255)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.dtype == np.uint16:
        image = (image // 257).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 4:
        # composite over the white canvas background
        alpha = image[:, :, 3:4].astype(np.float32) / 255.0
        background = np.array(BACKGROUND_BGR, dtype=np.float32)
        blended = image[:, :, :3].astype(np.float32) * alpha + background * (1.0 - alpha)
        return np.clip(np.rint(blended), 0, 255).astype(np.uint8)
    if image.ndim == 3 and image.shape[2] == 3:
        return image
    raise ValueError(f"Unsupported image shape: {image.shape}")


def load_image(source: ImageSource) -> np.ndarray:
    """
    Load an image as a BGR uint8 array.

    Args:
        source: File path, encoded image bytes (JPEG/PNG/BMP/WEBP), or an
            already decoded array

    Returns:
        BGR image array (OpenCV format)

    Raises:
        ValueError: If the source cannot be read or decoded
    """
    if isinstance(source, np.ndarray):
        if source.size == 0:
            raise ValueError("Invalid image: array is empty")
        return _to_bgr(source)

    if isinstance(source, (bytes, bytearray, memoryview)):
        buf = np.frombuffer(bytes(source), dtype=np.uint8)
        if buf.size == 0:
            raise ValueError("Invalid image: byte buffer is empty")
        image = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise ValueError("Failed to decode image bytes")
        return _to_bgr(image)

    path = os.fspath(source)
    if not os.path.isfile(path):
        raise ValueError(f"Image not found: {path}")
    # cv2.imread cannot open non-ASCII paths on Windows
    with open(path, "rb") as f:
        data = f.read()
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError(f"Failed to decode image: {path}")
    return _to_bgr(image)


def letterbox(
    image: np.ndarray,
    target: int = config.CANVAS_TARGET_SIZE,
    pad_frac: float = config.CANVAS_PAD_FRAC,
) -> np.ndarray:
    """
    Scale an image so its long edge fits target * (1 - 2 * pad_frac), and
    centre it on a white target x target canvas.

    Args:
        image: BGR image array
        target: Canvas edge in pixels
        pad_frac: Padding fraction on each side (0 <= pad_frac < 0.5)

    Returns:
        BGR canvas of shape (target, target, 3)
    """
    if image is None or image.size == 0:
        raise ValueError("Invalid image: image is None or empty")
    if target < 1:
        raise ValueError(f"target must be positive, got {target}")
    if not 0.0 <= pad_frac < 0.5:
        raise ValueError(f"pad_frac must be in [0, 0.5), got {pad_frac}")

    image = _to_bgr(image)
    src_h, src_w = image.shape[:2]

    inner = _round_half_up(target * (1 - 2 * pad_frac))
    scale = inner / max(src_w, src_h)
    w = min(target, max(1, _round_half_up(src_w * scale)))
    h = min(target, max(1, _round_half_up(src_h * scale)))

    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(image, (w, h), interpolation=interpolation)

    canvas = np.full((target, target, 3), BACKGROUND_BGR, dtype=np.uint8)
    x = _round_half_up((target - w) / 2)
    y = _round_half_up((target - h) / 2)
    canvas[y:y + h, x:x + w] = resized
    return canvas


def prepare_canvas(
    source: ImageSource,
    target: int = config.CANVAS_TARGET_SIZE,
    pad_frac: float = config.CANVAS_PAD_FRAC,
) -> np.ndarray:
    """Load an image and letterbox it in one step."""
    return letterbox(load_image(source), target=target, pad_frac=pad_frac)
