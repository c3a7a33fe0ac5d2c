"""
Face Detection Interface Module

This module defines the abstract interface every landmark detector backend
implements, so the detector cascade can try MediaPipe variants (or any other
model) interchangeably behind one detect-landmarks contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np


@dataclass
class FaceDetectionResult:
    """
    One detected face as reported by a backend.

    Landmark indices are stable across images: index i always denotes the
    same facial feature for a given backend family.
    """
    landmarks: np.ndarray  # (N, 2) or (N, 3) in canvas pixel coordinates
    bounding_box: Optional[Tuple[int, int, int, int]] = None  # (left, top, width, height)
    confidence: float = 1.0  # Detection confidence (0-1)
    emotions: Optional[Dict[str, float]] = None  # Raw emotion scores if the backend has them


class FaceDetectorInterface(ABC):
    """
    Abstract interface for landmark detector backends.

    Backends are configured to return at most one face; when several are
    returned, the first one is treated as the most confident.
    """

    @abstractmethod
    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """
        Detect faces in an image.

        Args:
            image: BGR image array (OpenCV format), usually a letterboxed canvas

        Returns:
            List of FaceDetectionResult objects (empty when no face is found)
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this backend can be used."""

    @abstractmethod
    def get_name(self) -> str:
        """Return the backend name (e.g. "facemesh", "facedetect_crop")."""

    def close(self) -> None:
        """Release model resources. Default implementation does nothing."""
