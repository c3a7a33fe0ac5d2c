"""
Landmark Detector Cascade

Wraps an ordered list of FaceDetectorInterface backends. For each canvas the
backends are tried strictly in priority order and the first well-formed
landmark set wins. Later backends only run after earlier ones have failed, so
the common case (first backend finds the face) costs a single inference.

"No face" is a normal outcome (detect() returns None). Only backend
malfunction (an exception) or invalid input raises.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

import config
from utils.errors import DetectorBackendError
from utils.face_detection_interface import FaceDetectorInterface, FaceDetectionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeDetection:
    """Landmarks from the first backend that found a usable face."""
    landmarks: np.ndarray  # (N, 2) x,y in canvas pixels
    detector: str
    emotions: Optional[Dict[str, float]] = None
    confidence: float = 1.0


def is_well_formed(landmarks, expected_points: Optional[int] = None) -> bool:
    """True for a non-empty finite (N, >=2) array, with N == expected_points when given."""
    if landmarks is None:
        return False
    arr = np.asarray(landmarks)
    if arr.ndim != 2 or arr.shape[0] == 0 or arr.shape[1] < 2:
        return False
    if expected_points is not None and arr.shape[0] != expected_points:
        return False
    return bool(np.all(np.isfinite(arr[:, :2])))


class LandmarkDetectorCascade:
    """
    Priority-ordered fallback over detector backends.

    Usage:
        cascade = LandmarkDetectorCascade([facemesh, permissive, cropped])
        detection = cascade.detect(canvas)
        if detection is None:
            ...  # no face
    """

    def __init__(self, detectors: Sequence[FaceDetectorInterface], expected_points: Optional[int] = config.LANDMARK_COUNT):
        """
        Args:
            detectors: Backends in priority order (configured once at startup)
            expected_points: Required landmark count, or None to accept any N
        """
        if not detectors:
            raise ValueError("LandmarkDetectorCascade needs at least one detector")
        self.detectors: List[FaceDetectorInterface] = list(detectors)
        self.expected_points = expected_points

    @property
    def names(self) -> List[str]:
        return [d.get_name() for d in self.detectors]

    def detect(self, canvas: np.ndarray) -> Optional[CascadeDetection]:
        """
        Run backends in order until one reports a usable face.

        Args:
            canvas: Preprocessed BGR canvas

        Returns:
            CascadeDetection, or None when every backend failed to find a face

        Raises:
            ValueError: If the canvas is None or empty
            DetectorBackendError: If a backend raises
        """
        if canvas is None or getattr(canvas, "size", 0) == 0:
            raise ValueError("Invalid canvas: canvas is None or empty")

        for detector in self.detectors:
            name = detector.get_name()
            if not detector.is_available():
                logger.debug("Skipping unavailable detector %s", name)
                continue
            try:
                faces: List[FaceDetectionResult] = detector.detect_faces(canvas)
            except Exception as e:
                raise DetectorBackendError(name, e) from e

            if not faces:
                logger.debug("Detector %s found no face; falling back", name)
                continue

            face = faces[0]
            if not is_well_formed(face.landmarks, self.expected_points):
                shape = getattr(np.asarray(face.landmarks), "shape", None)
                logger.debug("Detector %s returned malformed landmarks %s; falling back", name, shape)
                continue

            landmarks = np.array(np.asarray(face.landmarks, dtype=np.float64)[:, :2])
            landmarks.setflags(write=False)
            return CascadeDetection(
                landmarks=landmarks,
                detector=name,
                emotions=dict(face.emotions) if face.emotions else None,
                confidence=float(face.confidence),
            )

        return None

    def close(self) -> None:
        for detector in self.detectors:
            detector.close()


def build_detector(name: str) -> Optional[FaceDetectorInterface]:
    """Create a backend by its config name, or None for an unknown name."""
    from utils.mediapipe_detector import MediaPipeCroppedMeshDetector, MediaPipeFaceMeshDetector

    if name == "facemesh":
        return MediaPipeFaceMeshDetector(name=name, min_detection_confidence=config.MIN_FACE_CONFIDENCE)
    if name == "facemesh_permissive":
        return MediaPipeFaceMeshDetector(name=name, min_detection_confidence=0.01)
    if name == "facedetect_crop":
        return MediaPipeCroppedMeshDetector(name=name)
    return None


def build_default_cascade(names: Optional[Sequence[str]] = None) -> LandmarkDetectorCascade:
    """Build the cascade from config.DETECTOR_CASCADE (unknown names are skipped)."""
    detectors = []
    for name in (names if names is not None else config.DETECTOR_CASCADE):
        detector = build_detector(name)
        if detector is None:
            logger.warning("Unknown detector backend %r ignored", name)
            continue
        detectors.append(detector)
    return LandmarkDetectorCascade(detectors, expected_points=config.LANDMARK_COUNT)
