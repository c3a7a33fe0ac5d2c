"""
MediaPipe Landmark Detector Implementations

MediaPipe-based implementations of the FaceDetectorInterface, used as the
default backends of the landmark detector cascade:
1. MediaPipeFaceMeshDetector: Face Mesh in static image mode (468 points).
   Configured twice by default, once with a normal and once with a very low
   detection confidence.
2. MediaPipeCroppedMeshDetector: full-range Face Detection finds the face
   first, the box is expanded and upscaled, and Face Mesh runs on the crop.
   Recovers small faces the whole-canvas mesh misses.
"""

from typing import List, Optional, Tuple

import cv2
import mediapipe as mp
import numpy as np

from utils.face_detection_interface import FaceDetectorInterface, FaceDetectionResult


def _clamp_confidence(value: float) -> float:
    return max(0.01, min(0.99, float(value)))


def _mesh_to_array(face_landmarks, width: int, height: int, left: float = 0.0, top: float = 0.0) -> np.ndarray:
    """Convert normalized MediaPipe landmarks to pixel coordinates (x, y, z)."""
    points = []
    for landmark in face_landmarks.landmark:
        x = left + landmark.x * width
        y = top + landmark.y * height
        z = landmark.z * width  # Z is normalized by width
        points.append([x, y, z])
    return np.array(points, dtype=np.float64)


def _bounding_box(landmarks: np.ndarray) -> Tuple[int, int, int, int]:
    x_coords = landmarks[:, 0]
    y_coords = landmarks[:, 1]
    left = int(np.min(x_coords))
    top = int(np.min(y_coords))
    right = int(np.max(x_coords))
    bottom = int(np.max(y_coords))
    return (left, top, right - left, bottom - top)


class MediaPipeFaceMeshDetector(FaceDetectorInterface):
    """
    MediaPipe Face Mesh on the whole canvas.

    Runs in static image mode (every canvas is an independent photo) and
    returns at most one face with 468 landmarks.
    """

    def __init__(self, name: str = "facemesh", min_detection_confidence: float = 0.1):
        """
        Args:
            name: Backend name reported by get_name()
            min_detection_confidence: Minimum confidence for face detection (0-1).
                Lower = more permissive.
        """
        self._name = name
        self._det_conf = _clamp_confidence(min_detection_confidence)
        self.mp_face_mesh = mp.solutions.face_mesh
        # Model is created on first use to keep cascade construction cheap
        self._face_mesh = None
        self._available = True

    def _get_face_mesh(self):
        if self._face_mesh is None:
            self._face_mesh = self.mp_face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=False,
                min_detection_confidence=self._det_conf,
            )
        return self._face_mesh

    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """
        Detect a face mesh on a BGR canvas.

        Args:
            image: BGR image array

        Returns:
            List with at most one FaceDetectionResult
        """
        if image is None or image.size == 0:
            return []

        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        height, width = image.shape[:2]

        results = self._get_face_mesh().process(rgb_image)
        if not results.multi_face_landmarks:
            return []

        face_results = []
        for face_landmarks in results.multi_face_landmarks:
            landmarks = _mesh_to_array(face_landmarks, width, height)
            face_results.append(
                FaceDetectionResult(
                    landmarks=landmarks,
                    bounding_box=_bounding_box(landmarks),
                    confidence=1.0  # MediaPipe doesn't provide confidence per face
                )
            )
        return face_results

    def is_available(self) -> bool:
        return self._available

    def get_name(self) -> str:
        return self._name

    def close(self) -> None:
        """Clean up MediaPipe resources."""
        if self._face_mesh is not None:
            try:
                self._face_mesh.close()
            finally:
                self._face_mesh = None


class MediaPipeCroppedMeshDetector(FaceDetectorInterface):
    """
    Two-stage detector: Face Detection box, then Face Mesh on an upscaled crop.

    Landmarks are mapped back to canvas coordinates so they are directly
    comparable with the whole-canvas backends.
    """

    def __init__(
        self,
        name: str = "facedetect_crop",
        min_detection_confidence: float = 0.3,
        model_selection: int = 1,
        crop_margin: float = 0.5,
        crop_size: int = 384,
    ):
        """
        Args:
            name: Backend name reported by get_name()
            min_detection_confidence: Confidence for the Face Detection stage
            model_selection: 0 = short-range model, 1 = full-range model
            crop_margin: Box expansion as a fraction of the box size on each side
            crop_size: Edge (pixels) the square crop is resized to before meshing
        """
        self._name = name
        self._det_conf = _clamp_confidence(min_detection_confidence)
        self._model_selection = 1 if model_selection else 0
        self._crop_margin = max(0.0, float(crop_margin))
        self._crop_size = max(64, int(crop_size))
        self.mp_face_mesh = mp.solutions.face_mesh
        self.mp_face_detection = mp.solutions.face_detection
        self._face_detection = None
        self._face_mesh = None
        self._available = True

    def _get_face_detection(self):
        if self._face_detection is None:
            self._face_detection = self.mp_face_detection.FaceDetection(
                model_selection=self._model_selection,
                min_detection_confidence=self._det_conf,
            )
        return self._face_detection

    def _get_face_mesh(self):
        if self._face_mesh is None:
            self._face_mesh = self.mp_face_mesh.FaceMesh(
                static_image_mode=True,
                max_num_faces=1,
                refine_landmarks=False,
                min_detection_confidence=0.05,
            )
        return self._face_mesh

    def _crop_box(self, detection, width: int, height: int) -> Optional[Tuple[int, int, int, int]]:
        """Square crop (left, top, right, bottom) around a detection, clipped to the image."""
        box = detection.location_data.relative_bounding_box
        bw = box.width * width
        bh = box.height * height
        if bw <= 1 or bh <= 1:
            return None
        cx = (box.xmin + box.width / 2) * width
        cy = (box.ymin + box.height / 2) * height
        half = max(bw, bh) * (0.5 + self._crop_margin)
        left = int(max(0, round(cx - half)))
        top = int(max(0, round(cy - half)))
        right = int(min(width, round(cx + half)))
        bottom = int(min(height, round(cy + half)))
        if right - left < 2 or bottom - top < 2:
            return None
        return (left, top, right, bottom)

    def detect_faces(self, image: np.ndarray) -> List[FaceDetectionResult]:
        """
        Locate the face, crop around it, and mesh the crop.

        Args:
            image: BGR image array

        Returns:
            List with at most one FaceDetectionResult
        """
        if image is None or image.size == 0:
            return []

        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        height, width = image.shape[:2]

        detections = self._get_face_detection().process(rgb_image).detections
        if not detections:
            return []

        best = max(detections, key=lambda d: d.score[0] if d.score else 0.0)
        crop_box = self._crop_box(best, width, height)
        if crop_box is None:
            return []
        left, top, right, bottom = crop_box
        crop = rgb_image[top:bottom, left:right]
        crop_w, crop_h = right - left, bottom - top
        scale = self._crop_size / max(crop_w, crop_h)
        resized = cv2.resize(
            crop,
            (max(1, int(round(crop_w * scale))), max(1, int(round(crop_h * scale)))),
            interpolation=cv2.INTER_CUBIC if scale > 1.0 else cv2.INTER_AREA,
        )

        results = self._get_face_mesh().process(resized)
        if not results.multi_face_landmarks:
            return []

        # Normalized coordinates are relative to the crop, so map with the crop's own size
        landmarks = _mesh_to_array(results.multi_face_landmarks[0], crop_w, crop_h, left, top)
        confidence = float(best.score[0]) if best.score else 1.0
        return [
            FaceDetectionResult(
                landmarks=landmarks,
                bounding_box=_bounding_box(landmarks),
                confidence=confidence,
            )
        ]

    def is_available(self) -> bool:
        return self._available

    def get_name(self) -> str:
        return self._name

    def close(self) -> None:
        """Clean up MediaPipe resources."""
        for attr in ("_face_mesh", "_face_detection"):
            model = getattr(self, attr)
            if model is not None:
                try:
                    model.close()
                finally:
                    setattr(self, attr, None)
