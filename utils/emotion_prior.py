"""
Auxiliary Emotion Prior Module

An emotion prior is any black-box classifier that returns label -> score for
a face image. Two providers ship: DeepFace's local expression model (the
default) and the Azure Face API emotion attribute. The scorer maps labels onto
its own class set, so providers may use any vocabulary ("happy", "contempt",
"sad", ...).

Providers never make a classification fail: when a prior cannot be produced,
they raise AuxiliaryPriorUnavailable and the classifier continues with
geometry only.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np
import requests

import config
from utils.errors import AuxiliaryPriorUnavailable

logger = logging.getLogger(__name__)


class EmotionPriorInterface(ABC):
    """Abstract interface for auxiliary emotion classifiers."""

    @abstractmethod
    def predict(self, canvas: np.ndarray) -> Optional[Dict[str, float]]:
        """
        Score the face on a canvas.

        Args:
            canvas: Preprocessed BGR canvas (the same one the detectors saw)

        Returns:
            Raw label -> score mapping, or None if the provider saw no face

        Raises:
            AuxiliaryPriorUnavailable: If the provider failed
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this provider can be used."""

    @abstractmethod
    def get_name(self) -> str:
        """Return the provider name."""


class AzureFaceEmotionPrior(EmotionPriorInterface):
    """
    Emotion prior from the Azure Face API "emotion" attribute.

    The largest face in the response is used.
    """

    def __init__(self, service=None):
        """
        Args:
            service: AzureFaceAPIService; None = the shared instance from config
        """
        if service is None:
            from services.azure_face_api import get_azure_face_api_service
            service = get_azure_face_api_service()
        self.service = service

    def predict(self, canvas: np.ndarray) -> Optional[Dict[str, float]]:
        if self.service is None:
            raise AuxiliaryPriorUnavailable("Azure Face API is not configured")
        try:
            faces = self.service.detect_faces(canvas)
        except (requests.RequestException, ValueError) as e:
            raise AuxiliaryPriorUnavailable(f"Azure Face API prior failed: {e}") from e

        if not faces:
            return None

        def area(face):
            rect = self.service.get_face_rectangle(face)
            return rect[2] * rect[3] if rect else 0

        try:
            return self.service.extract_emotion_from_face(max(faces, key=area))
        except (KeyError, TypeError, AttributeError) as e:
            raise AuxiliaryPriorUnavailable(f"Malformed Azure Face API response: {e!r}") from e

    def is_available(self) -> bool:
        return self.service is not None

    def get_name(self) -> str:
        return "azure_face_api"


class DeepFaceEmotionPrior(EmotionPriorInterface):
    """
    Local emotion prior from DeepFace's facial expression model.

    DeepFace scores seven labels (angry, disgust, fear, happy, sad, surprise,
    neutral) on a 0-100 scale; parse_prior maps them onto the class set and
    renormalizes. The largest detected face is used.

    Usage:
        prior = DeepFaceEmotionPrior()
        scores = prior.predict(canvas)
    """

    def __init__(self, detector_backend: Optional[str] = None, analyzer=None):
        """
        Args:
            detector_backend: DeepFace face detector (default: config.DEEPFACE_DETECTOR_BACKEND)
            analyzer: Callable with DeepFace.analyze's signature; None imports deepface

        Raises:
            ImportError: If deepface is not installed and no analyzer is given
        """
        self.detector_backend = detector_backend or config.DEEPFACE_DETECTOR_BACKEND
        if analyzer is None:
            from deepface import DeepFace
            analyzer = DeepFace.analyze
        self._analyze = analyzer

    def predict(self, canvas: np.ndarray) -> Optional[Dict[str, float]]:
        try:
            result = self._analyze(
                canvas,
                actions=["emotion"],
                detector_backend=self.detector_backend,
                enforce_detection=False,
                silent=True,
            )
        except Exception as e:
            raise AuxiliaryPriorUnavailable(f"DeepFace emotion analysis failed: {e}") from e

        # one dict per face; older releases return a bare dict for a single face
        faces = [result] if isinstance(result, dict) else list(result or [])
        faces = [f for f in faces if isinstance(f, dict) and isinstance(f.get("emotion"), dict)]
        if not faces:
            return None

        def area(face):
            region = face.get("region")
            if not isinstance(region, dict):
                return 0
            w, h = region.get("w"), region.get("h")
            if not isinstance(w, (int, float, np.number)) or not isinstance(h, (int, float, np.number)):
                return 0
            return w * h

        return dict(max(faces, key=area)["emotion"])

    def is_available(self) -> bool:
        return self._analyze is not None

    def get_name(self) -> str:
        return "deepface"


def build_prior_provider(name: Optional[str] = None) -> Optional[EmotionPriorInterface]:
    """
    Create the configured prior provider.

    Args:
        name: Provider name; None = config.EMOTION_PRIOR_PROVIDER

    Returns:
        A usable provider, or None for "none" or when the provider is not configured
    """
    provider = (name if name is not None else config.EMOTION_PRIOR_PROVIDER).strip().lower()
    if provider in ("", "none"):
        return None
    if provider == "deepface":
        try:
            return DeepFaceEmotionPrior()
        except ImportError as e:
            logger.warning("DeepFace emotion prior requested but deepface is not installed (%s); "
                           "continuing without a prior", e)
            return None
    if provider == "azure_face_api":
        prior = AzureFaceEmotionPrior()
        if not prior.is_available():
            logger.warning("Azure Face emotion prior requested but not configured; continuing without a prior")
            return None
        return prior
    logger.warning("Unknown EMOTION_PRIOR_PROVIDER %r; continuing without a prior", provider)
    return None
