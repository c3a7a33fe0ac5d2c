"""
Emotion Mesh Classifier.

Orchestrates per-image classification: load and letterbox the image, run the
landmark detector cascade, normalize the mesh, build its distance matrix,
look up an optional auxiliary emotion prior, and score against the reference
corpus.

Pipeline: load image → letterbox canvas → cascade (first backend with a face
wins) → center_scale → pairwise distances → prior (detector-supplied scores
first, else the configured provider) → weighted MSE per prototype → softmax →
overrides → ScoreRecord.

The corpus, weight matrix and scorer are built once by from_config() and are
read-only afterwards. A missing face fails only that image; corpus problems
fail the whole run before the first image is touched.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional

import numpy as np

import config
from utils.detector_cascade import LandmarkDetectorCascade, build_default_cascade
from utils.discriminative_weights import WeightingConfig, build_discriminative_weights
from utils.emotion_prior import EmotionPriorInterface, build_prior_provider
from utils.emotion_scorer import (
    ClassificationState,
    EmotionScorer,
    OverrideConfig,
    PriorBlendConfig,
    ScoreRecord,
)
from utils.errors import AuxiliaryPriorUnavailable, DetectorBackendError, NoFaceDetected
from utils.image_preprocessor import ImageSource, letterbox, load_image
from utils.reference_corpus import load_reference_corpus

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    """Outcome of classifying one image."""
    source: str  # file path, or "<bytes>" / "<array>" for in-memory input
    ok: bool
    state: ClassificationState
    record: Optional[ScoreRecord] = None
    detector: Optional[str] = None  # cascade backend that produced the landmarks
    error: Optional[str] = None  # "NoFaceDetected", "InvalidImage", "DetectorBackendError"
    message: Optional[str] = None

    def to_dict(self) -> Dict:
        out = {
            "source": self.source,
            "ok": self.ok,
            "state": self.state.value,
            "detector": self.detector,
        }
        if self.record is not None:
            out.update(self.record.to_dict())
        if self.error:
            out["error"] = self.error
            out["message"] = self.message
        return out


def _describe_source(source: ImageSource) -> str:
    if isinstance(source, np.ndarray):
        return "<array>"
    if isinstance(source, (bytes, bytearray, memoryview)):
        return "<bytes>"
    return os.fspath(source)


class EmotionMeshClassifier:
    """
    Classifies the facial expression on still images.

    Usage:
        classifier = EmotionMeshClassifier.from_config()
        result = classifier.classify("face.jpg")
        if result.ok:
            print(result.record.label, result.record.strength)
        classifier.close()
    """

    def __init__(
        self,
        cascade: LandmarkDetectorCascade,
        scorer: EmotionScorer,
        prior_provider: Optional[EmotionPriorInterface] = None,
        target_size: int = config.CANVAS_TARGET_SIZE,
        pad_frac: float = config.CANVAS_PAD_FRAC,
    ):
        """
        Args:
            cascade: Landmark detector cascade
            scorer: Scorer bound to the loaded corpus and weights
            prior_provider: Optional auxiliary emotion classifier
            target_size: Letterbox canvas edge in pixels
            pad_frac: Letterbox padding fraction per side
        """
        self.cascade = cascade
        self.scorer = scorer
        self.prior_provider = prior_provider
        self.target_size = int(target_size)
        self.pad_frac = float(pad_frac)

    @classmethod
    def from_config(cls, corpus_dir: Optional[str] = None) -> "EmotionMeshClassifier":
        """
        Build a classifier from config.py settings.

        Raises:
            EmptyReferenceCorpus: If no prototype can be loaded
        """
        corpus = load_reference_corpus(
            corpus_dir or config.REFERENCE_CORPUS_DIR,
            emotions=config.get_emotion_classes(),
            expected_points=config.LANDMARK_COUNT,
            filename_template=config.REFERENCE_FILENAME_TEMPLATE,
        )
        weighting = WeightingConfig.from_config()
        weights = build_discriminative_weights(corpus.prototypes, weighting)
        scorer = EmotionScorer(
            corpus,
            weights,
            blend=PriorBlendConfig.from_config(),
            overrides=OverrideConfig.from_config(),
            sharpness=config.SOFTMAX_SHARPNESS,
            emotions=config.get_emotion_classes(),
        )
        return cls(
            cascade=build_default_cascade(),
            scorer=scorer,
            prior_provider=build_prior_provider(),
        )

    def _lookup_prior(self, canvas: np.ndarray, detected: Optional[Dict[str, float]]) -> Optional[Dict[str, float]]:
        if not self.scorer.blend.enabled:
            return None
        if detected:
            return detected
        if self.prior_provider is None:
            return None
        try:
            if not self.prior_provider.is_available():
                return None
            return self.prior_provider.predict(canvas)
        except AuxiliaryPriorUnavailable as e:
            logger.warning("Emotion prior unavailable (%s); scoring geometry only", e)
            return None
        except Exception as e:
            # any provider failure degrades to no prior
            logger.warning("Emotion prior provider raised %s: %s; scoring geometry only", type(e).__name__, e)
            return None

    def classify(self, source: ImageSource) -> ClassificationResult:
        """
        Classify the face on one image.

        Args:
            source: Image path, encoded bytes, or BGR array

        Returns:
            ClassificationResult; ok=False with state NO_FACE_DETECTED when no
            backend finds a face, or AWAITING_LANDMARKS for unreadable input

        Raises:
            DetectorBackendError: If a detector backend malfunctions
        """
        name = _describe_source(source)
        try:
            canvas = letterbox(load_image(source), self.target_size, self.pad_frac)
        except ValueError as e:
            logger.warning("Cannot read %s: %s", name, e)
            return ClassificationResult(
                source=name, ok=False, state=ClassificationState.AWAITING_LANDMARKS,
                error="InvalidImage", message=str(e),
            )

        detection = self.cascade.detect(canvas)
        if detection is None:
            logger.info("No face detected on %s (tried %s)", name, ", ".join(self.cascade.names))
            return ClassificationResult(
                source=name, ok=False, state=ClassificationState.NO_FACE_DETECTED,
                error=NoFaceDetected.__name__, message=f"No face detected by any of: {', '.join(self.cascade.names)}",
            )

        prior = self._lookup_prior(canvas, detection.emotions)
        record = self.scorer.score_landmarks(detection.landmarks, prior)
        logger.debug("%s: %s via %s (strength %.3f)", name, record.label, detection.detector, record.strength)
        return ClassificationResult(
            source=name, ok=True, state=record.state, record=record, detector=detection.detector,
        )

    def classify_batch(self, sources: Iterable[ImageSource]) -> Iterator[ClassificationResult]:
        """Classify each source in order; a failing image never stops the batch."""
        for source in sources:
            try:
                yield self.classify(source)
            except DetectorBackendError as e:
                logger.error("%s", e)
                yield ClassificationResult(
                    source=_describe_source(source), ok=False, state=ClassificationState.AWAITING_LANDMARKS,
                    error=DetectorBackendError.__name__, message=str(e),
                )

    def close(self) -> None:
        self.cascade.close()
