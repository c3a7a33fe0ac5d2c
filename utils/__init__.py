"""
Utilities package for Emotion Mesh.

This package contains the classification building blocks: image letterboxing,
the landmark detector cascade, geometry normalization, the reference corpus,
discriminative pair weights, and the emotion scorer. MediaPipe backends live in
utils.mediapipe_detector and are only imported when a cascade is built.
"""

from .errors import (
    EmotionMeshError,
    NoFaceDetected,
    EmptyReferenceCorpus,
    MalformedReferenceFile,
    DimensionMismatch,
    AuxiliaryPriorUnavailable,
    DetectorBackendError,
)
from .face_detection_interface import FaceDetectorInterface, FaceDetectionResult
from .geometry import center_scale, pairwise_distance_matrix, landmark_distance_matrix
from .reference_corpus import ReferenceCorpus, load_reference_corpus
from .discriminative_weights import WeightingConfig, build_discriminative_weights
from .emotion_scorer import EmotionScorer, ScoreRecord, ClassificationState

__all__ = [
    'EmotionMeshError',
    'NoFaceDetected',
    'EmptyReferenceCorpus',
    'MalformedReferenceFile',
    'DimensionMismatch',
    'AuxiliaryPriorUnavailable',
    'DetectorBackendError',
    'FaceDetectorInterface',
    'FaceDetectionResult',
    'center_scale',
    'pairwise_distance_matrix',
    'landmark_distance_matrix',
    'ReferenceCorpus',
    'load_reference_corpus',
    'WeightingConfig',
    'build_discriminative_weights',
    'EmotionScorer',
    'ScoreRecord',
    'ClassificationState',
]
