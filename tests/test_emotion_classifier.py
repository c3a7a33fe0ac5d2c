"""
Emotion classifier orchestration tests.

Tests per-image classification, batch behavior, prior lookup and
initialization from config, with fake detector backends and prior providers.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tempfile
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

N = 30
EMOTIONS = ["happiness", "sadness", "surprise"]
IMAGE = np.zeros((120, 90, 3), dtype=np.uint8)


def make_sequence_detector(outcomes):
    """Fake backend returning one queued outcome per call: a mesh, None (no face) or an exception."""
    from utils.face_detection_interface import FaceDetectorInterface, FaceDetectionResult

    class SequenceDetector(FaceDetectorInterface):
        def __init__(self):
            self.outcomes = list(outcomes)

        def detect_faces(self, image):
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is None:
                return []
            landmarks, emotions = outcome if isinstance(outcome, tuple) else (outcome, None)
            return [FaceDetectionResult(landmarks=landmarks, emotions=emotions)]

        def is_available(self):
            return True

        def get_name(self):
            return "fake_mesh"

    return SequenceDetector()


def _mesh(expression):
    from tests.fixtures.synthetic_landmarks import make_expression_mesh
    return make_expression_mesh(expression, n=N)


def _classifier(outcomes, prior_provider=None, overrides=None):
    from emotion_classifier import EmotionMeshClassifier
    from utils.detector_cascade import LandmarkDetectorCascade
    from utils.discriminative_weights import WeightingConfig, build_discriminative_weights
    from utils.emotion_scorer import EmotionScorer, OverrideConfig, PriorBlendConfig
    from utils.reference_corpus import ReferenceCorpus
    from tests.fixtures.synthetic_landmarks import make_prototypes
    corpus = ReferenceCorpus(prototypes=make_prototypes(EMOTIONS, n=N))
    scorer = EmotionScorer(
        corpus,
        build_discriminative_weights(corpus.prototypes, WeightingConfig()),
        blend=PriorBlendConfig(enabled=True, mix=0.0, class_boost={"sadness": 2.0}),
        overrides=overrides or OverrideConfig(final_prob={}, prior={}),
        emotions=EMOTIONS,
    )
    cascade = LandmarkDetectorCascade([make_sequence_detector(outcomes)], expected_points=N)
    return EmotionMeshClassifier(cascade, scorer, prior_provider=prior_provider, target_size=128, pad_frac=0.1)


class TestClassify(unittest.TestCase):
    """Test single-image classification."""

    def test_classifies_face(self):
        """A detected face is scored and the backend name reported."""
        from utils.emotion_scorer import ClassificationState
        result = _classifier([_mesh("surprise")]).classify(IMAGE)
        self.assertTrue(result.ok)
        self.assertEqual(result.record.label, "surprise")
        self.assertEqual(result.detector, "fake_mesh")
        self.assertEqual(result.state, ClassificationState.FINAL)
        self.assertEqual(result.source, "<array>")

    def test_no_face_is_a_result_not_an_exception(self):
        from utils.emotion_scorer import ClassificationState
        from utils.errors import NoFaceDetected
        from utils.emotion_scorer import ClassificationState
        result = _classifier([None]).classify(IMAGE)
        self.assertFalse(result.ok)
        self.assertEqual(result.state, ClassificationState.NO_FACE_DETECTED)
        self.assertEqual(result.error, NoFaceDetected.__name__)
        self.assertIsNone(result.record)

    def test_unreadable_image(self):
        """Undecodable input is reported, not raised."""
        result = _classifier([]).classify(b"definitely not an image")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "InvalidImage")
        self.assertEqual(result.source, "<bytes>")

    def test_to_dict(self):
        """to_dict merges the score record into the result."""
        out = _classifier([_mesh("happiness")]).classify(IMAGE).to_dict()
        self.assertTrue(out["ok"])
        self.assertEqual(out["winningLabel"], "happiness")
        self.assertEqual(out["state"], "FINAL")
        self.assertNotIn("error", out)


class TestPriorLookup(unittest.TestCase):
    """Test where the auxiliary prior comes from."""

    def _overrides(self):
        from utils.emotion_scorer import OverrideConfig
        return OverrideConfig(final_prob={}, prior={"sadness": 0.25})

    def test_provider_prior_used(self):
        """The provider's scores feed the prior-based override."""
        provider = MagicMock()
        provider.is_available.return_value = True
        provider.predict.return_value = {"happiness": 0.5, "sadness": 0.5}
        result = _classifier([_mesh("happiness")], prior_provider=provider, overrides=self._overrides()).classify(IMAGE)
        self.assertEqual(result.record.label, "sadness")
        self.assertTrue(result.record.used_prior)
        provider.predict.assert_called_once()

    def test_detector_emotions_take_priority(self):
        """Emotion scores supplied by the detector are used before asking the provider."""
        provider = MagicMock()
        provider.is_available.return_value = True
        classifier = _classifier(
            [(_mesh("happiness"), {"sad": 0.9, "happy": 0.1})],
            prior_provider=provider,
            overrides=self._overrides(),
        )
        result = classifier.classify(IMAGE)
        self.assertEqual(result.record.label, "sadness")
        provider.predict.assert_not_called()

    def test_provider_failure_degrades_to_geometry(self):
        """A failing provider is logged and scoring continues without a prior."""
        from utils.errors import AuxiliaryPriorUnavailable
        provider = MagicMock()
        provider.is_available.return_value = True
        provider.predict.side_effect = AuxiliaryPriorUnavailable("timeout")
        classifier = _classifier([_mesh("happiness")], prior_provider=provider, overrides=self._overrides())
        with self.assertLogs("emotion_classifier", level="WARNING"):
            result = classifier.classify(IMAGE)
        self.assertTrue(result.ok)
        self.assertEqual(result.record.label, "happiness")
        self.assertFalse(result.record.used_prior)

    def test_unexpected_provider_error_degrades_to_geometry(self):
        """Any exception from the provider is logged and the image is scored on geometry."""
        provider = MagicMock()
        provider.is_available.return_value = True
        provider.predict.side_effect = KeyError("top")
        classifier = _classifier([_mesh("happiness")], prior_provider=provider, overrides=self._overrides())
        with self.assertLogs("emotion_classifier", level="WARNING") as logs:
            result = classifier.classify(IMAGE)
        self.assertTrue(result.ok)
        self.assertEqual(result.record.label, "happiness")
        self.assertFalse(result.record.used_prior)
        self.assertIn("KeyError", "\n".join(logs.output))

    def test_malformed_azure_response_does_not_stop_batch(self):
        """A face rectangle with missing keys never escapes the Azure prior."""
        from services.azure_face_api import AzureFaceAPIService
        from utils.emotion_prior import AzureFaceEmotionPrior
        service = AzureFaceAPIService(api_key="key", endpoint="https://example.azure.com", timeout=1)
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = [
            {"faceRectangle": {"left": 0}, "faceAttributes": {"emotion": {"sadness": 0.9, "happiness": 0.1}}},
            "not a face",
        ]
        prior = AzureFaceEmotionPrior(service=service)
        classifier = _classifier([_mesh("happiness"), _mesh("surprise")], prior_provider=prior,
                                 overrides=self._overrides())
        with patch("services.azure_face_api.requests.post", return_value=response):
            results = list(classifier.classify_batch([IMAGE, IMAGE]))
        self.assertEqual([r.ok for r in results], [True, True])
        self.assertEqual(results[0].record.label, "sadness")
        self.assertTrue(results[0].record.used_prior)

    def test_deepface_prior_drives_prior_override(self):
        """DeepFace's 0-100 scores map onto the class set and can trigger the prior override."""
        from utils.emotion_prior import DeepFaceEmotionPrior
        analyzer = MagicMock(return_value=[{
            "emotion": {"angry": 2.0, "happy": 38.0, "sad": 55.0, "neutral": 5.0},
            "region": {"x": 10, "y": 10, "w": 60, "h": 60},
        }])
        prior = DeepFaceEmotionPrior(detector_backend="skip", analyzer=analyzer)
        result = _classifier([_mesh("happiness")], prior_provider=prior, overrides=self._overrides()).classify(IMAGE)
        self.assertEqual(result.record.label, "sadness")
        self.assertEqual(result.record.override.rule, "prior")
        _, kwargs = analyzer.call_args
        self.assertEqual(kwargs["actions"], ["emotion"])
        self.assertEqual(kwargs["detector_backend"], "skip")


class TestClassifyBatch(unittest.TestCase):
    """Test batch processing."""

    def test_batch_continues_past_failures(self):
        """No face and backend errors affect only their own image."""
        from utils.errors import DetectorBackendError, NoFaceDetected
        outcomes = [_mesh("happiness"), None, RuntimeError("crash"), _mesh("sadness")]
        classifier = _classifier(outcomes)
        results = list(classifier.classify_batch([IMAGE] * 4))
        self.assertEqual([r.ok for r in results], [True, False, False, True])
        self.assertEqual(results[0].record.label, "happiness")
        self.assertEqual(results[1].error, NoFaceDetected.__name__)
        self.assertEqual(results[2].error, DetectorBackendError.__name__)
        self.assertEqual(results[3].record.label, "sadness")

    def test_classify_raises_backend_errors(self):
        """Single-image classify lets backend malfunctions propagate."""
        from utils.errors import DetectorBackendError
        with self.assertRaises(DetectorBackendError):
            _classifier([RuntimeError("crash")]).classify(IMAGE)


class TestFromConfig(unittest.TestCase):
    """Test building a classifier from config settings."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def test_builds_from_corpus_dir(self):
        """from_config loads the corpus and wires the configured cascade and prior."""
        import config
        import emotion_classifier
        from utils.detector_cascade import LandmarkDetectorCascade
        from tests.fixtures.synthetic_landmarks import write_synthetic_corpus
        write_synthetic_corpus(self.tmp, ["anger", "happiness"], n=N)
        cascade = LandmarkDetectorCascade([make_sequence_detector([_mesh("happiness")])], expected_points=N)
        with patch.object(config, "LANDMARK_COUNT", N), \
                patch.object(emotion_classifier, "build_default_cascade", return_value=cascade), \
                patch.object(emotion_classifier, "build_prior_provider", return_value=None):
            classifier = emotion_classifier.EmotionMeshClassifier.from_config(corpus_dir=self.tmp)
        self.assertEqual(classifier.scorer.emotions, ["anger", "happiness"])
        self.assertIsNone(classifier.prior_provider)
        self.assertTrue(classifier.classify(IMAGE).ok)

    def test_empty_corpus_fails_fast(self):
        """Initialization fails before any image when nothing can be loaded."""
        import emotion_classifier
        from utils.errors import EmptyReferenceCorpus
        with patch.object(emotion_classifier, "build_default_cascade") as build_cascade:
            with self.assertRaises(EmptyReferenceCorpus):
                emotion_classifier.EmotionMeshClassifier.from_config(corpus_dir=self.tmp)
        build_cascade.assert_not_called()


if __name__ == "__main__":
    unittest.main()
