"""
Utility module tests.

Tests config helpers, emotion label synonyms and the error taxonomy.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch


class TestConfigHelpers(unittest.TestCase):
    """Test config.py helpers."""

    def test_parse_class_table(self):
        """Per-class tables parse name:number pairs and skip junk."""
        from config import parse_class_table
        self.assertEqual(parse_class_table("disgust:2.5, Sadness:2.0"), {"disgust": 2.5, "sadness": 2.0})
        self.assertEqual(parse_class_table("disgust:abc,:1,fear,anger:0.3"), {"anger": 0.3})
        self.assertEqual(parse_class_table(None), {})

    def test_emotion_classes(self):
        """neutral is only included when enabled."""
        import config
        with patch.object(config, "INCLUDE_NEUTRAL", False):
            self.assertEqual(len(config.get_emotion_classes()), 6)
        with patch.object(config, "INCLUDE_NEUTRAL", True):
            self.assertEqual(config.get_emotion_classes()[-1], "neutral")

    def test_build_config_response_returns_dict(self):
        """build_config_response should return a dict with expected keys and no secrets."""
        import config
        with patch.object(config, "AZURE_FACE_API_KEY", "secret-key"), \
                patch.object(config, "AZURE_FACE_API_ENDPOINT", "https://x.azure.com"):
            resp = config.build_config_response()
        self.assertIsInstance(resp, dict)
        for key in ("emotions", "weighting", "priorBlend", "overrides", "faceDetection", "azureFaceApi"):
            self.assertIn(key, resp)
        self.assertTrue(resp["azureFaceApi"]["enabled"])
        self.assertNotIn("secret-key", str(resp))

    def test_warn_missing_config(self):
        """Invalid settings are reported as warnings, never raised."""
        import config
        with patch.object(config, "WEIGHTING_MODE", "cubic"), \
                patch.object(config, "DETECTOR_CASCADE", ["facemesh", "dlib"]), \
                patch.object(config, "EMOTION_PRIOR_PROVIDER", "oracle"):
            with self.assertLogs("config", level="WARNING") as logs:
                config.warn_missing_config()
        self.assertEqual(len(logs.output), 3)
        self.assertIn("oracle", logs.output[-1])


class TestEmotionSynonyms(unittest.TestCase):
    """Test label canonicalization."""

    def test_canonical_emotion(self):
        from utils.emotions import canonical_emotion
        self.assertEqual(canonical_emotion("Happy"), "happiness")
        self.assertEqual(canonical_emotion(" disgusted "), "disgust")
        self.assertEqual(canonical_emotion("angry"), "anger")
        self.assertEqual(canonical_emotion("fearful"), "fear")
        self.assertEqual(canonical_emotion("sad"), "sadness")
        self.assertEqual(canonical_emotion("surprised"), "surprise")
        self.assertIsNone(canonical_emotion("contempt"))
        self.assertIsNone(canonical_emotion(None))


class TestErrors(unittest.TestCase):
    """Test the error taxonomy."""

    def test_hierarchy(self):
        from utils import errors
        for cls in (errors.NoFaceDetected, errors.EmptyReferenceCorpus, errors.MalformedReferenceFile,
                    errors.DimensionMismatch, errors.AuxiliaryPriorUnavailable):
            self.assertTrue(issubclass(cls, errors.EmotionMeshError))
        self.assertTrue(issubclass(errors.MalformedReferenceFile, ValueError))
        err = errors.DimensionMismatch("bad", expected=468, actual=27)
        self.assertEqual((err.expected, err.actual), (468, 27))
        wrapped = errors.DetectorBackendError("facemesh", RuntimeError("boom"))
        self.assertIn("facemesh", str(wrapped))


if __name__ == "__main__":
    unittest.main()
