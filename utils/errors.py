"""
Error taxonomy for the emotion mesh pipeline.

Initialization errors (corpus problems) propagate and stop the run before any
image is processed. Per-image problems (no face) are reported as structured
results by the classifier, and prior failures are recovered locally.
"""


class EmotionMeshError(Exception):
    """Base class for all pipeline errors."""


class NoFaceDetected(EmotionMeshError):
    """
    Every detector backend failed to find a usable face on an image.

    The classifier reports this per image rather than raising it; the class
    name is the error code on the ClassificationResult.
    """


class EmptyReferenceCorpus(EmotionMeshError):
    """No emotion prototype could be loaded; scoring is impossible."""


class MalformedReferenceFile(EmotionMeshError, ValueError):
    """A prototype file does not parse into a square numeric matrix."""


class DimensionMismatch(EmotionMeshError, ValueError):
    """A prototype's landmark count disagrees with the rest of the run."""

    def __init__(self, message: str, expected: int = 0, actual: int = 0):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class AuxiliaryPriorUnavailable(EmotionMeshError):
    """The optional emotion prior could not be produced for an image."""


class DetectorBackendError(EmotionMeshError):
    """A detector backend malfunctioned (raised) while processing a canvas."""

    def __init__(self, backend: str, cause: Exception):
        super().__init__(f"Detector backend '{backend}' failed: {cause}")
        self.backend = backend
        self.cause = cause
