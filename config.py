"""
=============================================================================
CONFIGURATION FOR EMOTION MESH (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
modules read from here; nothing is hard-wired in the scoring code. Values come
from the environment (e.g. your .env file or system variables), so you can try
different weighting or override settings without editing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Reference corpus   — Where the per-emotion average distance matrices live.
  2. Image preparation  — Canvas size and padding used before face detection.
  3. Face detection     — Which detector backends to try, and in what order.
  4. Weighting          — How landmark pairs are weighted (variance, gamma, top %).
  5. Prior blend        — How much the auxiliary emotion prior influences scores.
  6. Overrides          — Thresholds that force a class when evidence is strong.
  7. Emotion prior     — Which auxiliary classifier supplies the prior (DeepFace or Azure).
  8. Logging            — Log level for the command-line tools.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. WEIGHTING_GAMMA) override everything.
  - If an env var is not set, we use the default documented next to it.
  - Per-class tables use the form "disgust:2.5,sadness:2.0".
  - We never put real API keys or secrets as defaults in code.
=============================================================================
"""

import os
from typing import Dict, List, Optional, Tuple


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def parse_class_table(raw: Optional[str]) -> Dict[str, float]:
    """
    Parse a per-class table such as "disgust:2.5,sadness:2.0".

    Entries that are empty or not of the form name:number are skipped.
    Class names are lower-cased.
    """
    table: Dict[str, float] = {}
    for item in (raw or "").split(","):
        if ":" not in item:
            continue
        name, _, value = item.partition(":")
        name = name.strip().lower()
        if not name:
            continue
        try:
            table[name] = float(value)
        except ValueError:
            continue
    return table


# ============================================================================
# EMOTION CLASSES
# ============================================================================
# The six canonical Ekman categories. "neutral" can be added when the corpus
# was built with a neutral folder.
# ----------------------------------------------------------------------------
BASE_EMOTIONS: Tuple[str, ...] = ("anger", "disgust", "fear", "happiness", "sadness", "surprise")
INCLUDE_NEUTRAL: bool = _env_bool("INCLUDE_NEUTRAL", "false")

# ============================================================================
# REFERENCE CORPUS (precomputed prototype shapes)
# ============================================================================
# One CSV per emotion, each an N x N average distance matrix. Build them with
# "python build_corpus.py all --images images --out out".
# ----------------------------------------------------------------------------
REFERENCE_CORPUS_DIR: str = os.getenv("REFERENCE_CORPUS_DIR", "out")
REFERENCE_FILENAME_TEMPLATE: str = os.getenv("REFERENCE_FILENAME_TEMPLATE", "avg_dist_{emotion}.csv")
MESHES_JSONL_NAME: str = os.getenv("MESHES_JSONL_NAME", "meshes.jsonl")

# Number of landmarks every face mesh must have (MediaPipe Face Mesh = 468).
LANDMARK_COUNT: int = int(os.getenv("LANDMARK_COUNT", "468"))

# ============================================================================
# IMAGE PREPARATION (letterbox before detection)
# ============================================================================
# Detectors miss small or tightly cropped faces; placing the image on a larger
# white canvas with a margin on every side improves recall.
# ----------------------------------------------------------------------------
CANVAS_TARGET_SIZE: int = int(os.getenv("CANVAS_TARGET_SIZE", "640"))
CANVAS_PAD_FRAC: float = float(os.getenv("CANVAS_PAD_FRAC", "0.12"))

# ============================================================================
# FACE DETECTION (landmark detector cascade)
# ============================================================================
#   "facemesh"            — MediaPipe Face Mesh, static image mode.
#   "facemesh_permissive" — Same model with a very low detection confidence.
#   "facedetect_crop"     — Full-range face detection, crop, then Face Mesh.
# Backends are tried left to right; the first one that finds a face wins.
# ----------------------------------------------------------------------------
DETECTOR_CASCADE: List[str] = [
    name.strip().lower()
    for name in os.getenv("DETECTOR_CASCADE", "facemesh,facemesh_permissive,facedetect_crop").split(",")
    if name.strip()
]
VALID_DETECTOR_NAMES = ("facemesh", "facemesh_permissive", "facedetect_crop")

# Minimum confidence for the first backend (0.01-0.99). Lower = more permissive.
MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.1"))

# ============================================================================
# WEIGHTING (discriminative landmark-pair weights)
# ============================================================================
# "variance": weight each pair by how much its distance differs between
# emotions. "none": every pair counts the same.
# GAMMA amplifies differences (1.0 = no change). TOP_PCT keeps only the most
# discriminative pairs at full weight; the rest get MIN_WEIGHT. 0 disables.
# ----------------------------------------------------------------------------
WEIGHTING_MODE: str = os.getenv("WEIGHTING_MODE", "variance").strip().lower()
WEIGHTING_GAMMA: float = float(os.getenv("WEIGHTING_GAMMA", "15"))
WEIGHTING_TOP_PCT: float = float(os.getenv("WEIGHTING_TOP_PCT", "0.20"))
WEIGHTING_MIN_WEIGHT: float = float(os.getenv("WEIGHTING_MIN_WEIGHT", "0.10"))
VALID_WEIGHTING_MODES = ("variance", "none")

# K in beta = K / (max wmse - min wmse). Softmax sharpness self-calibrates per image.
SOFTMAX_SHARPNESS: float = float(os.getenv("SOFTMAX_SHARPNESS", "5.0"))

# ============================================================================
# PRIOR BLEND (auxiliary emotion classifier)
# ============================================================================
# LAMBDA = 0 ignores the prior in the blended logits (it can still trigger the
# prior-based overrides below). CLASS_BOOST multiplies the prior for classes
# the geometry under-detects.
# ----------------------------------------------------------------------------
PRIOR_BLEND_ENABLED: bool = _env_bool("PRIOR_BLEND_ENABLED", "true")
PRIOR_BLEND_LAMBDA: float = float(os.getenv("PRIOR_BLEND_LAMBDA", "0"))
PRIOR_CLASS_BOOST: Dict[str, float] = parse_class_table(os.getenv("PRIOR_CLASS_BOOST", "disgust:2.5,sadness:2.0"))
PRIOR_EPS: float = 1e-12

# ============================================================================
# OVERRIDES
# ============================================================================
# FINAL_PROB_OVERRIDE is checked first, on the blended softmax probability.
# PRIOR_OVERRIDE is checked next, on the boosted auxiliary prior.
# ----------------------------------------------------------------------------
PRIOR_OVERRIDE: Dict[str, float] = parse_class_table(os.getenv("PRIOR_OVERRIDE", "disgust:0.23,sadness:0.25"))
FINAL_PROB_OVERRIDE: Dict[str, float] = parse_class_table(os.getenv("FINAL_PROB_OVERRIDE", "disgust:0.23"))

# ============================================================================
# EMOTION PRIOR (auxiliary emotion classifier)
# ============================================================================
#   "deepface"       — Local DeepFace expression model on the same canvas (needs
#                      the optional deepface install; skipped with a warning if absent).
#   "azure_face_api" — Ask Azure Face for emotion scores on the same canvas.
#   "none"           — No prior; scoring is pure geometry.
# ----------------------------------------------------------------------------
EMOTION_PRIOR_PROVIDER: str = os.getenv("EMOTION_PRIOR_PROVIDER", "deepface").strip().lower()
VALID_PRIOR_PROVIDERS = ("deepface", "azure_face_api", "none", "")
DEEPFACE_DETECTOR_BACKEND: str = os.getenv("DEEPFACE_DETECTOR_BACKEND", "opencv").strip()

# ============================================================================
# AZURE FACE API
# ============================================================================
AZURE_FACE_API_KEY: str = (os.getenv("AZURE_FACE_API_KEY") or "").strip()
AZURE_FACE_API_ENDPOINT: str = (os.getenv("AZURE_FACE_API_ENDPOINT") or "").strip().rstrip("/")
AZURE_FACE_API_REGION: str = os.getenv("AZURE_FACE_API_REGION", "centralindia")
AZURE_FACE_API_TIMEOUT_SEC: float = float(os.getenv("AZURE_FACE_API_TIMEOUT_SEC", "10"))

# ============================================================================
# LOGGING
# ============================================================================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# ============================================================================
# Helper Functions
# ============================================================================


def get_emotion_classes() -> Tuple[str, ...]:
    """Return the configured emotion class set (with neutral when enabled)."""
    if INCLUDE_NEUTRAL:
        return BASE_EMOTIONS + ("neutral",)
    return BASE_EMOTIONS


def warn_missing_config() -> None:
    """
    Log warnings for settings that will silently disable features.
    Call from the CLI entry points. Does not raise.
    """
    import logging
    log = logging.getLogger(__name__)
    if WEIGHTING_MODE not in VALID_WEIGHTING_MODES:
        log.warning("WEIGHTING_MODE=%r is not one of %s; treating as 'variance'", WEIGHTING_MODE, VALID_WEIGHTING_MODES)
    unknown = [n for n in DETECTOR_CASCADE if n not in VALID_DETECTOR_NAMES]
    if unknown:
        log.warning("DETECTOR_CASCADE has unknown backends (ignored): %s", ", ".join(unknown))
    if EMOTION_PRIOR_PROVIDER not in VALID_PRIOR_PROVIDERS:
        log.warning("EMOTION_PRIOR_PROVIDER=%r is unknown; continuing without a prior", EMOTION_PRIOR_PROVIDER)
    if EMOTION_PRIOR_PROVIDER == "azure_face_api" and not is_azure_face_api_enabled():
        log.warning("EMOTION_PRIOR_PROVIDER=azure_face_api but AZURE_FACE_API_KEY / AZURE_FACE_API_ENDPOINT are not set")


def is_azure_face_api_enabled() -> bool:
    """
    Check if Azure Face API is properly configured.

    Returns:
        bool: True if both key and endpoint are provided
    """
    return bool(AZURE_FACE_API_KEY and AZURE_FACE_API_ENDPOINT)


def get_azure_face_api_config() -> dict:
    """
    Get Azure Face API configuration dictionary (without the key).

    Returns:
        dict: Configuration dictionary with enabled status and endpoint
    """
    if is_azure_face_api_enabled():
        return {
            "endpoint": AZURE_FACE_API_ENDPOINT,
            "region": AZURE_FACE_API_REGION,
            "enabled": True
        }
    return {"enabled": False}


def build_config_response() -> dict:
    """
    Build a JSON-serializable snapshot of every setting that affects scoring.
    Printed by "classify.py --show-config".
    """
    return {
        "emotions": list(get_emotion_classes()),
        "referenceCorpus": {
            "dir": REFERENCE_CORPUS_DIR,
            "filenameTemplate": REFERENCE_FILENAME_TEMPLATE,
            "landmarkCount": LANDMARK_COUNT,
        },
        "canvas": {
            "targetSize": CANVAS_TARGET_SIZE,
            "padFrac": CANVAS_PAD_FRAC,
        },
        "faceDetection": {
            "cascade": list(DETECTOR_CASCADE),
            "minFaceConfidence": MIN_FACE_CONFIDENCE,
        },
        "weighting": {
            "mode": WEIGHTING_MODE,
            "gamma": WEIGHTING_GAMMA,
            "topPct": WEIGHTING_TOP_PCT,
            "minWeight": WEIGHTING_MIN_WEIGHT,
        },
        "softmaxSharpness": SOFTMAX_SHARPNESS,
        "priorBlend": {
            "enabled": PRIOR_BLEND_ENABLED,
            "lambda": PRIOR_BLEND_LAMBDA,
            "classBoost": dict(PRIOR_CLASS_BOOST),
            "provider": EMOTION_PRIOR_PROVIDER,
            "deepfaceDetectorBackend": DEEPFACE_DETECTOR_BACKEND,
        },
        "overrides": {
            "finalProb": dict(FINAL_PROB_OVERRIDE),
            "prior": dict(PRIOR_OVERRIDE),
        },
        "azureFaceApi": get_azure_face_api_config(),
    }
