"""
Emotion class names and the synonym table used to map labels coming from
detectors, priors and dataset folders onto the canonical class set.
"""

from typing import Dict, Optional

# Raw label (lower case) -> canonical class
EMOTION_SYNONYMS: Dict[str, str] = {
    "angry": "anger", "anger": "anger",
    "disgust": "disgust", "disgusted": "disgust",
    "fear": "fear", "fearful": "fear", "scared": "fear",
    "happy": "happiness", "happiness": "happiness",
    "sad": "sadness", "sadness": "sadness",
    "surprise": "surprise", "surprised": "surprise",
    "neutral": "neutral",
}


def canonical_emotion(label: Optional[str]) -> Optional[str]:
    """Return the canonical class for a raw label, or None if unknown."""
    if label is None:
        return None
    return EMOTION_SYNONYMS.get(str(label).strip().lower())
