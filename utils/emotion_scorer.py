"""
Emotion Scorer Module

Scores a face's normalized distance matrix against every emotion prototype
and turns the result into a label with calibrated probabilities.

Pipeline per call:
  1. Weighted MSE (upper triangle only) against each prototype: lower = closer.
  2. Adaptive inverse temperature beta = K / (max - min), so softmax sharpness
     follows each image's own dissimilarity spread. Base logit = -beta * wmse.
  3. Optional auxiliary prior (black-box expression classifier): synonyms
     mapped onto our classes (max per class), renormalized, boosted per class,
     renormalized again.
  4. Blend in log space: (1 - lambda) * base + lambda * log(prior).
  5. Stable softmax -> probabilities; argmax -> default winner.
  6. Overrides, first match wins:
       a. final probability of a flagged class >= its threshold
       b. boosted prior of a flagged class >= its threshold
  7. Quality diagnostics: strength, margin, clarity.

The corpus and weight matrix are injected once and never modified, so one
scorer can be shared by any number of threads.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

import config
from utils.emotions import canonical_emotion
from utils.geometry import landmark_distance_matrix
from utils.reference_corpus import ReferenceCorpus

RANGE_FLOOR = 1e-12

RULE_FINAL_PROBABILITY = "final_probability"
RULE_PRIOR = "prior"


class ClassificationState(Enum):
    """Per-image classification states."""
    AWAITING_LANDMARKS = "AWAITING_LANDMARKS"
    LANDMARKS_EXTRACTED = "LANDMARKS_EXTRACTED"
    GEOMETRY_NORMALIZED = "GEOMETRY_NORMALIZED"
    SCORED = "SCORED"
    OVERRIDDEN = "OVERRIDDEN"  # terminal: a rule replaced the argmax
    FINAL = "FINAL"  # terminal: argmax stands
    NO_FACE_DETECTED = "NO_FACE_DETECTED"  # terminal failure


@dataclass(frozen=True)
class PriorBlendConfig:
    """How the auxiliary prior is folded into the geometric logits."""
    enabled: bool = True
    mix: float = 0.0  # lambda; 0 = pure geometry in the blended logits
    class_boost: Mapping[str, float] = field(default_factory=lambda: {"disgust": 2.5, "sadness": 2.0})
    eps: float = 1e-12

    @classmethod
    def from_config(cls) -> "PriorBlendConfig":
        return cls(
            enabled=config.PRIOR_BLEND_ENABLED,
            mix=config.PRIOR_BLEND_LAMBDA,
            class_boost=dict(config.PRIOR_CLASS_BOOST),
            eps=config.PRIOR_EPS,
        )


@dataclass(frozen=True)
class OverrideConfig:
    """Per-class thresholds. Adding a class here adds a rule; no code change needed."""
    final_prob: Mapping[str, float] = field(default_factory=lambda: {"disgust": 0.23})
    prior: Mapping[str, float] = field(default_factory=lambda: {"disgust": 0.23, "sadness": 0.25})

    @classmethod
    def from_config(cls) -> "OverrideConfig":
        return cls(final_prob=dict(config.FINAL_PROB_OVERRIDE), prior=dict(config.PRIOR_OVERRIDE))


@dataclass(frozen=True)
class OverrideApplied:
    """Why the argmax winner was replaced."""
    rule: str  # RULE_FINAL_PROBABILITY or RULE_PRIOR
    emotion: str
    triggering_value: float
    threshold: float

    def describe(self) -> str:
        source = "final classifier" if self.rule == RULE_FINAL_PROBABILITY else "auxiliary prior (boosted)"
        return (
            f"OVERRIDE: {source} {self.emotion} prob {self.triggering_value * 100:.1f}% "
            f">= {self.threshold * 100:.0f}%"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "class": self.emotion,
            "triggeringValue": self.triggering_value,
            "threshold": self.threshold,
        }


@dataclass
class ScoreRecord:
    """Result of scoring one face."""
    label: str
    probabilities: Dict[str, float]
    dissimilarities: Dict[str, float]
    strength: float
    margin: float
    clarity: float
    runner_up: Optional[str] = None
    override: Optional[OverrideApplied] = None
    state: ClassificationState = ClassificationState.FINAL
    used_prior: bool = False
    prior: Optional[Dict[str, float]] = None  # boosted prior, when one was used

    def ranked(self) -> List[Tuple[str, float]]:
        """(emotion, probability) pairs, most probable first."""
        return sorted(self.probabilities.items(), key=lambda kv: kv[1], reverse=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winningLabel": self.label,
            "probabilities": dict(self.probabilities),
            "rawDissimilarities": dict(self.dissimilarities),
            "strength": self.strength,
            "margin": self.margin,
            "clarity": self.clarity,
            "runnerUp": self.runner_up,
            "overrideApplied": self.override.to_dict() if self.override else None,
            "usedPrior": self.used_prior,
        }


# -----------------------------------------------------------------------------
# Scoring primitives
# -----------------------------------------------------------------------------

def weighted_upper_mse(a: np.ndarray, b: np.ndarray, weights: Optional[np.ndarray] = None) -> float:
    """
    Weighted mean squared difference over unordered pairs (i < j).

    Sum of w_ij * (a_ij - b_ij)^2 divided by the number of pairs.
    """
    n = a.shape[0]
    if b.shape != a.shape:
        raise ValueError(f"Matrix shapes differ: {a.shape} vs {b.shape}")
    iu = np.triu_indices(n, k=1)
    count = iu[0].size
    if count == 0:
        return 0.0
    diff = a[iu] - b[iu]
    w = weights[iu] if weights is not None else 1.0
    return float(np.sum(w * diff * diff) / count)


def adaptive_logits(dissimilarities: np.ndarray, sharpness: float = 5.0) -> np.ndarray:
    """Base logits -beta * d with beta = sharpness / max(range(d), RANGE_FLOOR)."""
    spread = max(float(np.max(dissimilarities) - np.min(dissimilarities)), RANGE_FLOOR)
    beta = sharpness / spread
    return -beta * dissimilarities


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax (max logit subtracted first)."""
    shifted = np.exp(logits - np.max(logits))
    return shifted / shifted.sum()


def parse_prior(raw_scores: Optional[Mapping[str, Any]], emotions: Sequence[str]) -> Optional[Dict[str, float]]:
    """
    Map a raw prior (label -> score, any vocabulary) onto the class set.

    Synonyms are resolved with utils.emotions; when several raw labels map to
    the same class, the maximum is kept. Labels outside the class set are
    ignored. The result is renormalized; if every class scored zero, each gets
    the same tiny mass.

    Returns:
        Distribution over emotions, or None if no raw score was given
    """
    if not raw_scores:
        return None
    out = {e: 0.0 for e in emotions}
    for raw_label, raw_value in raw_scores.items():
        key = canonical_emotion(raw_label)
        if key is None or key not in out:
            continue
        try:
            value = float(raw_value)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(value):
            continue
        if value > out[key]:
            out[key] = value

    total = sum(out.values())
    if total <= 0:
        return {e: 1.0 / len(out) for e in out} if out else None
    return {e: v / total for e, v in out.items()}


def boost_prior(prior: Optional[Mapping[str, float]], class_boost: Mapping[str, float]) -> Optional[Dict[str, float]]:
    """Multiply per-class boosts (default 1.0) and renormalize. None if nothing is left."""
    if not prior:
        return None
    boosted = {e: p * float(class_boost.get(e, 1.0)) for e, p in prior.items()}
    total = sum(boosted.values())
    if total <= 0:
        return None
    return {e: v / total for e, v in boosted.items()}


def _best(candidates: Mapping[str, float], thresholds: Mapping[str, float]) -> Optional[Tuple[str, float, float]]:
    hits = [
        (emotion, value, float(thresholds[emotion]))
        for emotion, value in candidates.items()
        if emotion in thresholds and value >= float(thresholds[emotion])
    ]
    if not hits:
        return None
    return max(hits, key=lambda h: h[1])


class EmotionScorer:
    """
    Geometric emotion classifier over a loaded reference corpus.

    Usage:
        corpus = load_reference_corpus("out")
        weights = build_discriminative_weights(corpus.prototypes)
        scorer = EmotionScorer(corpus, weights)
        record = scorer.score_landmarks(mesh_xy, prior_scores)
    """

    def __init__(
        self,
        corpus: ReferenceCorpus,
        weights: Optional[np.ndarray] = None,
        blend: Optional[PriorBlendConfig] = None,
        overrides: Optional[OverrideConfig] = None,
        sharpness: float = config.SOFTMAX_SHARPNESS,
        emotions: Optional[Sequence[str]] = None,
    ):
        """
        Args:
            corpus: Loaded prototypes (at least one class)
            weights: Pair-weight matrix; None = uniform
            blend: Prior blend settings (default: PriorBlendConfig.from_config())
            overrides: Override thresholds (default: OverrideConfig.from_config())
            sharpness: K in beta = K / dissimilarity range
            emotions: Class set the prior is mapped onto (default: config.get_emotion_classes())
        """
        if len(corpus) == 0:
            raise ValueError("EmotionScorer needs a non-empty reference corpus")
        n = corpus.n_points
        if weights is not None and weights.shape != (n, n):
            raise ValueError(f"Weight matrix shape {weights.shape} does not match prototypes ({n}x{n})")
        self.corpus = corpus
        self.weights = weights
        self.blend = blend or PriorBlendConfig.from_config()
        self.overrides = overrides or OverrideConfig.from_config()
        self.sharpness = float(sharpness)
        classes = list(emotions) if emotions is not None else list(config.get_emotion_classes())
        # the prior must at least cover every loaded class
        self.prior_classes = classes + [e for e in corpus.emotions if e not in classes]

    @property
    def emotions(self) -> List[str]:
        return self.corpus.emotions

    def dissimilarities(self, distance_matrix: np.ndarray) -> Dict[str, float]:
        """Weighted MSE of a distance matrix against every prototype."""
        n = self.corpus.n_points
        if distance_matrix.shape != (n, n):
            raise ValueError(f"Distance matrix is {distance_matrix.shape}, prototypes are {n}x{n}")
        return {
            emotion: weighted_upper_mse(distance_matrix, prototype, self.weights)
            for emotion, prototype in self.corpus.prototypes.items()
        }

    def prepare_prior(self, raw_prior: Optional[Mapping[str, Any]]) -> Optional[Dict[str, float]]:
        """Parse and boost a raw prior; None when blending is off or no prior is usable."""
        if not self.blend.enabled:
            return None
        return boost_prior(parse_prior(raw_prior, self.prior_classes), self.blend.class_boost)

    def score_landmarks(self, landmarks, raw_prior: Optional[Mapping[str, Any]] = None) -> ScoreRecord:
        """Normalize raw landmarks, build the distance matrix, and score it."""
        return self.score_distance_matrix(landmark_distance_matrix(landmarks), raw_prior)

    def score_distance_matrix(
        self,
        distance_matrix: np.ndarray,
        raw_prior: Optional[Mapping[str, Any]] = None,
    ) -> ScoreRecord:
        """
        Score a normalized distance matrix.

        Args:
            distance_matrix: N x N distances of a center_scale()d landmark set
            raw_prior: Optional label -> score mapping from the auxiliary classifier

        Returns:
            ScoreRecord (state FINAL or OVERRIDDEN)
        """
        emotions = self.emotions
        dissim = self.dissimilarities(distance_matrix)
        d = np.array([dissim[e] for e in emotions], dtype=np.float64)
        base_logits = adaptive_logits(d, self.sharpness)

        prior = self.prepare_prior(raw_prior)
        final_logits = base_logits
        if prior is not None:
            lam = max(0.0, min(1.0, float(self.blend.mix)))
            log_prior = np.log(np.array([max(prior.get(e, 0.0), self.blend.eps) for e in emotions]))
            final_logits = (1 - lam) * base_logits + lam * log_prior

        probs = softmax(final_logits)
        probabilities = {e: float(p) for e, p in zip(emotions, probs)}

        by_prob = sorted(emotions, key=lambda e: probabilities[e], reverse=True)
        winner = by_prob[0]
        runner_up = by_prob[1] if len(by_prob) > 1 else None

        override = self._check_overrides(probabilities, prior)
        if override is not None:
            winner = override.emotion
            runner_up = next((e for e in by_prob if e != winner), None)

        strength = probabilities[winner]
        margin = strength - (probabilities[runner_up] if runner_up is not None else 0.0)

        return ScoreRecord(
            label=winner,
            probabilities=probabilities,
            dissimilarities=dissim,
            strength=strength,
            margin=margin,
            clarity=self._clarity(final_logits),
            runner_up=runner_up,
            override=override,
            state=ClassificationState.OVERRIDDEN if override else ClassificationState.FINAL,
            used_prior=prior is not None,
            prior=prior,
        )

    def _check_overrides(
        self,
        probabilities: Mapping[str, float],
        prior: Optional[Mapping[str, float]],
    ) -> Optional[OverrideApplied]:
        hit = _best(probabilities, self.overrides.final_prob)
        if hit is not None:
            return OverrideApplied(RULE_FINAL_PROBABILITY, hit[0], hit[1], hit[2])

        if prior is not None:
            loaded = {e: v for e, v in prior.items() if e in probabilities}
            hit = _best(loaded, self.overrides.prior)
            if hit is not None:
                return OverrideApplied(RULE_PRIOR, hit[0], hit[1], hit[2])
        return None

    @staticmethod
    def _clarity(logits: np.ndarray) -> float:
        """(top1 - top2) / logit range; 1.0 when there is only one class."""
        if logits.size < 2:
            return 1.0
        ordered = np.sort(logits)[::-1]
        spread = max(float(ordered[0] - ordered[-1]), RANGE_FLOOR)
        return float((ordered[0] - ordered[1]) / spread)
