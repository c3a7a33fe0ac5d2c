"""
Discriminative Weight Builder

Derives one landmark-pair weight matrix per run from the per-emotion
prototypes. A pair whose distance varies a lot between emotions (e.g. the
mouth corners, very different between happiness and sadness) gets a high
weight; bone-anchored pairs that barely move get a low one.

Steps (variance mode, two or more classes):
  1. Population variance of each pair's distance across prototypes.
  2. Normalize the upper triangle to mean 1.
  3. Raise to GAMMA (>= 1) to sharpen the contrast.
  4. Optionally keep only the top TOP_PCT pairs at full weight, floor the rest
     to MIN_WEIGHT, and normalize to mean 1 again.

The exact formulas matter: prototypes and tuned constants were calibrated
together, so treat them as fixed.
"""

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np

import config

logger = logging.getLogger(__name__)

MEAN_EPS = 1e-12


@dataclass(frozen=True)
class WeightingConfig:
    """Weighting controls (see config.py WEIGHTING_* for defaults)."""
    mode: str = "variance"  # "variance" or "none"
    gamma: float = 15.0  # 1.0 = no amplification
    top_pct: float = 0.20  # 0 disables sparsification
    min_weight: float = 0.10  # weight for pairs outside the top percentile

    @classmethod
    def from_config(cls) -> "WeightingConfig":
        return cls(
            mode=config.WEIGHTING_MODE,
            gamma=config.WEIGHTING_GAMMA,
            top_pct=config.WEIGHTING_TOP_PCT,
            min_weight=config.WEIGHTING_MIN_WEIGHT,
        )


def _uniform(n: int) -> np.ndarray:
    weights = np.ones((n, n), dtype=np.float64)
    weights.setflags(write=False)
    return weights


def _from_upper(values: np.ndarray, n: int) -> np.ndarray:
    weights = np.zeros((n, n), dtype=np.float64)
    iu = np.triu_indices(n, k=1)
    weights[iu] = values
    weights[(iu[1], iu[0])] = values
    weights.setflags(write=False)
    return weights


def normalized_pair_variance(prototypes: Mapping[str, np.ndarray]) -> np.ndarray:
    """
    Upper-triangle pair variances across prototypes, divided by their mean.

    Returns:
        1-D array in np.triu_indices(n, k=1) order
    """
    stack = np.stack([np.asarray(m, dtype=np.float64) for m in prototypes.values()])
    n = stack.shape[1]
    iu = np.triu_indices(n, k=1)
    variance = stack[:, iu[0], iu[1]].var(axis=0)
    mean = variance.mean() + MEAN_EPS if variance.size else 1.0
    return variance / mean


def sparsify_top_percentile(values: np.ndarray, top_pct: float, min_weight: float) -> np.ndarray:
    """
    Keep the top_pct most discriminative values, floor the rest, re-normalize to mean 1.

    The threshold is the ascending-sorted value at floor((1 - top_pct) * (count - 1));
    values strictly below it become min_weight.
    """
    keep = max(0.0, min(1.0, float(top_pct)))
    if keep <= 0 or values.size == 0:
        return values
    ordered = np.sort(values)
    threshold = ordered[int(math.floor((1 - keep) * (ordered.size - 1)))]
    out = np.where(values < threshold, float(min_weight), values)
    return out / (out.mean() + MEAN_EPS)


def build_discriminative_weights(
    prototypes: Mapping[str, np.ndarray],
    weighting: Optional[WeightingConfig] = None,
) -> np.ndarray:
    """
    Build the shared pair-weight matrix.

    Args:
        prototypes: Emotion -> N x N prototype distance matrix
        weighting: Weighting controls (default: WeightingConfig.from_config())

    Returns:
        Read-only N x N symmetric non-negative matrix. All ones when weighting is
        disabled or fewer than two classes are loaded; zero diagonal otherwise.
    """
    if not prototypes:
        raise ValueError("build_discriminative_weights needs at least one prototype")
    weighting = weighting or WeightingConfig.from_config()
    n = next(iter(prototypes.values())).shape[0]

    if weighting.mode == "none" or len(prototypes) < 2:
        return _uniform(n)

    values = normalized_pair_variance(prototypes)
    if values.size and not np.any(values > 0):
        logger.warning("All prototypes are identical; using uniform weights")
        return _uniform(n)

    gamma = max(float(weighting.gamma), 1.0)
    if gamma != 1.0:
        values = np.power(values, gamma)

    values = sparsify_top_percentile(values, weighting.top_pct, weighting.min_weight)

    if not np.all(np.isfinite(values)):
        raise ValueError(f"Pair weights overflowed with gamma={gamma}; lower WEIGHTING_GAMMA")

    logger.debug(
        "Weights built: mode=%s gamma=%s topPct=%s max=%.4g",
        weighting.mode, gamma, weighting.top_pct, float(values.max()) if values.size else 0.0,
    )
    return _from_upper(values, n)
