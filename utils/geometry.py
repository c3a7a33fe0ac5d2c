"""
Landmark geometry: normalization and pairwise distances.

center_scale() must stay identical between corpus building and runtime
scoring. Prototypes are averages of distance matrices computed from meshes
normalized this way, so any change here silently breaks comparability.
"""

import numpy as np

NORMALIZATION_EPS = 1e-12


def as_xy(landmarks) -> np.ndarray:
    """Return an (N, 2) float64 copy of the x,y columns; z or extra columns are dropped."""
    arr = np.asarray(landmarks, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError(f"Landmarks must have shape (N, 2) or (N, 3), got {arr.shape}")
    return arr[:, :2].copy()


def center_scale(landmarks) -> np.ndarray:
    """
    Translate landmarks so the centroid is at the origin and divide by the
    root-sum-of-squares radius.

    s = sqrt(sum(x_i^2 + y_i^2)) over the centred points (total energy, not
    per-point RMS), plus a small epsilon so a degenerate mesh does not divide
    by zero.

    Args:
        landmarks: (N, 2) or (N, 3) array-like of landmark coordinates

    Returns:
        (N, 2) float64 array of normalized coordinates
    """
    xy = as_xy(landmarks)
    if xy.shape[0] == 0:
        return xy
    centred = xy - xy.mean(axis=0)
    s = np.sqrt(np.sum(centred * centred)) + NORMALIZATION_EPS
    return centred / s


def pairwise_distance_matrix(points) -> np.ndarray:
    """
    Full N x N Euclidean distance matrix.

    Only the upper triangle is computed; it is mirrored into the lower
    triangle so the result is exactly symmetric with a zero diagonal.
    """
    xy = as_xy(points)
    n = xy.shape[0]
    dist = np.zeros((n, n), dtype=np.float64)
    if n < 2:
        return dist
    iu = np.triu_indices(n, k=1)
    d = np.hypot(xy[iu[0], 0] - xy[iu[1], 0], xy[iu[0], 1] - xy[iu[1], 1])
    dist[iu] = d
    dist[(iu[1], iu[0])] = d
    return dist


def upper_triangle(matrix: np.ndarray) -> np.ndarray:
    """Values strictly above the diagonal, row-major (each unordered pair once)."""
    n = matrix.shape[0]
    return matrix[np.triu_indices(n, k=1)]


def landmark_distance_matrix(landmarks) -> np.ndarray:
    """Normalize a raw landmark set and return its distance matrix."""
    return pairwise_distance_matrix(center_scale(landmarks))
