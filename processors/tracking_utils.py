"""
Geometry helpers shared by the cost model, the calibrator and the tracker.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from core.regions import Region


def centroid_array(regions: Sequence[Region]) -> np.ndarray:
    """Centroids as an (N, 2) float array of (x, y)."""
    if not regions:
        return np.zeros((0, 2), dtype=np.float64)
    return np.asarray([r.centroid for r in regions], dtype=np.float64)


def area_array(regions: Sequence[Region]) -> np.ndarray:
    if not regions:
        return np.zeros((0,), dtype=np.float64)
    return np.asarray([r.area for r in regions], dtype=np.float64)


def distance_matrix(first: Sequence[Region], second: Sequence[Region]) -> np.ndarray:
    """
    Euclidean centroid distances, shape (len(first), len(second)).
    """
    a = centroid_array(first)
    b = centroid_array(second)
    if a.shape[0] == 0 or b.shape[0] == 0:
        return np.zeros((a.shape[0], b.shape[0]), dtype=np.float64)
    return cdist(a, b, metric="euclidean")


def area_fraction_matrix(current: Sequence[Region], nxt: Sequence[Region]) -> np.ndarray:
    """
    Raw area ratios area(next_j) / area(current_i), shape (n, m).
    """
    a_cur = area_array(current)
    a_next = area_array(nxt)
    if a_cur.shape[0] == 0 or a_next.shape[0] == 0:
        return np.zeros((a_cur.shape[0], a_next.shape[0]), dtype=np.float64)
    return a_next[np.newaxis, :] / np.maximum(a_cur[:, np.newaxis], 1.0)


def normalize_area_fraction(fractions: np.ndarray) -> np.ndarray:
    """
    Fold ratios below 1 onto their reciprocal so growth and shrinkage are
    tested against the same bound.
    """
    fractions = np.asarray(fractions, dtype=np.float64)
    safe = np.where(fractions > 0, fractions, np.finfo(np.float64).tiny)
    return np.where(safe < 1.0, 1.0 / safe, safe)


def is_near_border(centroid: Tuple[float, float], frame_shape: Tuple[int, int], margin: float) -> bool:
    """
    True if the centroid lies closer than ``margin`` to any image border.

    ``frame_shape`` is (height, width).
    """
    x, y = float(centroid[0]), float(centroid[1])
    height, width = int(frame_shape[0]), int(frame_shape[1])
    return (
        x < margin
        or ((width - 1) - x) < margin
        or y < margin
        or ((height - 1) - y) < margin
    )
