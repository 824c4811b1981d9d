"""
Square min-cost perfect matching on a dummy-padded cost matrix.

The solver returns a 0/1 permutation matrix with exactly one 1 per row and
column; rows are current-frame slots, columns next-frame slots.
"""

from __future__ import annotations

import logging
import warnings
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

try:
    from scipy.optimize import linear_sum_assignment

    HAS_SCIPY = True
except ImportError:
    HAS_SCIPY = False
    linear_sum_assignment = None

# Optional Jonker-Volgenant solvers
HAS_LAPJV = False
_LAPJV_SOLVER = None
try:
    from lapjv import lapjv as _LAPJV_SOLVER

    HAS_LAPJV = True
except ImportError:
    try:
        from lap import lapjv as _LAPJV_SOLVER

        HAS_LAPJV = True
    except ImportError:
        HAS_LAPJV = False
        _LAPJV_SOLVER = None

SUPPORTED_SOLVERS = ("scipy", "lapjv")


def resolve_solver(assign_solver: Optional[str]) -> str:
    """
    Normalise a solver name, falling back to whatever is installed.
    """
    solver = (assign_solver or "scipy").lower()
    if solver not in SUPPORTED_SOLVERS:
        warnings.warn(f"Unknown assign_solver='{solver}', fallback to scipy", RuntimeWarning)
        solver = "scipy"
    if solver == "lapjv" and not HAS_LAPJV:
        if not HAS_SCIPY:
            raise RuntimeError("No assignment solver available (lapjv and scipy are both unavailable)")
        warnings.warn("lapjv requested but unavailable, falling back to scipy solver", RuntimeWarning)
        solver = "scipy"
    if solver == "scipy" and not HAS_SCIPY:
        if not HAS_LAPJV:
            raise RuntimeError("No assignment solver available (scipy and lapjv are both unavailable)")
        warnings.warn("scipy solver requested but unavailable, falling back to lapjv", RuntimeWarning)
        solver = "lapjv"
    return solver


def is_permutation(assignment: np.ndarray) -> bool:
    """True if ``assignment`` is a square 0/1 matrix with one 1 per row and column."""
    a = np.asarray(assignment)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        return False
    if a.size == 0:
        return True
    if not np.all((a == 0) | (a == 1)):
        return False
    return bool(np.all(a.sum(axis=0) == 1) and np.all(a.sum(axis=1) == 1))


def _row_to_col_lapjv(cost_matrix: np.ndarray) -> np.ndarray:
    size = cost_matrix.shape[0]
    result = _LAPJV_SOLVER(np.ascontiguousarray(cost_matrix, dtype=np.float64))
    row_to_col: Optional[np.ndarray] = None

    if isinstance(result, tuple):
        if len(result) == 3 and np.isscalar(result[0]):
            row_to_col = np.asarray(result[1], dtype=np.int64)
        elif len(result) >= 2:
            first = np.asarray(result[0])
            second = np.asarray(result[1])
            if first.ndim == 1 and first.shape[0] == size:
                row_to_col = first.astype(np.int64)
            elif second.ndim == 1 and second.shape[0] == size:
                row_to_col = second.astype(np.int64)
    if row_to_col is None:
        raise RuntimeError("Unexpected lapjv return signature")
    return row_to_col


def _row_to_col_scipy(cost_matrix: np.ndarray) -> np.ndarray:
    row_ind, col_ind = linear_sum_assignment(cost_matrix)
    row_to_col = np.full(cost_matrix.shape[0], -1, dtype=np.int64)
    row_to_col[row_ind] = col_ind
    return row_to_col


def solve_assignment(cost_matrix: np.ndarray, assign_solver: str = "scipy") -> np.ndarray:
    """
    Solve the square assignment problem, minimum total cost is best.

    Returns:
        uint8 permutation matrix of the same shape as ``cost_matrix``.

    Raises:
        ValueError: the matrix is not square (a cost model bug).
        RuntimeError: the solver produced something that is not a permutation.
    """
    cost_matrix = np.asarray(cost_matrix, dtype=np.float64)
    if cost_matrix.ndim != 2 or cost_matrix.shape[0] != cost_matrix.shape[1]:
        raise ValueError(f"Assignment requires a square cost matrix, got shape {cost_matrix.shape}")

    size = cost_matrix.shape[0]
    assignment = np.zeros((size, size), dtype=np.uint8)
    if size == 0:
        return assignment

    solver = resolve_solver(assign_solver)
    if solver == "lapjv":
        row_to_col = _row_to_col_lapjv(cost_matrix)
    else:
        row_to_col = _row_to_col_scipy(cost_matrix)

    if np.any(row_to_col < 0) or np.any(row_to_col >= size):
        raise RuntimeError(f"{solver} solver left rows unassigned")

    assignment[np.arange(size), row_to_col] = 1
    if not is_permutation(assignment):
        raise RuntimeError(f"{solver} solver returned an invalid permutation")
    logger.debug("Solved %dx%d assignment with %s", size, size, solver)
    return assignment


__all__ = [
    "HAS_LAPJV",
    "HAS_SCIPY",
    "SUPPORTED_SOLVERS",
    "is_permutation",
    "resolve_solver",
    "solve_assignment",
]
