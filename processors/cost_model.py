"""
Square cost matrices for frame-to-frame assignment with dummy nodes.

For ``n`` current and ``m`` next regions the matrix is (n+m) x (n+m):

* top-left n x m block: centroid distance for pairs passing the gates,
  a prohibitive cost otherwise;
* rows >= n (dummy rows): a next region matched here is a birth;
* columns >= m (dummy columns): a current region matched here is a death;
* every dummy entry, including dummy x dummy, holds the sentinel
  ``current_max + 1``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from core.dto import GatingParameters
from core.regions import Region
from core.time_series import EventKind
from processors.tracking_utils import (
    area_fraction_matrix,
    distance_matrix,
    normalize_area_fraction,
)


@dataclass(frozen=True)
class CandidateFlag:
    """Advisory merge/split/division hint for one (current, next) pair."""
    kind: EventKind
    current_index: int
    next_index: int
    distance: float
    area_fraction: float


@dataclass
class CostMatrix:
    """
    Padded cost matrix plus the pairwise measurements it was built from.

    Attributes:
        costs: (n+m) x (n+m) matrix, or max(n, m) square when n or m is 0
        n: Number of current regions
        m: Number of next regions
        sentinel: Dummy cost, current_max + 1
        infeasible_cost: Cost of real pairs failing the gates (> sentinel)
        distances: n x m centroid distances
        area_fractions: n x m raw ratios area(next) / area(current)
        feasible: n x m gate result
        flags: Advisory merge/split/division hints
    """
    costs: np.ndarray
    n: int
    m: int
    sentinel: float
    infeasible_cost: float
    distances: np.ndarray
    area_fractions: np.ndarray
    feasible: np.ndarray
    flags: List[CandidateFlag] = field(default_factory=list)

    @property
    def size(self) -> int:
        return int(self.costs.shape[0])

    @property
    def is_degenerate(self) -> bool:
        """One side is empty; every region is a birth or every region a death."""
        return self.n == 0 or self.m == 0


def identity_assignment(size: int) -> np.ndarray:
    """Identity permutation used when one of the frames has no regions."""
    return np.eye(int(size), dtype=np.uint8)


def _degenerate_matrix(n: int, m: int) -> CostMatrix:
    size = m if n == 0 else n
    sentinel = 1.0
    return CostMatrix(
        costs=np.full((size, size), sentinel, dtype=np.float64),
        n=n,
        m=m,
        sentinel=sentinel,
        infeasible_cost=2.0 * sentinel,
        distances=np.zeros((n, m), dtype=np.float64),
        area_fractions=np.zeros((n, m), dtype=np.float64),
        feasible=np.zeros((n, m), dtype=bool),
    )


def candidate_flags(
    current: Sequence[Region],
    distances: np.ndarray,
    area_fractions: np.ndarray,
    max_dist: float,
    max_area_change: float,
    division_circularity: float,
) -> List[CandidateFlag]:
    """
    Heuristic merge/split flags for close pairs with a large area change.

    A close pair whose area grew beyond the tolerance is a candidate merge;
    one that shrank below it is a candidate split, reported as division when
    the current region is nearly circular.
    """
    flags: List[CandidateFlag] = []
    close = distances < max_dist
    merge = close & (area_fractions > 1.0 + max_area_change)
    split = close & (area_fractions < 1.0 - max_area_change)

    for i, j in zip(*np.nonzero(merge)):
        flags.append(
            CandidateFlag(EventKind.MERGE, int(i), int(j), float(distances[i, j]), float(area_fractions[i, j]))
        )
    for i, j in zip(*np.nonzero(split)):
        if current[int(i)].circularity > division_circularity:
            kind = EventKind.DIVISION
        else:
            kind = EventKind.SPLIT
        flags.append(
            CandidateFlag(kind, int(i), int(j), float(distances[i, j]), float(area_fractions[i, j]))
        )
    return flags


def build_cost_matrix(
    current: Sequence[Region],
    nxt: Sequence[Region],
    params: GatingParameters,
) -> CostMatrix:
    """
    Build the dummy-padded cost matrix for one frame transition.

    Feasible pairs satisfy ``dist <= max_dist`` and a normalised area ratio
    ``<= 1 + max_area_change``. Infeasible pairs cost ``2 * sentinel``:
    replacing such a match (plus the dummy x dummy pair it forces) by a death
    and a birth always lowers the total cost, so the solver never links them.
    """
    n = len(current)
    m = len(nxt)
    if n == 0 or m == 0:
        return _degenerate_matrix(n, m)

    distances = distance_matrix(current, nxt)
    current_max = float(distances.max())
    sentinel = current_max + 1.0
    infeasible_cost = 2.0 * sentinel

    area_fractions = area_fraction_matrix(current, nxt)
    normalized = normalize_area_fraction(area_fractions)
    feasible = (distances <= params.max_dist) & (normalized <= 1.0 + params.max_area_change)

    size = n + m
    costs = np.full((size, size), sentinel, dtype=np.float64)
    costs[:n, :m] = np.where(feasible, distances, infeasible_cost)

    flags = candidate_flags(
        current,
        distances,
        area_fractions,
        max_dist=params.max_dist,
        max_area_change=params.max_area_change,
        division_circularity=params.division_circularity,
    )

    return CostMatrix(
        costs=costs,
        n=n,
        m=m,
        sentinel=sentinel,
        infeasible_cost=infeasible_cost,
        distances=distances,
        area_fractions=area_fractions,
        feasible=feasible,
        flags=flags,
    )
