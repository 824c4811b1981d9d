import itertools

import numpy as np
import pytest

from processors.assignment import is_permutation, resolve_solver, solve_assignment


def _brute_force_cost(cost):
    size = cost.shape[0]
    return min(sum(cost[i, p[i]] for i in range(size)) for p in itertools.permutations(range(size)))


def test_solve_assignment_returns_optimal_permutation():
    rng = np.random.default_rng(7)
    cost = rng.uniform(0, 10, size=(5, 5))

    assignment = solve_assignment(cost)

    assert assignment.dtype == np.uint8
    assert is_permutation(assignment)
    assert float((assignment * cost).sum()) == pytest.approx(_brute_force_cost(cost))


def test_solve_assignment_rejects_non_square():
    with pytest.raises(ValueError):
        solve_assignment(np.zeros((2, 3)))


def test_solve_assignment_empty():
    assert solve_assignment(np.zeros((0, 0))).shape == (0, 0)


def test_is_permutation():
    assert is_permutation(np.eye(3, dtype=np.uint8))
    assert not is_permutation(np.ones((2, 2)))
    assert not is_permutation(np.zeros((2, 3)))
    assert not is_permutation(np.array([[1, 0], [1, 0]]))


def test_unknown_solver_falls_back_to_scipy():
    with pytest.warns(RuntimeWarning):
        assert resolve_solver("hungarian-gpu") == "scipy"
