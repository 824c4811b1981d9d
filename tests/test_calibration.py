import numpy as np
import pytest

from core.dto import CalibrationParameters, GatingParameters
from processors.calibration import GatingCalibrator, count_below, determine_gating_distance


def _frame(squares, shape=(200, 200), size=5):
    frame = np.zeros(shape, dtype=np.uint8)
    for row, col in squares:
        frame[row:row + size, col:col + size] = 1
    return frame


def _three_movers(num_frames=5):
    """Three well separated squares, each moving 5px per frame."""
    frames = []
    for t in range(num_frames):
        dr, dc = 4 * t, 3 * t
        frames.append(_frame([(20 + dr, 20 + dc), (20 + dr, 100 + dc), (100 + dr, 20 + dc)]))
    return np.stack(frames)


def test_radii_default_range_excludes_upper_bound():
    calibrator = GatingCalibrator()
    assert calibrator.radii(200) == list(range(1, 20))
    assert GatingCalibrator(max_iterations=3).radii(200) == [1, 2, 3]
    assert GatingCalibrator(r_min=2, r_max=11, r_step=3).radii(500) == [2, 5, 8]


def test_count_below_is_strict():
    values = np.array([1.0, 5.0, 5.0, 7.0])
    assert count_below(values, 5) == 1
    assert count_below(values, 6) == 3


def test_calibration_finds_motion_scale():
    result = GatingCalibrator().calibrate(_three_movers())

    assert result.converged
    assert result.radius == pytest.approx(6.0)
    assert 5.0 < result.radius < 50.0
    assert result.probability == pytest.approx(1.0)
    assert result.n_true_links == pytest.approx(12.0)
    assert result.curve[:6] == [(r, 0.0) for r in range(1, 6)] + [(6, 1.0)]


def test_calibration_keeps_best_radius_without_convergence():
    frames = np.stack([
        _frame([(20, 20), (120, 120)]),
        _frame([(24, 23), (120, 160)]),
    ])

    result = GatingCalibrator().calibrate(frames)

    assert not result.converged
    assert result.radius == pytest.approx(6.0)
    assert result.probability == pytest.approx(0.5)
    assert len(result.curve) == 19


def test_calibration_falls_back_when_no_links():
    frames = np.stack([_frame([(20, 20)]), _frame([(150, 150)])])

    result = GatingCalibrator(fallback_radius=30.0).calibrate(frames)

    assert not result.converged
    assert result.radius == 30.0
    assert result.probability == 0.0


def test_calibration_single_frame_falls_back():
    result = GatingCalibrator(fallback_radius=12.0).calibrate(_frame([(20, 20)]))
    assert result.radius == 12.0
    assert not result.converged


def test_max_iterations_limits_the_sweep():
    result = GatingCalibrator(max_iterations=4, fallback_radius=9.0).calibrate(_three_movers())

    assert [r for r, _ in result.curve] == [1, 2, 3, 4]
    assert result.radius == 9.0


def test_from_params_and_wrapper():
    calibrator = GatingCalibrator.from_params(
        CalibrationParameters(r_min=3, r_max=10),
        GatingParameters(max_dist=17.0, connectivity=8),
    )
    assert calibrator.radii(1000) == list(range(3, 10))
    assert calibrator.fallback_radius == 17.0
    assert calibrator.connectivity == 8

    assert determine_gating_distance(_three_movers()) == pytest.approx(6.0)


def test_progress_callback_reaches_100():
    updates = []
    GatingCalibrator().calibrate(_three_movers(), callback=lambda p, m: updates.append(p))
    assert updates[-1] == 100


def test_invalid_step():
    with pytest.raises(ValueError):
        GatingCalibrator(r_step=0)
