"""
Tracking processors package.

Modules:
- tracking_utils: Pairwise geometry between region sets
- cost_model: Dummy-padded cost matrices and merge/split flags
- assignment: Min-cost permutation solver (scipy / lapjv)
- calibration: Automatic gating distance estimation
- cell_tracker: Identity propagation across frames
- trajectory: Per-track centroid trajectories
"""

from processors.assignment import solve_assignment, is_permutation
from processors.cost_model import CostMatrix, build_cost_matrix, identity_assignment
from processors.calibration import GatingCalibrator, determine_gating_distance
from processors.cell_tracker import CellTrackerBipartite, TrackLabelPropagator, DISAPPEARED
from processors.trajectory import TrajectoryBuilder, remove_excluded_objects

__all__ = [
    'solve_assignment',
    'is_permutation',
    'CostMatrix',
    'build_cost_matrix',
    'identity_assignment',
    'GatingCalibrator',
    'determine_gating_distance',
    'CellTrackerBipartite',
    'TrackLabelPropagator',
    'DISAPPEARED',
    'TrajectoryBuilder',
    'remove_excluded_objects',
]
