"""
Data Transfer Objects (DTOs) for the cell tracking pipeline.

Design rules
------------
* All DTOs are immutable (frozen=True).  The tracker never introspects its
  caller; the caller builds a DTO and *passes* it in.
* ``from_dict`` / ``to_dict`` keep serialisation in one place.
* Defaults come from ``config`` so a bare DTO reproduces the documented
  behaviour.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, Optional, Dict, Any

from config import (
    CALIBRATION_MAX_ITERATIONS,
    CALIBRATION_R_MIN,
    CALIBRATION_R_STEP,
    EXPORT_FORMATS,
    REGION_CONNECTIVITY,
    TRACKING_ASSIGN_SOLVER,
    TRACKING_AUTO_DISTANCE,
    TRACKING_DIVISION_CIRCULARITY,
    TRACKING_MAX_AREA_CHANGE,
    TRACKING_MAX_DIST,
    TRACKING_MAX_WORKERS,
    TRAJECTORY_MASK_FACTOR,
    TRAJECTORY_MASK_INCLUDE,
    TRAJECTORY_MIN_TRACK_LENGTH,
)


# ---------------------------------------------------------------------------
# Gating parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GatingParameters:
    """
    Immutable snapshot of every frame-to-frame matching parameter.

    ``max_dist`` is ignored by the tracker when ``auto_distance`` is set; the
    calibrated radius is used instead.
    """

    max_dist:             float = TRACKING_MAX_DIST
    max_area_change:      float = TRACKING_MAX_AREA_CHANGE
    connectivity:         int   = REGION_CONNECTIVITY       # 4 | 8
    auto_distance:        bool  = TRACKING_AUTO_DISTANCE
    division_circularity: float = TRACKING_DIVISION_CIRCULARITY
    assign_solver:        str   = TRACKING_ASSIGN_SOLVER    # "scipy" | "lapjv"

    def __post_init__(self) -> None:
        if self.connectivity not in (4, 8):
            raise ValueError(f"connectivity must be 4 or 8, got {self.connectivity}")
        if self.max_dist < 0:
            raise ValueError(f"max_dist must be non-negative, got {self.max_dist}")
        if self.max_area_change < 0:
            raise ValueError(f"max_area_change must be non-negative, got {self.max_area_change}")

    def with_max_dist(self, max_dist: float) -> "GatingParameters":
        """Copy with a different gating distance (used after calibration)."""
        return GatingParameters(
            max_dist             = float(max_dist),
            max_area_change      = self.max_area_change,
            connectivity         = self.connectivity,
            auto_distance        = self.auto_distance,
            division_circularity = self.division_circularity,
            assign_solver        = self.assign_solver,
        )

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "GatingParameters":
        return GatingParameters(
            max_dist             = float(d.get("max_dist",             TRACKING_MAX_DIST)),
            max_area_change      = float(d.get("max_area_change",      TRACKING_MAX_AREA_CHANGE)),
            connectivity         = int(d.get("connectivity",           REGION_CONNECTIVITY)),
            auto_distance        = bool(d.get("auto_distance",         TRACKING_AUTO_DISTANCE)),
            division_circularity = float(d.get("division_circularity", TRACKING_DIVISION_CIRCULARITY)),
            assign_solver        = str(d.get("assign_solver",          TRACKING_ASSIGN_SOLVER)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_dist":             self.max_dist,
            "max_area_change":      self.max_area_change,
            "connectivity":         self.connectivity,
            "auto_distance":        self.auto_distance,
            "division_circularity": self.division_circularity,
            "assign_solver":        self.assign_solver,
        }


# ---------------------------------------------------------------------------
# Calibration parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationParameters:
    """Search bounds for the automatic gating distance estimation."""

    r_min:          int           = CALIBRATION_R_MIN
    r_max:          Optional[int] = None    # None -> frame width // 10
    r_step:         int           = CALIBRATION_R_STEP
    max_iterations: Optional[int] = CALIBRATION_MAX_ITERATIONS

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "CalibrationParameters":
        r_max = d.get("r_max")
        max_iter = d.get("max_iterations", CALIBRATION_MAX_ITERATIONS)
        return CalibrationParameters(
            r_min          = int(d.get("r_min",  CALIBRATION_R_MIN)),
            r_max          = int(r_max) if r_max is not None else None,
            r_step         = int(d.get("r_step", CALIBRATION_R_STEP)),
            max_iterations = int(max_iter) if max_iter is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "r_min":          self.r_min,
            "r_max":          self.r_max,
            "r_step":         self.r_step,
            "max_iterations": self.max_iterations,
        }


# ---------------------------------------------------------------------------
# Trajectory parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrajectoryParameters:
    """Inclusion rules applied when extracting trajectories."""

    min_track_length: int   = TRAJECTORY_MIN_TRACK_LENGTH
    mask_include:     bool  = TRAJECTORY_MASK_INCLUDE
    mask_factor:      float = TRAJECTORY_MASK_FACTOR

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "TrajectoryParameters":
        return TrajectoryParameters(
            min_track_length = int(d.get("min_track_length", TRAJECTORY_MIN_TRACK_LENGTH)),
            mask_include     = bool(d.get("mask_include",    TRAJECTORY_MASK_INCLUDE)),
            mask_factor      = float(d.get("mask_factor",    TRAJECTORY_MASK_FACTOR)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_track_length": self.min_track_length,
            "mask_include":     self.mask_include,
            "mask_factor":      self.mask_factor,
        }


# ---------------------------------------------------------------------------
# Tracking run DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrackingRunDTO:
    """
    Immutable configuration for a headless tracking run.

    Used by the CLI and by tests that run the whole pipeline.
    """

    # Input
    input_path:      str                   = ""
    mask_path:       Optional[str]         = None     # auxiliary intensity channel
    pre_labeled:     bool                  = False    # input frames are label images

    # Algorithm
    gating:          GatingParameters      = field(default_factory=GatingParameters)
    calibration:     CalibrationParameters = field(default_factory=CalibrationParameters)
    trajectory:      TrajectoryParameters  = field(default_factory=TrajectoryParameters)
    max_workers:     int                   = TRACKING_MAX_WORKERS

    # Output
    output_dir:      Optional[str]         = None
    export_formats:  Tuple[str, ...]       = EXPORT_FORMATS      # "npy", "csv", "json"
    remove_excluded: bool                  = False    # drop excluded tracks from the label stack

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "TrackingRunDTO":
        formats = d.get("export_formats", list(EXPORT_FORMATS))
        if isinstance(formats, str):
            formats = [formats]
        return TrackingRunDTO(
            input_path      = str(d.get("input_path", "")),
            mask_path       = d.get("mask_path"),
            pre_labeled     = bool(d.get("pre_labeled", False)),
            gating          = GatingParameters.from_dict(d.get("gating") or {}),
            calibration     = CalibrationParameters.from_dict(d.get("calibration") or {}),
            trajectory      = TrajectoryParameters.from_dict(d.get("trajectory") or {}),
            max_workers     = int(d.get("max_workers", TRACKING_MAX_WORKERS)),
            output_dir      = d.get("output_dir"),
            export_formats  = tuple(formats),
            remove_excluded = bool(d.get("remove_excluded", False)),
        )

    @staticmethod
    def from_yaml(path: str) -> "TrackingRunDTO":
        """Load config from a YAML file."""
        import yaml  # only needed for YAML configs
        with open(path, encoding="utf-8") as fh:
            d = yaml.safe_load(fh)
        return TrackingRunDTO.from_dict(d or {})

    @staticmethod
    def from_json(path: str) -> "TrackingRunDTO":
        """Load config from a JSON file."""
        import json
        with open(path, encoding="utf-8") as fh:
            d = json.load(fh)
        return TrackingRunDTO.from_dict(d)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_path":      self.input_path,
            "mask_path":       self.mask_path,
            "pre_labeled":     self.pre_labeled,
            "gating":          self.gating.to_dict(),
            "calibration":     self.calibration.to_dict(),
            "trajectory":      self.trajectory.to_dict(),
            "max_workers":     self.max_workers,
            "output_dir":      self.output_dir,
            "export_formats":  list(self.export_formats),
            "remove_excluded": self.remove_excluded,
        }
