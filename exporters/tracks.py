"""
Exporters for tracking results: relabelled stacks, trajectories and events.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import numpy as np

from core.time_series import TrackingResult, TrajectoryResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TRAJECTORY_CSV_HEADER = ("track_id", "start_frame", "frame", "x", "y")


class TrackExporter:
    """
    Writes tracking outputs to disk. Every method returns the written path.
    """

    @staticmethod
    def export_labels(label_frames: np.ndarray, filepath: PathLike) -> str:
        """Label stack as .npy (pixel value = track id + 1)."""
        if label_frames is None:
            raise ValueError("No label stack to export.")
        np.save(str(filepath), np.asarray(label_frames))
        logger.info("[Exporter] Label stack saved to %s", filepath)
        return str(filepath)

    @staticmethod
    def export_labels_tiff(label_frames: np.ndarray, filepath: PathLike) -> str:
        """Label stack as a multi-page TIFF."""
        from tifffile import imwrite

        if label_frames is None:
            raise ValueError("No label stack to export.")
        imwrite(str(filepath), np.asarray(label_frames, dtype=np.int32))
        logger.info("[Exporter] Label stack saved to %s", filepath)
        return str(filepath)

    @staticmethod
    def export_trajectories_csv(result: TrajectoryResult, filepath: PathLike) -> str:
        """One row per trajectory point."""
        with open(filepath, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(TRAJECTORY_CSV_HEADER)
            for track_id, trajectory in result.trajectories.items():
                for offset, (x, y) in enumerate(trajectory.points):
                    writer.writerow((track_id, trajectory.start_frame, trajectory.start_frame + offset, x, y))
        logger.info("[Exporter] %d trajectories saved to %s", len(result.trajectories), filepath)
        return str(filepath)

    @staticmethod
    def export_trajectories_json(result: TrajectoryResult, filepath: PathLike) -> str:
        payload = {
            "mask_filter_applied": result.mask_filter_applied,
            "trajectories": [t.to_dict() for t in result.trajectories.values()],
        }
        with open(filepath, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        logger.info("[Exporter] Trajectories saved to %s", filepath)
        return str(filepath)

    @staticmethod
    def export_excluded_json(result: TrajectoryResult, filepath: PathLike) -> str:
        payload = {str(track_id): result.excluded[track_id].value for track_id in result.excluded_ids}
        with open(filepath, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        logger.info("[Exporter] %d excluded ids saved to %s", len(payload), filepath)
        return str(filepath)

    @staticmethod
    def export_events_json(result: TrackingResult, filepath: PathLike) -> str:
        payload = {
            "summary": result.get_summary(),
            "events": [event.to_dict() for event in result.events],
        }
        with open(filepath, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        logger.info("[Exporter] %d events saved to %s", len(result.events), filepath)
        return str(filepath)


def export_tracking_outputs(
    out_dir: PathLike,
    tracking: TrackingResult,
    trajectories: Optional[TrajectoryResult] = None,
    formats: Iterable[str] = ("npy", "csv", "json"),
    label_frames: Optional[np.ndarray] = None,
) -> List[str]:
    """
    Write every requested output into ``out_dir``.

    ``label_frames`` overrides the tracker's label stack (e.g. after removing
    excluded objects). Unknown formats are skipped with a warning.
    """
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    labels = tracking.label_frames if label_frames is None else label_frames

    exported: List[str] = []
    for fmt in (f.lower() for f in formats):
        if fmt == "npy":
            exported.append(TrackExporter.export_labels(labels, out / "labels.npy"))
        elif fmt == "tiff":
            exported.append(TrackExporter.export_labels_tiff(labels, out / "labels.tif"))
        elif fmt == "csv":
            if trajectories is not None:
                exported.append(TrackExporter.export_trajectories_csv(trajectories, out / "trajectories.csv"))
        elif fmt == "json":
            if trajectories is not None:
                exported.append(TrackExporter.export_trajectories_json(trajectories, out / "trajectories.json"))
                exported.append(TrackExporter.export_excluded_json(trajectories, out / "excluded.json"))
            exported.append(TrackExporter.export_events_json(tracking, out / "events.json"))
        else:
            logger.warning("[Exporter] Unknown export format %r skipped", fmt)
    return exported
