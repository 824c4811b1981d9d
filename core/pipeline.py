"""
Staged tracking pipeline shared by the CLI and library callers.

    load -> track -> trajectories -> export

Gating distance calibration runs inside the track stage when
``dto.gating.auto_distance`` is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import numpy as np

from config import EXPORT_DEFAULT_DIR
from core.dto import TrackingRunDTO
from core.progress import ProgressBus
from core.time_series import TrackingResult, TrajectoryResult

logger = logging.getLogger(__name__)

PipelineStage = Literal["load", "track", "trajectories", "export"]
PIPELINE_STAGE_ORDER: Tuple[PipelineStage, ...] = ("load", "track", "trajectories", "export")
PIPELINE_STAGE_WEIGHTS: Dict[str, float] = {"load": 1.0, "track": 6.0, "trajectories": 2.0, "export": 1.0}


def _noop_progress(_percent: int, _message: str) -> None:
    return


@dataclass
class LoadedSeries:
    """Input of a run: the mask stack and the optional auxiliary channel."""
    frames: np.ndarray
    mask: Optional[np.ndarray] = None


@dataclass(frozen=True)
class StageNode:
    """One pipeline step; ``fn`` receives the results of ``depends_on`` by name."""
    name: str
    fn: Callable[[Dict[str, Any]], Any]
    depends_on: Tuple[str, ...] = field(default_factory=tuple)


class StageRunner:
    """
    Runs stage nodes in dependency order and collects their results.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, StageNode] = {}

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(self._nodes)

    def add(self, node: StageNode) -> "StageRunner":
        self._nodes[node.name] = node
        return self

    def _order(self) -> List[str]:
        visited = set()
        order: List[str] = []

        def visit(name: str) -> None:
            if name in visited:
                return
            visited.add(name)
            for dep in self._nodes[name].depends_on:
                if dep not in self._nodes:
                    raise KeyError(f"Stage '{name}' depends on unknown stage '{dep}'")
                visit(dep)
            order.append(name)

        for name in self._nodes:
            visit(name)
        return order

    def run(self, progress: Optional[Callable[[int, str], None]] = None) -> Dict[str, Any]:
        order = self._order()
        results: Dict[str, Any] = {}
        for i, name in enumerate(order):
            node = self._nodes[name]
            if progress:
                progress(int(100 * i / len(order)), f"Running: {name}")
            results[name] = node.fn({dep: results[dep] for dep in node.depends_on})
        if progress:
            progress(100, "Pipeline complete")
        return results


def resolve_pipeline_stages(
    target_stage: PipelineStage = "export",
    include_export: bool = True,
) -> Tuple[PipelineStage, ...]:
    """
    Ordered stages needed to reach ``target_stage``.

    Example: target_stage='track' -> ('load', 'track')
    """
    if target_stage not in PIPELINE_STAGE_ORDER:
        allowed = ", ".join(PIPELINE_STAGE_ORDER)
        raise ValueError(f"Unknown pipeline stage '{target_stage}'. Expected one of: {allowed}.")

    stages = list(PIPELINE_STAGE_ORDER[: PIPELINE_STAGE_ORDER.index(target_stage) + 1])
    if not include_export and "export" in stages:
        stages.remove("export")
    return tuple(stages)


def _stage_load(dto: TrackingRunDTO, progress: Callable[[int, str], None]) -> LoadedSeries:
    from loaders import load_mask_series

    if not dto.input_path:
        raise ValueError("input_path is required when no frames are passed in.")

    frames = load_mask_series(dto.input_path, callback=lambda p, m: progress(int(p * 0.8), m))
    mask = None
    if dto.mask_path:
        progress(80, "Loading auxiliary mask channel...")
        mask = load_mask_series(dto.mask_path)
    progress(100, f"Loaded {frames.shape[0]} frames")
    return LoadedSeries(frames=frames, mask=mask)


def _stage_track(
    loaded: LoadedSeries,
    dto: TrackingRunDTO,
    progress: Callable[[int, str], None],
) -> TrackingResult:
    from processors import CellTrackerBipartite

    tracker = CellTrackerBipartite(
        params=dto.gating,
        calibration=dto.calibration,
        pre_labeled=dto.pre_labeled,
        max_workers=dto.max_workers,
    )
    return tracker.track(loaded.frames, callback=progress)


def _stage_trajectories(
    loaded: LoadedSeries,
    tracking: TrackingResult,
    dto: TrackingRunDTO,
    progress: Callable[[int, str], None],
) -> TrajectoryResult:
    from processors import TrajectoryBuilder

    progress(0, "Extracting trajectories...")
    result = TrajectoryBuilder.from_params(dto.trajectory).build(tracking.label_frames, loaded.mask)
    progress(100, f"{len(result.trajectories)} trajectories, {len(result.excluded)} excluded")
    return result


def _stage_export(
    data: Dict[str, Any],
    dto: TrackingRunDTO,
    progress: Callable[[int, str], None],
) -> List[str]:
    from exporters import export_tracking_outputs
    from processors import remove_excluded_objects

    tracking: TrackingResult = data["track"]
    trajectories: Optional[TrajectoryResult] = data.get("trajectories")
    out_dir = Path(dto.output_dir) if dto.output_dir else Path.cwd() / EXPORT_DEFAULT_DIR

    labels = None
    if dto.remove_excluded and trajectories is not None:
        progress(10, f"Removing {len(trajectories.excluded)} excluded objects...")
        labels = remove_excluded_objects(tracking.label_frames, trajectories.excluded_ids)

    progress(20, f"Exporting to {out_dir}")
    exported = export_tracking_outputs(
        out_dir,
        tracking,
        trajectories=trajectories,
        formats=dto.export_formats,
        label_frames=labels,
    )
    progress(100, "Export complete.")
    return exported


def build_tracking_pipeline(
    dto: TrackingRunDTO,
    *,
    input_frames: Optional[np.ndarray] = None,
    mask_frames: Optional[np.ndarray] = None,
    target_stage: PipelineStage = "export",
    include_export: bool = True,
    progress_bus: Optional[ProgressBus] = None,
    stage_progress_factory: Optional[Callable[[PipelineStage], Callable[[int, str], None]]] = None,
) -> StageRunner:
    """
    Build the stage runner for a tracking run.

    Args:
        dto: Run configuration.
        input_frames: Optional preloaded (T, H, W) stack; skips file loading.
        mask_frames: Optional preloaded auxiliary channel for ``input_frames``.
        target_stage: Last stage to execute.
        include_export: Whether to include export when the target allows it.
        progress_bus: Optional progress event bus.
        stage_progress_factory: Optional per-stage progress callback factory.
    """
    stages = resolve_pipeline_stages(target_stage=target_stage, include_export=include_export)
    runner = StageRunner()

    def stage_progress(stage: PipelineStage) -> Callable[[int, str], None]:
        if stage_progress_factory is not None:
            return stage_progress_factory(stage)
        if progress_bus is not None:
            return progress_bus.stage_callback(stage)
        return _noop_progress

    def load(_deps: Dict[str, Any]) -> LoadedSeries:
        if input_frames is not None:
            return LoadedSeries(frames=np.asarray(input_frames), mask=mask_frames)
        return _stage_load(dto, stage_progress("load"))

    runner.add(StageNode("load", load))
    if "track" in stages:
        runner.add(StageNode(
            "track",
            lambda deps: _stage_track(deps["load"], dto, stage_progress("track")),
            depends_on=("load",),
        ))
    if "trajectories" in stages:
        runner.add(StageNode(
            "trajectories",
            lambda deps: _stage_trajectories(deps["load"], deps["track"], dto, stage_progress("trajectories")),
            depends_on=("load", "track"),
        ))
    if "export" in stages:
        runner.add(StageNode(
            "export",
            lambda deps: _stage_export(deps, dto, stage_progress("export")),
            depends_on=("track", "trajectories"),
        ))
    return runner


def run_tracking_pipeline(
    dto: TrackingRunDTO,
    *,
    input_frames: Optional[np.ndarray] = None,
    mask_frames: Optional[np.ndarray] = None,
    target_stage: PipelineStage = "export",
    include_export: bool = True,
    progress_bus: Optional[ProgressBus] = None,
    pipeline_progress: Optional[Callable[[int, str], None]] = None,
    stage_progress_factory: Optional[Callable[[PipelineStage], Callable[[int, str], None]]] = None,
) -> Dict[str, Any]:
    """
    Execute a tracking run and return stage outputs keyed by stage name.
    """
    runner = build_tracking_pipeline(
        dto=dto,
        input_frames=input_frames,
        mask_frames=mask_frames,
        target_stage=target_stage,
        include_export=include_export,
        progress_bus=progress_bus,
        stage_progress_factory=stage_progress_factory,
    )
    logger.debug("Running stages: %s", ", ".join(runner.stage_names))
    return runner.run(progress=pipeline_progress)


__all__ = [
    "PipelineStage",
    "PIPELINE_STAGE_ORDER",
    "PIPELINE_STAGE_WEIGHTS",
    "LoadedSeries",
    "StageNode",
    "StageRunner",
    "resolve_pipeline_stages",
    "build_tracking_pipeline",
    "run_tracking_pipeline",
]
