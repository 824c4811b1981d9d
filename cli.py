"""
Headless CLI entry point for the bipartite cell tracker.

Runs the full pipeline (load -> track -> trajectories -> export) on a mask
time series.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Optional

from config import (
    TRACKING_MAX_AREA_CHANGE,
    TRACKING_MAX_DIST,
    TRAJECTORY_MASK_FACTOR,
    TRAJECTORY_MIN_TRACK_LENGTH,
)
from core import (
    GatingParameters,
    PIPELINE_STAGE_ORDER,
    PIPELINE_STAGE_WEIGHTS,
    TrackingRunDTO,
    TrajectoryParameters,
    run_tracking_pipeline,
)
from core.progress import (
    CancelFlagObserver,
    LoggingProgressObserver,
    ProgressBus,
    StageProgressMapper,
    TerminalProgressObserver,
)

logger = logging.getLogger("cli")


def run_batch(dto: TrackingRunDTO, verbose: bool = False, time_limit: Optional[float] = None) -> dict:
    """
    Execute the full pipeline.

    With ``verbose`` progress goes to the log instead of the terminal bar.
    ``time_limit`` (seconds) aborts the run with InterruptedError at the
    next progress update once exceeded.

    Returns:
        Dict keyed by stage name containing each stage output.
    """
    t_start = time.perf_counter()
    progress_bus = ProgressBus()
    if verbose:
        progress_bus.subscribe(LoggingProgressObserver(log=logger, level=logging.INFO))
    else:
        mapper = StageProgressMapper(PIPELINE_STAGE_ORDER, weights=PIPELINE_STAGE_WEIGHTS)
        progress_bus.subscribe(TerminalProgressObserver(mapper=mapper))
    if time_limit is not None:
        deadline = t_start + time_limit
        progress_bus.subscribe(CancelFlagObserver(
            lambda: time.perf_counter() >= deadline,
            message=f"Time limit of {time_limit:g}s exceeded.",
        ))

    results = run_tracking_pipeline(dto=dto, progress_bus=progress_bus)
    elapsed = time.perf_counter() - t_start

    tracking = results["track"]
    trajectories = results["trajectories"]
    summary = tracking.get_summary()
    print(f"\nPipeline complete in {elapsed:.2f}s")
    print(
        f"Frames: {summary['num_frames']}  tracks: {summary['num_tracks']}  "
        f"gating distance: {summary['max_dist']:g}"
    )
    print(f"Trajectories kept: {len(trajectories.trajectories)}  excluded: {len(trajectories.excluded)}")
    exported = results.get("export", [])
    if exported:
        print("Exported files:")
        for path in exported:
            print(f"  {path}")

    return results


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python cli.py",
        description="Track objects across a 2D mask time series by bipartite matching",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Path to YAML or JSON config file. Overrides other flags.",
    )
    parser.add_argument("--input", metavar="PATH", default="", help="Mask stack (.npy/.npz/.tif) or folder of frames.")
    parser.add_argument("--mask", metavar="PATH", default=None, help="Auxiliary intensity channel for trajectory filtering.")
    parser.add_argument("--output", metavar="DIR", default=None, help="Output directory.")
    parser.add_argument("--max-dist", metavar="PX", type=float, default=TRACKING_MAX_DIST, help="Gating distance.")
    parser.add_argument(
        "--auto-distance",
        dest="auto_distance",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Estimate the gating distance from the sequence.",
    )
    parser.add_argument(
        "--max-area-change",
        metavar="FRAC",
        type=float,
        default=TRACKING_MAX_AREA_CHANGE,
        help="Tolerated fractional area change for a match.",
    )
    parser.add_argument("--eight-connected", action="store_true", help="Use 8-connectivity for region labelling.")
    parser.add_argument(
        "--min-track-length",
        metavar="N",
        type=int,
        default=TRAJECTORY_MIN_TRACK_LENGTH,
        help="Minimum trajectory length.",
    )
    parser.add_argument(
        "--exclude-bright",
        action="store_true",
        help="Drop tracks that are bright in the mask channel instead of keeping them.",
    )
    parser.add_argument(
        "--mask-factor",
        metavar="F",
        type=float,
        default=TRAJECTORY_MASK_FACTOR,
        help="Region mean must reach F times the frame mean of the mask channel.",
    )
    parser.add_argument("--pre-labeled", action="store_true", help="Input frames are label images.")
    parser.add_argument("--remove-excluded", action="store_true", help="Clear excluded tracks from the exported labels.")
    parser.add_argument(
        "--formats",
        metavar="FMT",
        nargs="+",
        default=["npy", "csv", "json"],
        help="Export formats: npy csv json tiff (space-separated).",
    )
    parser.add_argument(
        "--time-limit",
        metavar="SEC",
        type=float,
        default=None,
        help="Abort the run once it takes longer than SEC seconds.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print resolved DTO without running.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug).")
    return parser


def _resolve_dto(args: argparse.Namespace, parser: argparse.ArgumentParser) -> TrackingRunDTO:
    """Resolve DTO from config file or inline CLI flags."""
    if args.config:
        cfg_path = args.config
        if cfg_path.endswith(".json"):
            return TrackingRunDTO.from_json(cfg_path)
        return TrackingRunDTO.from_yaml(cfg_path)

    if not args.input:
        parser.error("Provide --config FILE or --input PATH")

    return TrackingRunDTO(
        input_path=args.input,
        mask_path=args.mask,
        pre_labeled=args.pre_labeled,
        gating=GatingParameters(
            max_dist=args.max_dist,
            max_area_change=args.max_area_change,
            connectivity=8 if args.eight_connected else 4,
            auto_distance=args.auto_distance,
        ),
        trajectory=TrajectoryParameters(
            min_track_length=args.min_track_length,
            mask_include=not args.exclude_bright,
            mask_factor=args.mask_factor,
        ),
        output_dir=args.output,
        export_formats=tuple(args.formats),
        remove_excluded=args.remove_excluded,
    )


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        dto = _resolve_dto(args, parser)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    if args.dry_run:
        print("Resolved TrackingRunDTO:")
        print(json.dumps(dto.to_dict(), indent=2))
        return 0

    print("=" * 60)
    print("Bipartite Cell Tracker - Headless Batch Run")
    print("=" * 60)

    try:
        run_batch(dto, verbose=args.verbose > 0, time_limit=args.time_limit)
    except (KeyboardInterrupt, InterruptedError):
        print("\nAborted by user.")
        return 1
    except Exception as exc:
        logger.exception("Pipeline failed")
        print(f"\nPipeline failed: {type(exc).__name__}: {exc}")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
