"""
Core module containing data structures, configuration DTOs and the pipeline.
"""

from core.regions import Region, label_regions, regions_from_labels, validate_frames
from core.time_series import (
    CalibrationResult,
    EventKind,
    ExclusionReason,
    Track,
    TrackingEvent,
    TrackingResult,
    TrackStatus,
    Trajectory,
    TrajectoryResult,
)
from core.dto import CalibrationParameters, GatingParameters, TrackingRunDTO, TrajectoryParameters
from core.progress import (
    ProgressEvent,
    ProgressObserver,
    ProgressBus,
    StageProgressMapper,
    CancelFlagObserver,
    LoggingProgressObserver,
    TerminalProgressObserver,
)
from core.pipeline import (
    PipelineStage,
    PIPELINE_STAGE_ORDER,
    PIPELINE_STAGE_WEIGHTS,
    resolve_pipeline_stages,
    build_tracking_pipeline,
    run_tracking_pipeline,
)

__all__ = [
    'Region', 'label_regions', 'regions_from_labels', 'validate_frames',
    'CalibrationResult', 'EventKind', 'ExclusionReason', 'Track', 'TrackingEvent',
    'TrackingResult', 'TrackStatus', 'Trajectory', 'TrajectoryResult',
    'CalibrationParameters', 'GatingParameters', 'TrackingRunDTO', 'TrajectoryParameters',
    'ProgressEvent', 'ProgressObserver', 'ProgressBus', 'StageProgressMapper',
    'CancelFlagObserver', 'LoggingProgressObserver', 'TerminalProgressObserver',
    'PipelineStage', 'PIPELINE_STAGE_ORDER', 'PIPELINE_STAGE_WEIGHTS',
    'resolve_pipeline_stages', 'build_tracking_pipeline', 'run_tracking_pipeline',
]
