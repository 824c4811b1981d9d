"""
Progress reporting for tracking runs.

Processors only know the ``callback(percent, message)`` protocol; the bus
turns those calls into ``ProgressEvent`` objects for whatever is listening
(terminal bar, log, cancellation check).
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Immutable progress payload."""

    percent: int
    message: str
    stage: Optional[str] = None
    channel: str = "stage"  # "stage" | "pipeline"
    timestamp: float = field(default_factory=time.time)


class ProgressObserver(Protocol):
    def on_progress(self, event: ProgressEvent) -> None:
        ...


Listener = Union[Callable[[ProgressEvent], None], ProgressObserver]


def _clip_percent(percent) -> int:
    return max(0, min(100, int(percent)))


class ProgressBus:
    """
    Fan-out of progress events to subscribed observers or plain callables.

    Exceptions raised by an observer propagate to the emitting processor,
    which is how ``CancelFlagObserver`` aborts a run.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> "ProgressBus":
        self._listeners.append(listener)
        return self

    def unsubscribe(self, listener: Listener) -> "ProgressBus":
        if listener in self._listeners:
            self._listeners.remove(listener)
        return self

    def emit(self, event: ProgressEvent) -> None:
        for listener in tuple(self._listeners):
            on_progress = getattr(listener, "on_progress", None)
            if on_progress is not None:
                on_progress(event)
            else:
                listener(event)

    def stage_callback(self, stage: str) -> Callable[[int, str], None]:
        """Callback for processors running inside ``stage``."""
        def callback(percent: int, message: str) -> None:
            self.emit(ProgressEvent(percent=_clip_percent(percent), message=message, stage=stage))

        return callback

    def pipeline_callback(self) -> Callable[[int, str], None]:
        """Callback for the stage runner itself (overall progress)."""
        def callback(percent: int, message: str) -> None:
            self.emit(ProgressEvent(percent=_clip_percent(percent), message=message, channel="pipeline"))

        return callback


class StageProgressMapper:
    """
    Map a stage-local percentage onto the whole run.

    Stages get equal shares unless ``weights`` says otherwise; tracking
    usually dominates a run, loading and export are short.
    """

    def __init__(self, stages: Sequence[str], weights: Optional[Mapping[str, float]] = None) -> None:
        names = list(stages)
        raw = [max(float((weights or {}).get(name, 1.0)), 0.0) for name in names]
        total = sum(raw) or 1.0
        self._spans: Dict[str, tuple] = {}
        start = 0.0
        for name, w in zip(names, raw):
            span = 100.0 * w / total
            self._spans[name] = (start, span)
            start += span

    def map(self, stage: Optional[str], local_percent: int) -> int:
        local = _clip_percent(local_percent)
        if stage not in self._spans:
            return local
        start, span = self._spans[stage]
        return min(100, int(start + local * span / 100.0))


class CancelFlagObserver:
    """Raises InterruptedError on the next progress update once cancelled."""

    def __init__(self, is_cancelled: Callable[[], bool], message: str = "Tracking cancelled by user.") -> None:
        self._is_cancelled = is_cancelled
        self._message = message

    def on_progress(self, _event: ProgressEvent) -> None:
        if self._is_cancelled():
            raise InterruptedError(self._message)


class LoggingProgressObserver:
    """Forwards progress to a logger, skipping repeats of the same stage percent."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> None:
        self._log = log or logger
        self._level = level
        self._last: Dict[Optional[str], int] = {}

    def on_progress(self, event: ProgressEvent) -> None:
        key = event.stage if event.channel == "stage" else event.channel
        if self._last.get(key) == event.percent:
            return
        self._last[key] = event.percent
        self._log.log(self._level, "[%s] %3d%% %s", key or "run", event.percent, event.message)


class TerminalProgressObserver:
    """Single-line progress bar for the CLI."""

    def __init__(self, bar_width: int = 30, stream=None, mapper: Optional[StageProgressMapper] = None) -> None:
        self.bar_width = bar_width
        self.stream = stream or sys.stdout
        self.mapper = mapper

    def on_progress(self, event: ProgressEvent) -> None:
        if event.channel == "pipeline":
            self.stream.write(f"\n  >> {event.message}\n")
            self.stream.flush()
            return

        percent = self.mapper.map(event.stage, event.percent) if self.mapper else event.percent
        filled = int(self.bar_width * percent / 100)
        bar = "#" * filled + "." * (self.bar_width - filled)
        self.stream.write(f"\r  [{event.stage or 'task':<12}] [{bar}] {percent:3d}%  {event.message:<44}")
        if event.percent >= 100:
            self.stream.write("\n")
        self.stream.flush()


__all__ = [
    "ProgressEvent",
    "ProgressObserver",
    "ProgressBus",
    "StageProgressMapper",
    "CancelFlagObserver",
    "LoggingProgressObserver",
    "TerminalProgressObserver",
]
