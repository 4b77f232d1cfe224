"""
Progress reporting for imports.

A ProgressReporter wraps a caller-supplied callback
``callback(stage, message, progress_percent, completed, error=None)``.
Within one run the percentage never goes backwards and exactly one terminal
event (``complete`` or ``error``) is emitted.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]

STAGE_COMPLETE = 'complete'
STAGE_ERROR = 'error'


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    progress_percent: float
    completed: bool = False
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (STAGE_COMPLETE, STAGE_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressReporter:
    """Emits ordered progress events for a single run."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.events: List[ProgressEvent] = []
        self._percent = 0.0
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def percent(self) -> float:
        return self._percent

    def _emit(self, event: ProgressEvent):
        self.events.append(event)
        logger.info(f"Progress: {event.stage} ({event.progress_percent:.1f}%) - {event.message}")
        if self.callback is None:
            return
        try:
            self.callback(event.stage, event.message, event.progress_percent,
                          event.completed, event.error)
        except Exception as e:
            logger.error(f"Progress callback failed at stage '{event.stage}': {e}")

    def update(self, stage: str, percent: float, message: str):
        """Emit an intermediate event; percent is clamped and never decreases."""
        if self._finished:
            logger.debug(f"Ignoring progress after terminal event: {stage} - {message}")
            return
        self._percent = max(self._percent, min(100.0, max(0.0, float(percent))))
        self._emit(ProgressEvent(stage, message, self._percent))

    def complete(self, message: str = 'Import complete'):
        if self._finished:
            return
        self._finished = True
        self._percent = 100.0
        self._emit(ProgressEvent(STAGE_COMPLETE, message, 100.0, completed=True))

    def fail(self, error: str):
        if self._finished:
            return
        self._finished = True
        self._emit(ProgressEvent(STAGE_ERROR, error, self._percent, completed=False, error=error))

    def scaled(self, start: float, end: float) -> 'ScaledProgress':
        """Child view mapping 0..100 onto [start, end] of this run."""
        return ScaledProgress(self, start, end)


class ScaledProgress:
    """Maps a sub-task's 0..100 range into a slice of the parent run."""

    def __init__(self, parent: ProgressReporter, start: float, end: float):
        self.parent = parent
        self.start = start
        self.end = end

    def update(self, stage: str, percent: float, message: str):
        fraction = min(100.0, max(0.0, float(percent))) / 100.0
        self.parent.update(stage, self.start + (self.end - self.start) * fraction, message)
