"""Processing lifecycle for one result view.

The tracker is a plain projection of externally supplied state: callers move
it between idle, processing and complete, and every change is published to
subscribers as a :class:`StatusTransition`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETE = "complete"


class InvalidTransitionError(Exception):
    """Raised when a status change skips the processing step."""


@dataclass(frozen=True)
class AnalysisResult:
    """Numbers and text returned by the analysis backend for one video."""
    ejection_fraction: float
    problem: str
    cause: str
    cure: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Build from the wire payload (camelCase keys, snake_case also accepted)."""
        ef = data.get("ejectionFraction", data.get("ejection_fraction"))
        if ef is None:
            raise ValueError("missing ejectionFraction")
        try:
            ef_value = float(ef)
        except (TypeError, ValueError):
            raise ValueError(f"ejectionFraction must be numeric, got {ef!r}") from None
        return cls(
            ejection_fraction=ef_value,
            problem=str(data.get("problem", "")),
            cause=str(data.get("cause", "")),
            cure=str(data.get("cure", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ejectionFraction": self.ejection_fraction,
            "problem": self.problem,
            "cause": self.cause,
            "cure": self.cure,
        }


@dataclass(frozen=True)
class ProcessingStatus:
    state: ProcessingState
    result: Optional[AnalysisResult] = None

    def __post_init__(self) -> None:
        if self.state == ProcessingState.COMPLETE and self.result is None:
            raise ValueError("complete status requires an analysis result")
        if self.state != ProcessingState.COMPLETE and self.result is not None:
            raise ValueError(f"{self.state.value} status cannot carry a result")

    @classmethod
    def idle(cls) -> "ProcessingStatus":
        return cls(ProcessingState.IDLE)

    @classmethod
    def processing(cls) -> "ProcessingStatus":
        return cls(ProcessingState.PROCESSING)

    @classmethod
    def complete(cls, result: AnalysisResult) -> "ProcessingStatus":
        return cls(ProcessingState.COMPLETE, result)

    @property
    def is_idle(self) -> bool:
        return self.state == ProcessingState.IDLE

    @property
    def is_processing(self) -> bool:
        return self.state == ProcessingState.PROCESSING

    @property
    def is_complete(self) -> bool:
        return self.state == ProcessingState.COMPLETE


@dataclass(frozen=True)
class StatusTransition:
    previous: ProcessingStatus
    current: ProcessingStatus
    order: int


TransitionListener = Callable[[StatusTransition], None]

# Complete is only reachable from processing; everything may return to idle.
_ALLOWED = {
    ProcessingState.IDLE: {ProcessingState.PROCESSING},
    ProcessingState.PROCESSING: {ProcessingState.PROCESSING, ProcessingState.COMPLETE, ProcessingState.IDLE},
    ProcessingState.COMPLETE: {ProcessingState.PROCESSING, ProcessingState.IDLE},
}


class StatusTracker:
    """Single source of truth for the processing status of a result view."""

    def __init__(self, *, order: int = 0) -> None:
        self._status = ProcessingStatus.idle()
        self._order = order
        self._listeners: List[TransitionListener] = []

    @property
    def status(self) -> ProcessingStatus:
        return self._status

    @property
    def order(self) -> int:
        return self._order

    def subscribe(self, listener: TransitionListener) -> Callable[[], None]:
        """Register a transition listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start_processing(self, *, order: Optional[int] = None) -> None:
        if order is not None:
            self._order = order
        self._transition(ProcessingStatus.processing())

    def complete(self, result: AnalysisResult) -> None:
        self._transition(ProcessingStatus.complete(result))

    def reset(self) -> None:
        if self._status.is_idle:
            return
        self._transition(ProcessingStatus.idle())

    def _transition(self, new: ProcessingStatus) -> None:
        previous = self._status
        if new.state not in _ALLOWED[previous.state]:
            raise InvalidTransitionError(f"cannot go from {previous.state.value} to {new.state.value}")
        self._status = new
        event = StatusTransition(previous=previous, current=new, order=self._order)
        try:
            for listener in list(self._listeners):
                listener(event)
        except Exception:
            # A listener that cannot follow the change leaves the status where it was.
            self._status = previous
            raise
        logger.debug("status %s -> %s (order=%s)", previous.state.value, new.state.value, self._order)
