"""Build events and the synchronous event bus.

The orchestrator reports everything it does as typed, immutable events.
Every event carries the phase it concerns (``phase_number`` and its
0-based ``phase_index``, or ``None`` / ``-1`` for build-level events),
the plan size and the completion percentage at emission time.

Subscribers are plain callables invoked in subscription order on the
emitting task.  A subscriber that raises is logged and the remaining
subscribers still run; a broken UI listener must never stop a build.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, fields
from typing import Any, Callable

from pydantic import BaseModel

from phase_forge.contracts import BuildProgress, ValidationResult

logger = logging.getLogger(__name__)

MAX_EVENT_HISTORY = 500


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuildEvent:
    """Base class for everything emitted by the orchestrator."""
    phase_number: int | None
    phase_index: int
    total_phases: int
    percent: int
    message: str

    @property
    def kind(self) -> str:
        name = type(self).__name__.removesuffix("Event")
        return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.model_dump() if isinstance(value, BaseModel) else value
        return data


@dataclass(frozen=True)
class BuildStartedEvent(BuildEvent):
    app_name: str


@dataclass(frozen=True)
class PhaseStartEvent(BuildEvent):
    phase_name: str
    resumed: bool


@dataclass(frozen=True)
class PhaseCompleteEvent(BuildEvent):
    """A phase finished executing, successfully or not."""
    phase_name: str
    success: bool
    tasks_completed: int
    total_tasks: int
    duration_ms: int


@dataclass(frozen=True)
class PhaseStatusEvent(BuildEvent):
    """A phase was skipped or reset for retry."""
    phase_name: str
    status: str


@dataclass(frozen=True)
class ValidationCompleteEvent(BuildEvent):
    result: ValidationResult


@dataclass(frozen=True)
class QualityReviewEvent(BuildEvent):
    report_key: int | str
    overall_score: int
    passed: bool
    fixed_issues: int


@dataclass(frozen=True)
class RestorePointEvent(BuildEvent):
    restore_point_id: str
    label: str


@dataclass(frozen=True)
class RollbackEvent(BuildEvent):
    restore_point_id: str
    files_restored: int


@dataclass(frozen=True)
class BuildStateEvent(BuildEvent):
    """Build paused or resumed."""
    state: str


@dataclass(frozen=True)
class BuildCompleteEvent(BuildEvent):
    completed_phases: list[int]
    skipped_phases: list[int]


@dataclass(frozen=True)
class ErrorEvent(BuildEvent):
    error: dict[str, Any]


@dataclass(frozen=True)
class ProgressEvent(BuildEvent):
    progress: BuildProgress


Listener = Callable[[BuildEvent], None]


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------


class EventBus:
    """Fan-out of build events to subscribers, with a bounded history."""

    def __init__(self, history_size: int = MAX_EVENT_HISTORY) -> None:
        self._listeners: list[tuple[Listener, tuple[type[BuildEvent], ...]]] = []
        self.history: deque[BuildEvent] = deque(maxlen=history_size)

    def subscribe(
        self,
        listener: Listener,
        *event_types: type[BuildEvent],
    ) -> Callable[[], None]:
        """Register *listener*, optionally only for some event types.

        Returns a callable that removes the subscription.
        """
        entry = (listener, tuple(event_types))
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [e for e in self._listeners if e[0] != listener]

    def emit(self, event: BuildEvent) -> None:
        self.history.append(event)
        for listener, wanted in list(self._listeners):
            if wanted and not isinstance(event, wanted):
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed on %s", listener, event.kind)

    def events_of(self, event_type: type[BuildEvent]) -> list[BuildEvent]:
        return [e for e in self.history if isinstance(e, event_type)]


__all__ = [
    "BuildCompleteEvent",
    "BuildEvent",
    "BuildStartedEvent",
    "BuildStateEvent",
    "ErrorEvent",
    "EventBus",
    "Listener",
    "PhaseCompleteEvent",
    "PhaseStartEvent",
    "PhaseStatusEvent",
    "ProgressEvent",
    "QualityReviewEvent",
    "RestorePointEvent",
    "RollbackEvent",
    "ValidationCompleteEvent",
]
