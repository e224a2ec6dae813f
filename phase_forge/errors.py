"""Build pipeline error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for serialisation into result payloads and HTTP
responses, and has a readable ``__str__`` for logging.

The orchestrator catches generation and review failures at its
boundary and records them on the phase result; these classes are what
ends up in ``PhaseResult.errors`` and on the event bus.
"""

from __future__ import annotations


class PhaseForgeError(Exception):
    """Base error for all pipeline failures."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


class PlanningError(PhaseForgeError):
    """Concept or feature input could not be planned as given.

    The planner never raises this to callers; it degrades to a minimal
    setup + polish plan and reports the error as a warning.
    """

    status_code = 400

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        self.reason = reason
        self.field = field or ""
        detail: dict = {"reason": reason}
        if field:
            detail["field"] = field
        super().__init__(f"Planning failed: {reason}", detail=detail)


class PhaseNotFoundError(PhaseForgeError):
    """A phase number does not exist in the current plan."""

    status_code = 404

    def __init__(self, phase_number: int, available: list[int] | None = None) -> None:
        self.phase_number = phase_number
        self.available = available or []
        super().__init__(
            f"Phase {phase_number} not found",
            detail={"phase_number": phase_number, "available": self.available},
        )


class GenerationError(PhaseForgeError):
    """The code-generation callable failed, timed out or returned garbage."""

    status_code = 502

    def __init__(self, phase_number: int, reason: str) -> None:
        self.phase_number = phase_number
        self.reason = reason
        super().__init__(
            f"Generation failed for phase {phase_number}: {reason}",
            detail={"phase_number": phase_number, "reason": reason},
        )


class ReviewError(PhaseForgeError):
    """The review callable failed."""

    status_code = 502

    def __init__(self, review_key: int | str, reason: str) -> None:
        self.review_key = review_key
        self.reason = reason
        super().__init__(
            f"Quality review failed for {review_key!r}: {reason}",
            detail={"review_key": review_key, "reason": reason},
        )


class FixValidationError(PhaseForgeError):
    """An auto-fix would corrupt file structure and was discarded."""

    status_code = 422

    def __init__(self, file_path: str, reasons: list[str]) -> None:
        self.file_path = file_path
        self.reasons = reasons
        super().__init__(
            f"Fix validation failed for '{file_path}': {'; '.join(reasons)}",
            detail={"file_path": file_path, "reasons": reasons},
        )


class RestorePointNotFoundError(PhaseForgeError):
    """Requested restore point id is not stored."""

    status_code = 404

    def __init__(self, restore_point_id: str) -> None:
        self.restore_point_id = restore_point_id
        super().__init__(
            f"Restore point '{restore_point_id}' not found",
            detail={"restore_point_id": restore_point_id},
        )
