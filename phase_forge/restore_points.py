"""Restore points — bounded snapshots of the generated file set.

A restore point is taken before each phase's generation step.  Points
are kept newest-first and pruned to ``max_restore_points``.  Every read
hands back copies so callers can never mutate a stored snapshot.

Persistence is a JSON array of point records.  Loading validates each
record and silently drops the malformed ones; a partially corrupt file
still restores whatever is usable.
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from phase_forge.config import settings
from phase_forge.contracts import GeneratedFile, utc_now_iso
from phase_forge.errors import RestorePointNotFoundError

logger = logging.getLogger(__name__)


class RestorePoint(BaseModel):
    """One immutable snapshot of the file set."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    label: str
    timestamp: str
    files: tuple[GeneratedFile, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return len(self.files)


class RestorePointService:
    """Create, list, roll back to and persist restore points."""

    def __init__(
        self,
        max_restore_points: int | None = None,
        *,
        path: str | Path | None = None,
    ) -> None:
        limit = settings.MAX_RESTORE_POINTS if max_restore_points is None else max_restore_points
        self.max_restore_points = max(1, limit)
        if path is None and settings.RESTORE_POINTS_PATH:
            path = settings.RESTORE_POINTS_PATH
        self.path = Path(path) if path else None
        self._points: list[RestorePoint] = []

    def __len__(self) -> int:
        return len(self._points)

    # -- create / prune ------------------------------------------------------

    def create_restore_point(
        self,
        label: str,
        files: list[GeneratedFile],
        metadata: dict[str, Any] | None = None,
    ) -> RestorePoint:
        point = RestorePoint(
            id=f"rp_{uuid.uuid4().hex}",
            label=label,
            timestamp=utc_now_iso(),
            files=tuple(GeneratedFile(path=f.path, content=f.content) for f in files),
            metadata=copy.deepcopy(metadata or {}),
        )
        self._points.insert(0, point)
        self._prune()
        logger.info("Restore point %s created: %s (%d files)", point.id, label, point.file_count)
        return point

    def _prune(self) -> None:
        if len(self._points) > self.max_restore_points:
            dropped = self._points[self.max_restore_points:]
            del self._points[self.max_restore_points:]
            logger.debug("Pruned %d restore point(s)", len(dropped))

    def set_max_restore_points(self, limit: int) -> None:
        self.max_restore_points = max(1, limit)
        self._prune()

    # -- reads ---------------------------------------------------------------

    def _find(self, restore_point_id: str) -> RestorePoint:
        for point in self._points:
            if point.id == restore_point_id:
                return point
        raise RestorePointNotFoundError(restore_point_id)

    def get_restore_point(self, restore_point_id: str) -> RestorePoint:
        return self._find(restore_point_id).model_copy(deep=True)

    def list_restore_points(self) -> list[RestorePoint]:
        """Newest first."""
        return [p.model_copy(deep=True) for p in self._points]

    def most_recent(self) -> RestorePoint | None:
        return self._points[0].model_copy(deep=True) if self._points else None

    def rollback_to(self, restore_point_id: str) -> list[GeneratedFile]:
        point = self._find(restore_point_id)
        logger.info("Rolling back to %s (%s)", point.id, point.label)
        return [GeneratedFile(path=f.path, content=f.content) for f in point.files]

    def rollback_file(self, restore_point_id: str, path: str) -> str | None:
        """Content of one file at the restore point; ``None`` if it did not exist then."""
        point = self._find(restore_point_id)
        for f in point.files:
            if f.path == path:
                return f.content
        return None

    # -- delete --------------------------------------------------------------

    def delete_restore_point(self, restore_point_id: str) -> bool:
        before = len(self._points)
        self._points = [p for p in self._points if p.id != restore_point_id]
        return len(self._points) < before

    def clear(self) -> None:
        self._points.clear()

    # -- persistence ---------------------------------------------------------

    def export_json(self) -> str:
        return json.dumps([p.model_dump(mode="json") for p in self._points], indent=2)

    def import_json(self, raw: str) -> int:
        """Replace the stored points with the valid records in *raw*.

        Returns the number of points loaded.  Unparseable input loads
        nothing and leaves the current points untouched.
        """
        try:
            records = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Restore point data is not valid JSON; ignoring")
            return 0
        if not isinstance(records, list):
            logger.warning("Restore point data is not a list; ignoring")
            return 0

        loaded: list[RestorePoint] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                loaded.append(RestorePoint.model_validate(record, strict=False))
            except ValidationError as exc:
                logger.debug("Dropping malformed restore point: %s", exc.errors()[:1])
        dropped = len(records) - len(loaded)
        if dropped:
            logger.warning("Dropped %d malformed restore point record(s)", dropped)
        self._points = loaded
        self._prune()
        return len(self._points)

    def save(self, path: str | Path | None = None) -> Path:
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No restore point path configured")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.export_json(), encoding="utf-8")
        return target

    def load(self, path: str | Path | None = None) -> int:
        source = Path(path) if path else self.path
        if source is None or not source.exists():
            return 0
        return self.import_json(source.read_text(encoding="utf-8"))


__all__ = ["RestorePoint", "RestorePointService"]
