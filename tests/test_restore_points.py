"""Tests for phase_forge.restore_points — bounded snapshots and persistence."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from phase_forge.contracts import GeneratedFile
from phase_forge.errors import RestorePointNotFoundError
from phase_forge.restore_points import RestorePointService


def _files(n: int) -> list[GeneratedFile]:
    return [GeneratedFile(path=f"src/f{i}.ts", content=f"export const v{i} = {i};") for i in range(n)]


class TestCreateAndPrune:
    def test_oldest_evicted_past_limit(self):
        service = RestorePointService(max_restore_points=10)
        points = [service.create_restore_point(f"point {i}", _files(1)) for i in range(11)]
        stored = service.list_restore_points()
        assert len(stored) == 10
        assert stored[0].id == points[-1].id
        assert points[0].id not in {p.id for p in stored}

    def test_default_limit_from_settings(self, monkeypatch):
        monkeypatch.setattr("phase_forge.config.settings.MAX_RESTORE_POINTS", 3)
        assert RestorePointService().max_restore_points == 3

    def test_limit_never_below_one(self):
        assert RestorePointService(max_restore_points=0).max_restore_points == 1

    def test_set_max_prunes_immediately(self):
        service = RestorePointService()
        for i in range(5):
            service.create_restore_point(f"p{i}", [])
        service.set_max_restore_points(2)
        assert [p.label for p in service.list_restore_points()] == ["p4", "p3"]

    def test_ids_and_file_count(self):
        service = RestorePointService()
        point = service.create_restore_point("Before phase 2", _files(3), {"phase_number": 2})
        assert point.id.startswith("rp_")
        assert point.file_count == 3
        assert point.metadata == {"phase_number": 2}


class TestCopies:
    def test_metadata_is_copied_on_create(self):
        service = RestorePointService()
        metadata = {"features": ["Todo list"]}
        point = service.create_restore_point("p", [], metadata)
        metadata["features"].append("Other")
        assert service.get_restore_point(point.id).metadata == {"features": ["Todo list"]}

    def test_reads_return_copies(self):
        service = RestorePointService()
        point = service.create_restore_point("p", [], {"features": ["Todo list"]})
        fetched = service.get_restore_point(point.id)
        fetched.metadata["features"].append("Other")
        assert service.get_restore_point(point.id).metadata["features"] == ["Todo list"]

    def test_points_are_immutable(self):
        service = RestorePointService()
        point = service.create_restore_point("p", [])
        with pytest.raises(ValidationError):
            point.label = "changed"


class TestRollback:
    def test_rollback_returns_snapshot(self):
        service = RestorePointService()
        point = service.create_restore_point("p", _files(2))
        assert service.rollback_to(point.id) == _files(2)

    def test_rollback_file(self):
        service = RestorePointService()
        point = service.create_restore_point("p", _files(1))
        assert service.rollback_file(point.id, "src/f0.ts") == "export const v0 = 0;"
        assert service.rollback_file(point.id, "src/missing.ts") is None

    def test_unknown_id_raises(self):
        service = RestorePointService()
        with pytest.raises(RestorePointNotFoundError) as exc_info:
            service.rollback_to("rp_nope")
        assert exc_info.value.status_code == 404
        assert exc_info.value.restore_point_id == "rp_nope"

    def test_delete_and_most_recent(self):
        service = RestorePointService()
        assert service.most_recent() is None
        first = service.create_restore_point("first", [])
        second = service.create_restore_point("second", [])
        assert service.most_recent().id == second.id
        assert service.delete_restore_point(second.id) is True
        assert service.delete_restore_point(second.id) is False
        assert service.most_recent().id == first.id
        service.clear()
        assert len(service) == 0


class TestPersistence:
    def test_export_import(self):
        source = RestorePointService()
        source.create_restore_point("a", _files(1), {"phase_number": 1})
        source.create_restore_point("b", _files(2))
        target = RestorePointService()
        assert target.import_json(source.export_json()) == 2
        assert [p.label for p in target.list_restore_points()] == ["b", "a"]
        assert target.list_restore_points()[1].metadata == {"phase_number": 1}

    def test_malformed_records_dropped(self):
        good = {
            "id": "rp_1",
            "label": "ok",
            "timestamp": "2024-01-01T00:00:00+00:00",
            "files": [{"path": "a.ts", "content": "x"}],
            "metadata": {},
        }
        raw = json.dumps([good, {"id": "rp_2"}, "junk", {**good, "id": "rp_3", "files": "nope"}])
        service = RestorePointService()
        assert service.import_json(raw) == 1
        assert service.get_restore_point("rp_1").files[0].path == "a.ts"

    def test_invalid_json_keeps_existing_points(self):
        service = RestorePointService()
        service.create_restore_point("keep", [])
        assert service.import_json("{not json") == 0
        assert service.import_json('{"not": "a list"}') == 0
        assert len(service) == 1

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "points" / "restore.json"
        service = RestorePointService(path=path)
        service.create_restore_point("a", _files(1))
        assert service.save() == path
        assert path.exists()

        restored = RestorePointService(path=path)
        assert restored.load() == 1
        assert restored.list_restore_points()[0].label == "a"

    def test_load_missing_file(self, tmp_path):
        assert RestorePointService().load(tmp_path / "absent.json") == 0

    def test_save_without_path_raises(self):
        with pytest.raises(ValueError):
            RestorePointService().save()
