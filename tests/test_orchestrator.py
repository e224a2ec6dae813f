"""Tests for phase_forge.orchestrator — the per-phase state machine.

Covers:
- ordered execution, skipping and dependency gating
- pause / resume at task boundaries
- generation and review failures (recorded, never raised)
- quality gate enforcement and auto-fix write-back
- progress, validation, restore points and rollback
- whole-build run, complexity skipping and final review
"""

from unittest.mock import AsyncMock

import pytest

from phase_forge.contracts import AppConcept, GeneratedFile, Phase, PhasePlan, PhaseStatus
from phase_forge.errors import PhaseForgeError, PhaseNotFoundError
from phase_forge.events import (
    BuildCompleteEvent,
    ErrorEvent,
    PhaseCompleteEvent,
    QualityReviewEvent,
    RollbackEvent,
    ValidationCompleteEvent,
)
from phase_forge.orchestrator import PhaseOrchestrator
from phase_forge.restore_points import RestorePointService
from tests.conftest import clean_component, make_blob


EVAL_SOURCE = "export function run(code) {\n  return eval(code);\n}"

DEBRIS_SOURCE = (
    "export function Debug() {\n"
    "  console.log('x');\n"
    "  return <div>debug</div>;\n"
    "}"
)


async def _started(plan: PhasePlan, **kwargs) -> PhaseOrchestrator:
    orch = PhaseOrchestrator(plan, **kwargs)
    await orch.start_build()
    return orch


def _blob_returning(files: dict[str, str]) -> AsyncMock:
    return AsyncMock(return_value=make_blob(files))


# ═══════════════════════════════════════════════════════════════════════════
# Ordering & dependencies
# ═══════════════════════════════════════════════════════════════════════════


class TestExecution:
    @pytest.mark.asyncio
    async def test_phases_run_in_order(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        results = await orch.run_build()
        assert [r.phase_number for r in results] == [1, 2, 3]
        assert all(r.success for r in results)
        assert [c.args[0].number for c in clean_generate.await_args_list] == [1, 2, 3]
        assert all(p.status == PhaseStatus.COMPLETED for p in orch.phases)
        assert orch.is_complete is True

    @pytest.mark.asyncio
    async def test_skipped_dependency_still_allows_later_phase(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        assert (await orch.execute_phase(1)).success is True
        orch.skip_phase(2)
        result = await orch.execute_phase(3)
        assert result.success is True
        assert orch.get_phase(3).status == PhaseStatus.COMPLETED
        assert [c.args[0].number for c in clean_generate.await_args_list] == [1, 3]

    @pytest.mark.asyncio
    async def test_result_details(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        result = await orch.execute_phase(1)
        assert result.tasks_completed == result.total_tasks == 2
        assert result.files_generated == ["src/phase1.tsx"]
        assert result.errors == []
        phase = orch.get_phase(1)
        assert phase.started_at and phase.completed_at
        assert orch.state.features == ["Folder structure", "Routing"]

    @pytest.mark.asyncio
    async def test_unmet_dependencies(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        result = await orch.execute_phase(2)
        assert result.success is False
        assert result.errors == ["Unmet dependencies: phase 1"]
        assert orch.get_phase(2).status == PhaseStatus.PENDING
        clean_generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_phase_raises(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        with pytest.raises(PhaseNotFoundError) as exc_info:
            await orch.execute_phase(99)
        assert exc_info.value.available == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_completed_and_skipped_are_no_ops(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.execute_phase(1)
        again = await orch.execute_phase(1)
        assert again.success is True
        assert again.warnings == ["Phase already completed"]
        orch.skip_phase(2)
        skipped = await orch.execute_phase(2)
        assert skipped.success is True
        assert skipped.total_tasks == 0
        assert clean_generate.await_count == 1

    @pytest.mark.asyncio
    async def test_generation_context_carries_earlier_output(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.execute_phase(1)
        await orch.execute_phase(2)
        context = clean_generate.await_args_list[1].args[1]
        assert context["phase"]["number"] == 2
        assert [f["path"] for f in context["files"]] == ["src/phase1.tsx"]
        assert [p["number"] for p in context["completed_phases"]] == [1]
        assert context["implemented_features"] == ["Folder structure", "Routing"]
        assert "===FILE:src/phase1.tsx===" in context["accumulated_code"]

    @pytest.mark.asyncio
    async def test_overwrite_reported_as_warning(self, simple_plan):
        generate = _blob_returning({"src/App.tsx": clean_component(1)})
        orch = await _started(simple_plan, generate=generate)
        await orch.execute_phase(1)
        generate.return_value = make_blob({"src/App.tsx": clean_component(2)})
        result = await orch.execute_phase(2)
        assert result.success is True
        assert any(w.startswith("src/App.tsx overwritten") for w in result.warnings)
        assert orch.state.paths == ["src/App.tsx"]


# ═══════════════════════════════════════════════════════════════════════════
# Pause / resume
# ═══════════════════════════════════════════════════════════════════════════


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_pause_stops_at_task_boundary(self, simple_plan):
        orch: PhaseOrchestrator | None = None

        async def _generate(phase, context):
            orch.pause()
            return make_blob({"src/phase1.tsx": clean_component(1)})

        generate = AsyncMock(side_effect=_generate)
        orch = await _started(simple_plan, generate=generate)

        paused = await orch.execute_phase(1)
        assert paused.success is False
        assert "Build paused during execution" in paused.warnings
        assert orch.get_phase(1).status == PhaseStatus.IN_PROGRESS
        assert orch.events.events_of(PhaseCompleteEvent) == []

        orch.resume()
        resumed = await orch.execute_phase(1)
        assert resumed.success is True
        assert orch.get_phase(1).status == PhaseStatus.COMPLETED
        generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pause_and_resume_emit_state_events(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        orch.pause()
        orch.pause()
        orch.resume()
        states = [e.state for e in orch.events.history if e.kind == "build_state"]
        assert states == ["paused", "resumed"]


# ═══════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio
    async def test_generation_failure_then_retry(self, simple_plan):
        generate = AsyncMock(side_effect=[
            RuntimeError("model timeout"),
            make_blob({"src/phase1.tsx": clean_component(1)}),
        ])
        orch = await _started(simple_plan, generate=generate)

        failed = await orch.execute_phase(1)
        assert failed.success is False
        assert failed.errors == ["Generation failed for phase 1: model timeout"]
        phase = orch.get_phase(1)
        assert phase.status == PhaseStatus.FAILED
        assert phase.errors == failed.errors
        error_events = orch.events.events_of(ErrorEvent)
        assert error_events[-1].error["error"] == "GenerationError"
        assert error_events[-1].error["phase_number"] == 1

        orch.retry_phase(1)
        assert phase.status == PhaseStatus.PENDING
        assert phase.errors == []
        retried = await orch.execute_phase(1)
        assert retried.success is True
        assert phase.status == PhaseStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_output_fails(self, simple_plan):
        orch = await _started(simple_plan, generate=AsyncMock(return_value="   "))
        result = await orch.execute_phase(1)
        assert result.errors == ["Generation failed for phase 1: empty generation output"]

    @pytest.mark.asyncio
    async def test_output_without_files_fails(self, simple_plan):
        orch = await _started(simple_plan, generate=AsyncMock(return_value="===NAME===\nx\n===END==="))
        result = await orch.execute_phase(1)
        assert result.errors == ["Generation failed for phase 1: generation output contained no files"]

    @pytest.mark.asyncio
    async def test_no_generator_configured(self, simple_plan):
        orch = await _started(simple_plan)
        result = await orch.execute_phase(1)
        assert orch.get_phase(1).status == PhaseStatus.FAILED
        assert "no generation callable configured" in result.errors[0]

    @pytest.mark.asyncio
    async def test_review_failure_fails_phase(self, simple_plan, clean_generate):
        review = AsyncMock(side_effect=RuntimeError("reviewer down"))
        orch = await _started(simple_plan, generate=clean_generate, review=review)
        result = await orch.execute_phase(1)
        assert result.success is False
        assert orch.get_phase(1).status == PhaseStatus.FAILED
        assert "reviewer down" in result.errors[0]
        assert orch.events.events_of(ErrorEvent)[-1].error["error"] == "ReviewError"

    @pytest.mark.asyncio
    async def test_run_build_stops_on_failure(self, simple_plan):
        async def _generate(phase, context):
            if phase.number == 2:
                raise RuntimeError("quota exceeded")
            return make_blob({f"src/phase{phase.number}.tsx": clean_component(phase.number)})

        orch = await _started(simple_plan, generate=AsyncMock(side_effect=_generate))
        results = await orch.run_build()
        assert [r.success for r in results] == [True, False]
        assert orch.is_complete is False
        assert orch.get_phase(3).status == PhaseStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════════
# Quality gate
# ═══════════════════════════════════════════════════════════════════════════


class TestQualityGate:
    @pytest.mark.asyncio
    async def test_enforced_gate_fails_phase(self, simple_plan):
        orch = await _started(
            simple_plan,
            generate=_blob_returning({"src/run.ts": EVAL_SOURCE}),
            enforce_quality_gate=True,
        )
        result = await orch.execute_phase(1)
        assert result.success is False
        assert orch.get_phase(1).status == PhaseStatus.FAILED
        assert result.errors[0].startswith("Quality gate failed for phase 1")
        assert orch.reports[1].passed is False

    @pytest.mark.asyncio
    async def test_gate_can_be_overridden(self, simple_plan):
        orch = await _started(
            simple_plan,
            generate=_blob_returning({"src/run.ts": EVAL_SOURCE}),
            enforce_quality_gate=False,
        )
        result = await orch.execute_phase(1)
        assert result.success is True
        assert orch.get_phase(1).status == PhaseStatus.COMPLETED
        assert result.warnings[0].startswith("Quality gate failed for phase 1")

    @pytest.mark.asyncio
    async def test_retry_rewriting_own_files_is_not_an_overwrite(self, simple_plan):
        generate = AsyncMock(side_effect=[
            make_blob({"src/App.tsx": EVAL_SOURCE}),
            make_blob({"src/App.tsx": clean_component(1)}),
        ])
        orch = await _started(simple_plan, generate=generate, enforce_quality_gate=True)
        failed = await orch.execute_phase(1)
        assert failed.success is False

        orch.retry_phase(1)
        retried = await orch.execute_phase(1)
        assert retried.success is True
        assert not any("overwritten" in w for w in retried.warnings)
        assert orch.state.conflicts == []

    @pytest.mark.asyncio
    async def test_enforcement_defaults_from_settings(self, simple_plan, monkeypatch):
        monkeypatch.setattr("phase_forge.config.settings.ENFORCE_QUALITY_GATE", False)
        orch = PhaseOrchestrator(simple_plan)
        assert orch.enforce_quality_gate is False

    @pytest.mark.asyncio
    async def test_auto_fix_written_back_to_state(self, simple_plan):
        orch = await _started(simple_plan, generate=_blob_returning({"src/Debug.tsx": DEBRIS_SOURCE}))
        result = await orch.execute_phase(1)
        assert result.success is True
        assert "console.log" not in orch.state.get_content("src/Debug.tsx")
        assert "console.log" not in orch.accumulated_code
        assert orch.state.get_file("src/Debug.tsx").phase_number == 1
        review_event = orch.events.events_of(QualityReviewEvent)[-1]
        assert review_event.report_key == 1
        assert review_event.fixed_issues == 1


# ═══════════════════════════════════════════════════════════════════════════
# Progress & validation
# ═══════════════════════════════════════════════════════════════════════════


class TestProgress:
    @pytest.mark.asyncio
    async def test_initial_progress(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        progress = orch.get_progress()
        assert progress.total_phases == 3
        assert progress.percent_complete == 0
        assert progress.estimated_time_remaining == "8 min"
        assert progress.current_phase_number == 1

    @pytest.mark.asyncio
    async def test_skipped_phases_excluded(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        orch.skip_phase(2)
        await orch.execute_phase(1)
        progress = orch.get_progress()
        assert progress.total_phases == 2
        assert progress.completed_phases == [1]
        assert progress.percent_complete == 50
        assert progress.estimated_time_remaining == "2 min"

    @pytest.mark.asyncio
    async def test_proceed_to_next_phase(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.execute_phase(1)
        assert orch.proceed_to_next_phase().number == 2
        await orch.execute_phase(2)
        assert orch.proceed_to_next_phase().number == 3
        await orch.execute_phase(3)
        assert orch.proceed_to_next_phase() is None
        assert orch.is_complete is True
        complete = orch.events.events_of(BuildCompleteEvent)[-1]
        assert complete.completed_phases == [1, 2, 3]


class TestValidation:
    @pytest.mark.asyncio
    async def test_completed_phase_passes(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.execute_phase(1)
        result = await orch.validate_phase(1)
        assert result.passed is True
        assert result.can_proceed is True
        assert all(c.passed for c in orch.get_phase(1).validation_checks)
        assert orch.events.events_of(ValidationCompleteEvent)[-1].result == result

    @pytest.mark.asyncio
    async def test_failing_render_check_blocks(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        result = await orch.validate_phase(1)
        assert result.passed is False
        assert result.can_proceed is False
        assert result.warnings == ["Base layout renders correctly: Phase produced no files"]

    @pytest.mark.asyncio
    async def test_other_failures_do_not_block(self, simple_plan, clean_generate):
        runner = AsyncMock(return_value=(False, "not verified"))
        orch = await _started(simple_plan, generate=clean_generate, check_runner=runner)
        result = await orch.validate_phase(2)
        assert result.passed is False
        assert result.can_proceed is True
        runner.assert_awaited_once()


# ═══════════════════════════════════════════════════════════════════════════
# Restore points & rollback
# ═══════════════════════════════════════════════════════════════════════════


class TestRestorePoints:
    @pytest.mark.asyncio
    async def test_point_taken_before_each_generation(self, simple_plan, clean_generate):
        service = RestorePointService()
        orch = await _started(simple_plan, generate=clean_generate, restore_points=service)
        await orch.execute_phase(1)
        await orch.execute_phase(2)

        assert set(orch.restore_point_ids) == {1, 2}
        before_one = service.get_restore_point(orch.restore_point_ids[1])
        before_two = service.get_restore_point(orch.restore_point_ids[2])
        assert before_one.file_count == 0
        assert [f.path for f in before_two.files] == ["src/phase1.tsx"]
        assert before_two.metadata["phase_number"] == 2
        assert before_two.metadata["completed_phases"] == [1]
        assert before_two.metadata["files_changed"] == 1

    @pytest.mark.asyncio
    async def test_rollback_replaces_state(self, simple_plan, clean_generate):
        service = RestorePointService()
        orch = await _started(simple_plan, generate=clean_generate, restore_points=service)
        await orch.execute_phase(1)
        await orch.execute_phase(2)
        assert orch.state.paths == ["src/phase1.tsx", "src/phase2.tsx"]

        files = orch.rollback_to(orch.restore_point_ids[2])
        assert [f.path for f in files] == ["src/phase1.tsx"]
        assert orch.state.paths == ["src/phase1.tsx"]
        assert "src/phase2.tsx" not in orch.accumulated_code
        rollback = orch.events.events_of(RollbackEvent)[-1]
        assert rollback.files_restored == 1

    @pytest.mark.asyncio
    async def test_rollback_keeps_writer_phases(self, simple_plan, clean_generate):
        service = RestorePointService()
        orch = await _started(simple_plan, generate=clean_generate, restore_points=service)
        await orch.execute_phase(1)
        await orch.execute_phase(2)
        assert (await orch.validate_phase(1)).can_proceed is True

        before_two = service.get_restore_point(orch.restore_point_ids[2])
        assert before_two.metadata["file_phases"] == {"src/phase1.tsx": 1}

        orch.rollback_to(before_two.id)
        assert orch.state.get_file("src/phase1.tsx").phase_number == 1
        validation = await orch.validate_phase(1)
        assert validation.can_proceed is True
        assert validation.warnings == []

    @pytest.mark.asyncio
    async def test_rollback_without_service(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        with pytest.raises(PhaseForgeError):
            orch.rollback_to("rp_x")


# ═══════════════════════════════════════════════════════════════════════════
# Whole build
# ═══════════════════════════════════════════════════════════════════════════


class TestWholeBuild:
    @pytest.mark.asyncio
    async def test_simple_complexity_skips_polish(self, simple_plan, clean_generate):
        orch = PhaseOrchestrator(simple_plan, generate=clean_generate)
        await orch.start_build(AppConcept(name="Todo App", complexity="simple"))
        assert orch.get_phase(3).status == PhaseStatus.SKIPPED
        results = await orch.run_build()
        assert [r.phase_number for r in results] == [1, 2]
        complete = orch.events.events_of(BuildCompleteEvent)[-1]
        assert complete.skipped_phases == [3]
        assert orch.get_progress().percent_complete == 100

    @pytest.mark.asyncio
    async def test_phase_one_never_skipped(self, clean_generate):
        plan = PhasePlan(
            id="p",
            phases=[
                Phase(number=1, name="Polish first", domain="polish", features=["x"]),
                Phase(number=2, name="Polish", domain="polish", features=["y"], dependencies=[1]),
            ],
        )
        orch = PhaseOrchestrator(plan, generate=clean_generate)
        await orch.start_build(AppConcept(name="x", complexity="simple"))
        assert [p.status for p in plan.phases] == [PhaseStatus.PENDING, PhaseStatus.SKIPPED]

    @pytest.mark.asyncio
    async def test_start_build_resets_everything(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.run_build()
        await orch.start_build()
        assert all(p.status == PhaseStatus.PENDING for p in orch.phases)
        assert len(orch.state) == 0
        assert orch.reports == {}
        assert orch.is_complete is False
        assert len(orch.phases) == 3

    @pytest.mark.asyncio
    async def test_layout_injection_needs_no_generator(self):
        layout = GeneratedFile(path="src/Layout.tsx", content="export function Layout() {\n  return <main />;\n}")
        plan = PhasePlan(
            id="p",
            app_name="Todo App",
            phases=[
                Phase(number=1, name="Layout Injection", domain="setup",
                      features=["Pre-built layout structure"], is_layout_injection=True),
                Phase(number=2, name="Polish", domain="polish", features=["y"], dependencies=[1]),
            ],
            concept=AppConcept(name="Todo App", layout_files=[layout]),
        )
        orch = await _started(plan)
        result = await orch.execute_phase(1)
        assert result.success is True
        assert orch.state.get_content("src/Layout.tsx") == layout.content

    @pytest.mark.asyncio
    async def test_final_review(self, simple_plan, clean_generate):
        orch = await _started(simple_plan, generate=clean_generate)
        await orch.run_build()
        report = await orch.run_final_review()
        assert report is not None
        assert report.key == "final"
        assert report.review_type == "comprehensive"
        assert orch.reports["final"] is report
        assert set(orch.reports) == {1, 2, 3, "final"}

    @pytest.mark.asyncio
    async def test_final_review_failure_is_recorded(self, simple_plan):
        orch = await _started(simple_plan, review=AsyncMock(side_effect=RuntimeError("boom")))
        assert await orch.run_final_review() is None
        assert orch.errors == ["Quality review failed for 'final': boom"]
        assert orch.events.events_of(ErrorEvent)[-1].phase_number is None

    @pytest.mark.asyncio
    async def test_event_sequence_for_one_phase(self, simple_plan, clean_generate):
        orch = PhaseOrchestrator(simple_plan, generate=clean_generate)
        kinds: list[str] = []
        orch.events.subscribe(lambda e: kinds.append(e.kind))
        await orch.start_build()
        await orch.execute_phase(1)
        assert kinds == [
            "build_started",
            "progress",
            "phase_start",
            "quality_review",
            "phase_complete",
            "progress",
        ]
