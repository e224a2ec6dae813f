"""Phase orchestrator — scheduler and per-phase state machine.

Drives a :class:`~phase_forge.contracts.PhasePlan` through execution:

    pending -> in-progress -> completed | skipped | failed

with retry resetting a phase to ``pending``.  Every collaborator is
injected at construction (generation callable, review callable,
restore-point service, event bus, file analyzer, check runner); the
orchestrator holds no module-level state and one instance owns one
build.

Execution is cooperative and strictly ordered: one awaited step at a
time, never two phases concurrently, because phase N is generated from
the accumulated output of phases < N.  Callers must serialise calls
into an instance.

Failure policy: generation and review failures are caught here,
recorded on the phase and its :class:`PhaseResult`, and emitted as
:class:`ErrorEvent`; they never abort the build.  Only caller mistakes
(unknown phase number, unknown restore point) raise.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from phase_forge.blob import build_code_blob, extract_file_paths, parse_code_blob
from phase_forge.build_state import AccumulatedBuildState
from phase_forge.config import settings
from phase_forge.contracts import (
    AppConcept,
    BuildProgress,
    Feature,
    GeneratedFile,
    Phase,
    PhasePlan,
    PhaseResult,
    PhaseStatus,
    QualityReport,
    ValidationCheck,
    ValidationResult,
    utc_now_iso,
)
from phase_forge.errors import GenerationError, PhaseForgeError, PhaseNotFoundError
from phase_forge.events import (
    BuildCompleteEvent,
    BuildEvent,
    BuildStartedEvent,
    BuildStateEvent,
    ErrorEvent,
    EventBus,
    PhaseCompleteEvent,
    PhaseStartEvent,
    PhaseStatusEvent,
    ProgressEvent,
    QualityReviewEvent,
    RestorePointEvent,
    RollbackEvent,
    ValidationCompleteEvent,
)
from phase_forge.file_analyzer import FileAnalyzer
from phase_forge.restore_points import RestorePointService
from phase_forge.review import (
    FINAL_REPORT_KEY,
    QualityGate,
    ReviewCallable,
    ReviewContext,
    ReviewOptions,
)

logger = logging.getLogger(__name__)

GenerateCallable = Callable[[Phase, dict[str, Any]], Awaitable[str]]
CheckRunner = Callable[
    [Phase, ValidationCheck, "PhaseOrchestrator"],
    Awaitable[tuple[bool, str]],
]

# Domains skipped at build start for each declared complexity.
COMPLEXITY_SKIPPED_DOMAINS: dict[str, frozenset[str]] = {
    "simple": frozenset({"polish", "testing", "devops", "monitoring"}),
    "moderate": frozenset({"devops", "monitoring"}),
}

SATISFIED_STATUSES = frozenset({PhaseStatus.COMPLETED, PhaseStatus.SKIPPED})


class PhaseOrchestrator:
    """Executes one plan phase by phase."""

    def __init__(
        self,
        plan: PhasePlan,
        *,
        generate: GenerateCallable | None = None,
        review: ReviewCallable | None = None,
        restore_points: RestorePointService | None = None,
        events: EventBus | None = None,
        analyzer: FileAnalyzer | None = None,
        check_runner: CheckRunner | None = None,
        review_options: ReviewOptions | None = None,
        enforce_quality_gate: bool | None = None,
    ) -> None:
        self.plan = plan
        self.concept: AppConcept | None = plan.concept
        self._generate = generate
        self._check_runner = check_runner or default_check_runner
        self.quality_gate = QualityGate(review, review_options)
        self.restore_points = restore_points
        self.events = events or EventBus()
        self.enforce_quality_gate = (
            settings.ENFORCE_QUALITY_GATE if enforce_quality_gate is None else enforce_quality_gate
        )
        self.state = AccumulatedBuildState(
            analyzer,
            app_name=plan.app_name,
            app_description=plan.app_description,
            full_stack=bool(self.concept and self.concept.technical.needs_database),
        )

        self.current_phase_index = 0
        self.is_building = False
        self.is_paused = False
        self.is_complete = False
        self.started_at = ""
        self.errors: list[str] = []
        self.restore_point_ids: dict[int, str] = {}

    # ---------------------------------------------------------------------------
    # Lookups
    # ---------------------------------------------------------------------------

    @property
    def phases(self) -> list[Phase]:
        return self.plan.phases

    @property
    def reports(self) -> dict[int | str, QualityReport]:
        return self.quality_gate.reports

    @property
    def accumulated_code(self) -> str:
        return self.state.accumulated_code

    def get_phase(self, number: int) -> Phase:
        phase = self.plan.get_phase(number)
        if phase is None:
            raise PhaseNotFoundError(number, [p.number for p in self.phases])
        return phase

    def _index_of(self, phase: Phase) -> int:
        return self.phases.index(phase)

    @property
    def current_phase(self) -> Phase | None:
        if 0 <= self.current_phase_index < len(self.phases):
            return self.phases[self.current_phase_index]
        return None

    # ---------------------------------------------------------------------------
    # Events
    # ---------------------------------------------------------------------------

    def _emit(self, event_cls: type[BuildEvent], phase: Phase | None, message: str, **extra: Any) -> None:
        progress = self.get_progress()
        self.events.emit(event_cls(
            phase_number=phase.number if phase else None,
            phase_index=self._index_of(phase) if phase else -1,
            total_phases=progress.total_phases,
            percent=progress.percent_complete,
            message=message,
            **extra,
        ))

    def _emit_progress(self, phase: Phase | None, message: str) -> None:
        self._emit(ProgressEvent, phase, message, progress=self.get_progress())

    def _record_error(self, phase: Phase | None, error: PhaseForgeError) -> None:
        self.errors.append(str(error))
        if phase is not None:
            phase.errors.append(str(error))
        self._emit(ErrorEvent, phase, str(error), error=error.to_dict())

    # ---------------------------------------------------------------------------
    # Build lifecycle
    # ---------------------------------------------------------------------------

    async def start_build(self, concept: AppConcept | None = None) -> BuildProgress:
        """Reset every phase and apply complexity-based skipping.

        Only statuses change; the number of phases never does.
        """
        if concept is not None:
            self.concept = concept
        for phase in self.phases:
            phase.status = PhaseStatus.PENDING
            phase.reset_progress()
        self.state.clear()
        self.quality_gate.clear()
        self.errors = []
        self.restore_point_ids = {}
        if self.concept is not None:
            self.state.full_stack = self.concept.technical.needs_database

        skipped = self._apply_complexity_skips()
        self.current_phase_index = 0
        self.is_building = True
        self.is_paused = False
        self.is_complete = False
        self.started_at = utc_now_iso()
        logger.info(
            "Build started: %s (%d phases, %d skipped)",
            self.plan.app_name, len(self.phases), len(skipped),
        )
        self._emit(BuildStartedEvent, None, f"Build started for {self.plan.app_name}", app_name=self.plan.app_name)
        self._emit_progress(None, "Build started")
        return self.get_progress()

    def _apply_complexity_skips(self) -> list[int]:
        complexity = self.concept.complexity if self.concept else self.plan.complexity
        domains = COMPLEXITY_SKIPPED_DOMAINS.get(complexity, frozenset())
        if not domains:
            return []
        skipped: list[int] = []
        for phase in self.phases:
            if phase.number == 1:
                continue
            if phase.domain in domains:
                phase.status = PhaseStatus.SKIPPED
                skipped.append(phase.number)
        return skipped

    def pause(self) -> None:
        """Stop at the next task boundary; the running phase stays in-progress."""
        if self.is_paused:
            return
        self.is_paused = True
        logger.info("Build paused")
        self._emit(BuildStateEvent, self.current_phase, "Build paused", state="paused")

    def resume(self) -> None:
        if not self.is_paused:
            return
        self.is_paused = False
        logger.info("Build resumed")
        self._emit(BuildStateEvent, self.current_phase, "Build resumed", state="resumed")

    # ---------------------------------------------------------------------------
    # Phase execution
    # ---------------------------------------------------------------------------

    def build_generation_context(self, phase: Phase) -> dict[str, Any]:
        """Everything the generator needs to keep *phase* consistent with earlier output."""
        concept = self.concept
        return {
            "app_name": self.plan.app_name,
            "app_description": self.plan.app_description,
            "phase": {
                "number": phase.number,
                "name": phase.name,
                "description": phase.description,
                "domain": phase.domain,
                "features": list(phase.features),
                "test_criteria": list(phase.test_criteria),
                "relevant_roles": list(phase.relevant_roles),
            },
            "total_phases": len(self.phases),
            "completed_phases": [
                {"number": p.number, "name": p.name, "features": list(p.features)}
                for p in self.phases
                if p.status == PhaseStatus.COMPLETED
            ],
            "technical": concept.technical.model_dump() if concept else {},
            "ui_preferences": concept.ui_preferences.model_dump() if concept else {},
            **self.state.generation_context(),
        }

    async def _produce_blob(self, phase: Phase) -> str:
        if phase.is_layout_injection and self.concept is not None and self.concept.layout_files:
            return build_code_blob(
                list(self.concept.layout_files),
                name=self.plan.app_name,
                description=self.plan.app_description,
                app_type="FULL_STACK" if self.state.full_stack else "FRONTEND_ONLY",
            )
        if self._generate is None:
            raise GenerationError(phase.number, "no generation callable configured")
        try:
            blob = await self._generate(phase, self.build_generation_context(phase))
        except Exception as exc:
            raise GenerationError(phase.number, str(exc) or type(exc).__name__) from exc
        if not isinstance(blob, str) or not blob.strip():
            raise GenerationError(phase.number, "empty generation output")
        return blob

    def _create_restore_point(self, phase: Phase) -> None:
        if self.restore_points is None:
            return
        point = self.restore_points.create_restore_point(
            f"Before phase {phase.number}: {phase.name}",
            self.state.generated_files(),
            metadata={
                "phase_number": phase.number,
                "phase_name": phase.name,
                "change_description": f"Generate phase {phase.number}",
                "files_changed": len(self.state),
                "completed_phases": [p.number for p in self.phases if p.status == PhaseStatus.COMPLETED],
                "established_patterns": list(self.state.patterns),
                "implemented_features": list(self.state.features),
                "file_phases": self.state.file_phases(),
            },
        )
        self.restore_point_ids[phase.number] = point.id
        self._emit(RestorePointEvent, phase, f"Restore point created: {point.label}",
                   restore_point_id=point.id, label=point.label)

    def _review_context(self, phase: Phase) -> ReviewContext:
        return ReviewContext(
            key=phase.number,
            phase_name=phase.name,
            features=[d.feature for d in phase.feature_details]
            or [Feature(name=name) for name in phase.features],
            technical=self.concept.technical if self.concept else None,
            api_contracts=self.state.api_contracts,
            patterns=list(self.state.patterns),
        )

    async def execute_phase(self, number: int) -> PhaseResult:
        """Run one phase to completion, pause or failure.

        Raises :class:`PhaseNotFoundError` for an unknown number; every
        other failure is reported in the returned result.
        """
        phase = self.get_phase(number)
        result = PhaseResult(phase_number=number, total_tasks=len(phase.tasks))

        if phase.status == PhaseStatus.SKIPPED:
            result.success = True
            result.total_tasks = 0
            result.warnings.append("Phase was skipped")
            return result
        if phase.status == PhaseStatus.COMPLETED:
            result.success = True
            result.tasks_completed = phase.tasks_completed
            result.warnings.append("Phase already completed")
            return result

        unmet = [
            dep for dep in phase.dependencies
            if (dp := self.plan.get_phase(dep)) is None or dp.status not in SATISFIED_STATUSES
        ]
        if unmet:
            result.errors.append(
                f"Unmet dependencies: {', '.join(f'phase {d}' for d in unmet)}"
            )
            logger.warning("Phase %d blocked on %s", number, unmet)
            return result

        started = time.monotonic()
        resumed = phase.status == PhaseStatus.IN_PROGRESS
        phase.status = PhaseStatus.IN_PROGRESS
        phase.started_at = phase.started_at or utc_now_iso()
        self.current_phase_index = self._index_of(phase)
        self._emit(PhaseStartEvent, phase, f"{'Resuming' if resumed else 'Starting'} phase {number}: {phase.name}",
                   phase_name=phase.name, resumed=resumed)

        try:
            await self._run_phase(phase, result)
        except Exception as exc:
            error = exc if isinstance(exc, PhaseForgeError) else PhaseForgeError(
                f"Phase {number} failed: {exc}"
            )
            if not isinstance(exc, PhaseForgeError):
                logger.exception("Unexpected failure in phase %d", number)
            else:
                logger.warning("%s", error)
            phase.status = PhaseStatus.FAILED
            result.success = False
            result.errors.append(str(error))
            self._record_error(phase, error)

        result.tasks_completed = phase.tasks_completed
        result.duration_ms = int((time.monotonic() - started) * 1000)
        if phase.status != PhaseStatus.IN_PROGRESS:
            self._emit(PhaseCompleteEvent, phase, f"Phase {number} {phase.status.value}",
                       phase_name=phase.name, success=result.success,
                       tasks_completed=result.tasks_completed, total_tasks=result.total_tasks,
                       duration_ms=result.duration_ms)
        self._emit_progress(phase, f"Phase {number}: {phase.status.value}")
        return result

    async def _run_phase(self, phase: Phase, result: PhaseResult) -> None:
        if phase.generated_code is None:
            self._create_restore_point(phase)
            blob = await self._produce_blob(phase)
            parsed = parse_code_blob(blob)
            if not parsed.files:
                raise GenerationError(phase.number, "generation output contained no files")
            phase.generated_code = blob
            fold = self.state.fold(parsed.files, phase_number=phase.number)
            for conflict in fold.conflicts:
                result.warnings.append(
                    f"{conflict.path} overwritten (first written in phase {conflict.previous_phase}, "
                    f"severity {conflict.severity})"
                )
        result.files_generated = extract_file_paths(phase.generated_code)

        for task in phase.tasks:
            if task.status == "completed":
                continue
            if self.is_paused:
                result.warnings.append("Build paused during execution")
                break
            task.status = "completed"
            await asyncio.sleep(0)

        if phase.tasks_completed < len(phase.tasks):
            # Paused: leave in-progress, resume picks up the remaining tasks.
            return

        outcome = await self.quality_gate.review_phase(
            phase.number,
            self.state.generated_files(result.files_generated),
            self._review_context(phase),
        )
        if outcome.modified_files:
            changed = self.state.update_contents(outcome.modified_files)
            logger.info("Phase %d: auto-fix updated %d file(s)", phase.number, len(changed))
        report = outcome.report
        self._emit(QualityReviewEvent, phase, f"Quality review for phase {phase.number}",
                   report_key=phase.number, overall_score=report.overall_score,
                   passed=report.passed, fixed_issues=report.fixed_issues)

        gate_ok = report.passed or not self.enforce_quality_gate
        if not report.passed:
            message = (
                f"Quality gate failed for phase {phase.number} "
                f"(score {report.overall_score}, {report.remaining_issues} issue(s) remaining)"
            )
            if gate_ok:
                result.warnings.append(message)
            else:
                result.errors.append(message)
                phase.errors.append(message)

        result.success = gate_ok
        if gate_ok:
            phase.status = PhaseStatus.COMPLETED
            phase.completed_at = utc_now_iso()
            self.state.record_features(phase.features)
        else:
            phase.status = PhaseStatus.FAILED

    async def validate_phase(self, number: int) -> ValidationResult:
        """Run every validation check; only failing render checks block progress."""
        phase = self.get_phase(number)
        failing: list[ValidationCheck] = []
        for check in phase.validation_checks:
            passed, message = await self._check_runner(phase, check, self)
            check.passed = passed
            check.message = message
            if not passed:
                failing.append(check)
        result = ValidationResult(
            phase_number=number,
            passed=not failing,
            can_proceed=not any(c.type == "render" for c in failing),
            checks=[c.model_copy() for c in phase.validation_checks],
            warnings=[f"{c.name}: {c.message}" for c in failing],
        )
        self._emit(ValidationCompleteEvent, phase,
                   f"Validation for phase {number}: {'passed' if result.passed else 'failed'}",
                   result=result)
        return result

    def proceed_to_next_phase(self) -> Phase | None:
        """Move to the next pending phase; ``None`` (and build complete) if none remain."""
        for idx in range(self.current_phase_index + 1, len(self.phases)):
            if self.phases[idx].status == PhaseStatus.PENDING:
                self.current_phase_index = idx
                phase = self.phases[idx]
                self._emit_progress(phase, f"Next phase {phase.number}: {phase.name}")
                return phase
        self._complete_build()
        return None

    def _complete_build(self) -> None:
        self.is_building = False
        self.is_complete = True
        completed = [p.number for p in self.phases if p.status == PhaseStatus.COMPLETED]
        skipped = [p.number for p in self.phases if p.status == PhaseStatus.SKIPPED]
        logger.info("Build complete: %d completed, %d skipped", len(completed), len(skipped))
        self._emit(BuildCompleteEvent, None, "Build complete",
                   completed_phases=completed, skipped_phases=skipped)

    def skip_phase(self, number: int) -> None:
        phase = self.get_phase(number)
        phase.status = PhaseStatus.SKIPPED
        self._emit(PhaseStatusEvent, phase, f"Phase {number} skipped",
                   phase_name=phase.name, status=phase.status.value)
        self._emit_progress(phase, f"Phase {number} skipped")

    def retry_phase(self, number: int) -> None:
        """Reset one phase to pending; other phases' files are untouched."""
        phase = self.get_phase(number)
        phase.status = PhaseStatus.PENDING
        phase.reset_progress()
        self.quality_gate.discard(number)
        self.current_phase_index = self._index_of(phase)
        self._emit(PhaseStatusEvent, phase, f"Phase {number} reset for retry",
                   phase_name=phase.name, status=phase.status.value)
        self._emit_progress(phase, f"Retrying phase {number}")

    # ---------------------------------------------------------------------------
    # Progress
    # ---------------------------------------------------------------------------

    def get_progress(self) -> BuildProgress:
        counted = [p for p in self.phases if p.status != PhaseStatus.SKIPPED]
        completed = [p.number for p in counted if p.status == PhaseStatus.COMPLETED]
        total = len(counted)
        remaining = sum(
            p.estimated_minutes for p in counted
            if p.status in (PhaseStatus.PENDING, PhaseStatus.IN_PROGRESS)
        )
        current = self.current_phase
        return BuildProgress(
            current_phase_number=current.number if current else None,
            completed_phases=completed,
            total_phases=total,
            percent_complete=round(len(completed) / total * 100) if total else 0,
            estimated_time_remaining=f"{remaining} min",
            started_at=self.started_at,
        )

    # ---------------------------------------------------------------------------
    # Whole-build operations
    # ---------------------------------------------------------------------------

    async def run_final_review(self, features: list[Feature] | None = None) -> QualityReport | None:
        """Comprehensive review of every accumulated file, stored under ``"final"``."""
        context = ReviewContext(
            key=FINAL_REPORT_KEY,
            phase_name="Final review",
            features=features if features is not None else (
                list(self.concept.core_features) if self.concept else []
            ),
            technical=self.concept.technical if self.concept else None,
            api_contracts=self.state.api_contracts,
            patterns=list(self.state.patterns),
        )
        try:
            outcome = await self.quality_gate.review_final(self.state.generated_files(), context)
        except PhaseForgeError as exc:
            logger.warning("%s", exc)
            self._record_error(None, exc)
            return None
        if outcome.modified_files:
            self.state.update_contents(outcome.modified_files)
        report = outcome.report
        self._emit(QualityReviewEvent, None, "Final quality review",
                   report_key=FINAL_REPORT_KEY, overall_score=report.overall_score,
                   passed=report.passed, fixed_issues=report.fixed_issues)
        return report

    def rollback_to(self, restore_point_id: str) -> list[GeneratedFile]:
        """Replace the accumulated files with a restore point's snapshot.

        Each restored file keeps the phase that wrote it, so validation of
        already-completed phases still sees their output.
        """
        if self.restore_points is None:
            raise PhaseForgeError("No restore point service configured")
        files = self.restore_points.rollback_to(restore_point_id)
        writers = self.restore_points.get_restore_point(restore_point_id).metadata.get("file_phases")
        self.state.replace_all(files, writers)
        self._emit(RollbackEvent, self.current_phase, f"Rolled back to {restore_point_id}",
                   restore_point_id=restore_point_id, files_restored=len(files))
        return files

    async def run_build(self) -> list[PhaseResult]:
        """Execute phases in ascending order until complete, paused or failed."""
        if not self.is_building:
            await self.start_build()
        results: list[PhaseResult] = []
        for phase in sorted(self.phases, key=lambda p: p.number):
            if phase.status in (PhaseStatus.COMPLETED, PhaseStatus.SKIPPED):
                continue
            result = await self.execute_phase(phase.number)
            results.append(result)
            if not result.success:
                return results
        self._complete_build()
        return results


# ---------------------------------------------------------------------------
# Default validation
# ---------------------------------------------------------------------------


async def default_check_runner(
    phase: Phase,
    check: ValidationCheck,
    orchestrator: PhaseOrchestrator,
) -> tuple[bool, str]:
    """Structural checks against what the phase actually produced.

    render: the phase wrote at least one file.  console: its quality
    report has no syntax-debris issue left.  Everything else: the phase
    completed.
    """
    if phase.status == PhaseStatus.SKIPPED:
        return True, "Phase skipped"
    written = [f for f in orchestrator.state.files if f.phase_number == phase.number]
    if check.type == "render":
        if written:
            return True, f"{len(written)} file(s) generated"
        return False, "Phase produced no files"
    if check.type == "console":
        report = orchestrator.reports.get(phase.number)
        leftovers = [i for i in report.issues if i.category == "syntax_error"] if report else []
        if leftovers:
            return False, f"{len(leftovers)} debug statement(s) remain"
        return True, "No console issues"
    if phase.status == PhaseStatus.COMPLETED:
        return True, "Phase completed"
    return False, f"Phase is {phase.status.value}"


__all__ = [
    "COMPLEXITY_SKIPPED_DOMAINS",
    "CheckRunner",
    "GenerateCallable",
    "PhaseOrchestrator",
    "default_check_runner",
]
