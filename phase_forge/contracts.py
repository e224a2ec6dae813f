"""Pipeline contracts — Pydantic models shared by every stage.

Value objects (features, classifications, analysed files, issues,
fixes) are frozen.  Lifecycle records (phases, plans, tasks, checks)
are mutable — status transitions happen during the build loop, and the
orchestrator is their only writer.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

Priority = Literal["high", "medium", "low"]
FeatureComplexity = Literal["simple", "moderate", "complex"]
BuildComplexity = Literal["simple", "moderate", "complex", "enterprise"]
ValidationType = Literal["render", "console", "performance", "functionality"]
FileType = Literal["component", "api", "type", "util", "style", "config", "other"]
Severity = Literal["critical", "high", "medium", "low"]

FEATURE_DOMAINS: tuple[str, ...] = (
    "setup",
    "database",
    "auth",
    "i18n",
    "core-entity",
    "feature",
    "ui-component",
    "integration",
    "real-time",
    "storage",
    "notification",
    "offline",
    "search",
    "analytics",
    "admin",
    "ui-role",
    "testing",
    "backend-validator",
    "devops",
    "monitoring",
    "polish",
)

ISSUE_CATEGORIES: tuple[str, ...] = (
    "missing_feature",
    "syntax_error",
    "type_error",
    "security_xss",
    "security_injection",
    "security_eval",
    "react_hooks_rule",
    "react_missing_key",
    "react_missing_deps",
    "react_invalid_hook",
    "performance_rerender",
    "performance_memo",
    "performance_expensive",
    "accessibility",
    "import_unused",
    "import_missing",
    "logic_warning",
)


class PhaseStatus(str, enum.Enum):
    """Lifecycle states for a build phase."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({PhaseStatus.COMPLETED, PhaseStatus.SKIPPED, PhaseStatus.FAILED})


# ---------------------------------------------------------------------------
# Concept -- the planner's input
# ---------------------------------------------------------------------------


class Feature(BaseModel):
    """One user-facing feature of the requested application."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str
    description: str = ""
    priority: Priority = "medium"


class UserRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    capabilities: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


class DataField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    required: bool = False


class DataModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fields: list[DataField] = Field(default_factory=list)


class TechnicalRequirements(BaseModel):
    """Declared technical needs.

    The state/memory flags default to ``None`` meaning "not declared";
    the planner fills them from feature text before classification.
    """

    needs_auth: bool = False
    auth_type: str = "email"
    needs_database: bool = False
    needs_api: bool = False
    needs_file_upload: bool = False
    needs_realtime: bool = False
    state_complexity: FeatureComplexity | None = None
    needs_state_history: bool | None = None
    needs_context_persistence: bool | None = None
    needs_caching: bool | None = None
    needs_offline_support: bool = False
    needs_i18n: bool = False
    scale: Literal["small", "medium", "large", "enterprise"] = "small"
    data_models: list[DataModel] = Field(default_factory=list)


class UIPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    style: str = "modern"
    color_scheme: str = "auto"
    layout: str = "single-page"
    primary_color: str | None = None
    inspiration: str | None = None


class GeneratedFile(BaseModel):
    """A single ``{path, content}`` pair as produced by generation."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class AppConcept(BaseModel):
    """Structured description of the application to build."""

    name: str = ""
    description: str = ""
    purpose: str = ""
    target_users: str = ""
    core_features: list[Feature] = Field(default_factory=list)
    technical: TechnicalRequirements = Field(default_factory=TechnicalRequirements)
    ui_preferences: UIPreferences = Field(default_factory=UIPreferences)
    roles: list[UserRole] = Field(default_factory=list)
    complexity: BuildComplexity = "moderate"
    # Pre-built layout; when present phase 1 injects it instead of generating.
    layout_files: list[GeneratedFile] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class FeatureClassification(BaseModel):
    """A feature tagged with domain, complexity and estimated cost."""

    model_config = ConfigDict(frozen=True)

    feature: Feature
    domain: str = "feature"
    complexity: FeatureComplexity = "simple"
    estimated_tokens: int = Field(default=1200, ge=0)
    requires_own_phase: bool = False
    suggested_phase_name: str = ""
    dependencies: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Phases & plan
# ---------------------------------------------------------------------------


def infer_validation_type(criterion: str) -> ValidationType:
    """Map a test-criterion sentence onto a validation check type."""
    text = criterion.lower()
    if "render" in text or "layout" in text:
        return "render"
    if "console" in text or "error" in text:
        return "console"
    if "performance" in text or "metric" in text:
        return "performance"
    return "functionality"


class PhaseTask(BaseModel):
    id: str
    name: str
    description: str = ""
    status: Literal["pending", "completed", "failed"] = "pending"


class ValidationCheck(BaseModel):
    id: str
    name: str
    type: ValidationType = "functionality"
    passed: bool = False
    message: str | None = None


_MINUTES_RE = re.compile(r"(\d+)")


class Phase(BaseModel):
    """One discrete, independently generated unit of the build plan.

    Mutable — the orchestrator drives status transitions.  Tasks and
    validation checks are derived from ``features`` and
    ``test_criteria`` when not supplied explicitly.
    """

    number: int = Field(..., ge=1)
    name: str
    description: str = ""
    domain: str = "feature"
    status: PhaseStatus = PhaseStatus.PENDING
    features: list[str] = Field(default_factory=list)
    feature_details: list[FeatureClassification] = Field(default_factory=list)
    dependencies: list[int] = Field(default_factory=list)
    dependency_names: list[str] = Field(default_factory=list)
    estimated_tokens: int = 0
    estimated_time: str = "3 min"
    test_criteria: list[str] = Field(default_factory=list)
    tasks: list[PhaseTask] = Field(default_factory=list)
    validation_checks: list[ValidationCheck] = Field(default_factory=list)
    generated_code: str | None = None
    relevant_roles: list[str] = Field(default_factory=list)
    is_layout_injection: bool = False
    errors: list[str] = Field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None

    @model_validator(mode="after")
    def _derive_tasks_and_checks(self) -> "Phase":
        if not self.tasks:
            self.tasks = [
                PhaseTask(
                    id=f"{self.number}-task-{i}",
                    name=feature,
                    description=f"Implement {feature}",
                )
                for i, feature in enumerate(self.features)
            ]
        if not self.validation_checks:
            self.validation_checks = [
                ValidationCheck(
                    id=f"{self.number}-check-{i}",
                    name=criterion,
                    type=infer_validation_type(criterion),
                )
                for i, criterion in enumerate(self.test_criteria)
            ]
        return self

    @property
    def estimated_minutes(self) -> int:
        """First number in ``estimated_time``; 3 when there is none."""
        match = _MINUTES_RE.search(self.estimated_time or "")
        return int(match.group(1)) if match else 3

    @property
    def tasks_completed(self) -> int:
        return sum(1 for t in self.tasks if t.status == "completed")

    def reset_progress(self) -> None:
        """Clear per-attempt state: tasks, checks, generated code and errors."""
        for task in self.tasks:
            task.status = "pending"
        for check in self.validation_checks:
            check.passed = False
            check.message = None
        self.generated_code = None
        self.errors = []
        self.started_at = None
        self.completed_at = None


class PhasePlan(BaseModel):
    """Ordered phase list plus plan-level estimates."""

    id: str
    app_name: str = ""
    app_description: str = ""
    phases: list[Phase] = Field(default_factory=list)
    estimated_total_tokens: int = 0
    estimated_total_time: str = ""
    complexity: BuildComplexity = "simple"
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    concept: AppConcept | None = None

    @property
    def total_phases(self) -> int:
        return len(self.phases)

    def get_phase(self, number: int) -> Phase | None:
        for phase in self.phases:
            if phase.number == number:
                return phase
        return None


class PlanGenerationResult(BaseModel):
    """Outcome of a planning pass — never an exception."""

    model_config = ConfigDict(frozen=True)

    success: bool
    plan: PhasePlan | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    analysis: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Execution results & progress
# ---------------------------------------------------------------------------


class PhaseResult(BaseModel):
    phase_number: int
    success: bool = False
    tasks_completed: int = 0
    total_tasks: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    files_generated: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase_number: int
    passed: bool
    can_proceed: bool
    checks: list[ValidationCheck] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class BuildProgress(BaseModel):
    """Progress snapshot derived from current phase statuses."""

    model_config = ConfigDict(frozen=True)

    current_phase_number: int | None = None
    completed_phases: list[int] = Field(default_factory=list)
    total_phases: int = 0
    percent_complete: int = 0
    estimated_time_remaining: str = "0 min"
    started_at: str = ""
    last_updated: str = Field(default_factory=utc_now_iso)


# ---------------------------------------------------------------------------
# Accumulated knowledge
# ---------------------------------------------------------------------------


class ImportInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbols: list[str] = Field(default_factory=list)
    source: str
    is_relative: bool = False


class AccumulatedFile(BaseModel):
    """The latest known state of one generated file."""

    model_config = ConfigDict(frozen=True)

    path: str
    type: FileType = "other"
    exports: list[str] = Field(default_factory=list)
    imports: list[ImportInfo] = Field(default_factory=list)
    summary: str = ""
    content_hash: str = ""
    phase_number: int | None = None


class APIContract(BaseModel):
    """An endpoint/method inferred from a server-side route file."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    method: str
    request_schema: str | None = None
    response_schema: str | None = None
    requires_auth: bool = False
    file_path: str = ""
    phase_number: int | None = None


class FileConflict(BaseModel):
    """A later phase overwrote a file written by an earlier one."""

    model_config = ConfigDict(frozen=True)

    path: str
    previous_phase: int | None
    current_phase: int | None
    severity: Literal["critical", "warning", "info"] = "info"


# ---------------------------------------------------------------------------
# Quality review
# ---------------------------------------------------------------------------


class QualityIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    severity: Severity
    file: str
    line: int | None = None
    message: str
    auto_fixable: bool = False
    suggestion: str | None = None


class AppliedFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    issue_id: str
    file: str
    line: int | None = None
    description: str
    category: str


class QualityScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    syntax: int = 100
    security: int = 100
    best_practices: int = 100
    performance: int = 100
    accessibility: int = 100
    requirements: int | None = None


class QualityReport(BaseModel):
    """Review outcome for one phase (or the ``"final"`` whole-build pass)."""

    model_config = ConfigDict(frozen=True)

    key: int | str
    review_type: Literal["light", "comprehensive"] = "light"
    total_issues: int = 0
    fixed_issues: int = 0
    remaining_issues: int = 0
    issues_by_category: dict[str, int] = Field(default_factory=dict)
    issues_by_severity: dict[str, int] = Field(default_factory=dict)
    scores: QualityScores = Field(default_factory=QualityScores)
    overall_score: int = 100
    passed: bool = True
    issues: list[QualityIssue] = Field(default_factory=list)
    fixes: list[AppliedFix] = Field(default_factory=list)
    validation_errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    created_at: str = Field(default_factory=utc_now_iso)
