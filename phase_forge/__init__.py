"""Phased build orchestration — plan, generate, accumulate, review, roll back.

Public API
----------
Planning::

    PhasePlanner, generate_phase_plan,
    classify_feature, classify_features, get_implicit_features,
    check_plan_invariants,

Orchestration::

    PhaseOrchestrator, GenerateCallable, CheckRunner,

Accumulated state::

    AccumulatedBuildState, FileAnalyzer, FileAnalysis,
    parse_code_blob, build_code_blob,

Quality::

    QualityGate, HeuristicReviewer, ReviewOptions, ReviewContext,
    ReviewOutcome, AutoFixEngine, validate_fix,

Restore points::

    RestorePoint, RestorePointService

Events::

    EventBus, BuildEvent and its subclasses

Contracts (Pydantic models)::

    AppConcept, Feature, TechnicalRequirements, Phase, PhasePlan,
    PhaseResult, PhaseStatus, BuildProgress, ValidationResult,
    AccumulatedFile, APIContract, QualityIssue, QualityReport,
    GeneratedFile, PlanGenerationResult,

Errors::

    PhaseForgeError, PlanningError, PhaseNotFoundError,
    GenerationError, ReviewError, FixValidationError,
    RestorePointNotFoundError,
"""

from phase_forge.auto_fix import AutoFixEngine, validate_fix
from phase_forge.blob import build_code_blob, parse_code_blob
from phase_forge.build_state import AccumulatedBuildState
from phase_forge.classifier import classify_feature, classify_features, get_implicit_features
from phase_forge.contracts import (
    AccumulatedFile,
    APIContract,
    AppConcept,
    BuildProgress,
    Feature,
    GeneratedFile,
    Phase,
    PhasePlan,
    PhaseResult,
    PhaseStatus,
    PlanGenerationResult,
    QualityIssue,
    QualityReport,
    TechnicalRequirements,
    ValidationResult,
)
from phase_forge.errors import (
    FixValidationError,
    GenerationError,
    PhaseForgeError,
    PhaseNotFoundError,
    PlanningError,
    RestorePointNotFoundError,
    ReviewError,
)
from phase_forge.events import BuildEvent, EventBus
from phase_forge.file_analyzer import FileAnalysis, FileAnalyzer
from phase_forge.orchestrator import CheckRunner, GenerateCallable, PhaseOrchestrator
from phase_forge.planner import PhasePlanner, check_plan_invariants, generate_phase_plan
from phase_forge.restore_points import RestorePoint, RestorePointService
from phase_forge.review import (
    HeuristicReviewer,
    QualityGate,
    ReviewContext,
    ReviewOptions,
    ReviewOutcome,
)

__all__ = [
    # Planning
    "PhasePlanner",
    "generate_phase_plan",
    "classify_feature",
    "classify_features",
    "get_implicit_features",
    "check_plan_invariants",
    # Orchestration
    "PhaseOrchestrator",
    "GenerateCallable",
    "CheckRunner",
    # Accumulated state
    "AccumulatedBuildState",
    "FileAnalyzer",
    "FileAnalysis",
    "parse_code_blob",
    "build_code_blob",
    # Quality
    "QualityGate",
    "HeuristicReviewer",
    "ReviewOptions",
    "ReviewContext",
    "ReviewOutcome",
    "AutoFixEngine",
    "validate_fix",
    # Restore points
    "RestorePoint",
    "RestorePointService",
    # Events
    "EventBus",
    "BuildEvent",
    # Contracts
    "AppConcept",
    "Feature",
    "TechnicalRequirements",
    "Phase",
    "PhasePlan",
    "PhaseResult",
    "PhaseStatus",
    "BuildProgress",
    "ValidationResult",
    "AccumulatedFile",
    "APIContract",
    "QualityIssue",
    "QualityReport",
    "GeneratedFile",
    "PlanGenerationResult",
    # Errors
    "PhaseForgeError",
    "PlanningError",
    "PhaseNotFoundError",
    "GenerationError",
    "ReviewError",
    "FixValidationError",
    "RestorePointNotFoundError",
]
