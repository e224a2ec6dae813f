"""Phase planner — concept in, ordered dependency-checked plan out.

Pipeline:

1. Fill undeclared state/memory flags from feature text.
2. Classify listed features and add implicit ones from the technical
   requirements.
3. Group by domain (own-phase features de-duplicated by suggested name).
4. Emit phase 1 (setup, or layout injection when the concept carries a
   pre-built layout), then database, auth and the remaining domains in
   a fixed priority order, each split into budget-bounded sub-phases,
   then polish.
5. Wire dependencies (strictly backward), validate, and total up.

The planner never raises: malformed input degrades to a setup + polish
plan with the problem reported as a warning.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import ValidationError

from phase_forge.classifier import (
    classify_features,
    fill_undeclared_requirements,
    get_implicit_features,
)
from phase_forge.config import PhaseGeneratorConfig
from phase_forge.contracts import (
    AppConcept,
    FeatureClassification,
    Phase,
    PhasePlan,
    PlanGenerationResult,
    utc_now_iso,
)
from phase_forge.errors import PlanningError
from phase_forge.phase_factory import (
    create_layout_injection_phase,
    create_phase_from_features,
    create_polish_phase,
    create_setup_phase,
    split_features_into_phases,
)

logger = logging.getLogger(__name__)


# Database and auth come straight after phase 1; everything else follows
# this order.  Domains not listed keep their first-seen order at the end.
DOMAIN_ORDER: tuple[str, ...] = (
    "database",
    "auth",
    "setup",
    "i18n",
    "core-entity",
    "feature",
    "ui-component",
    "integration",
    "storage",
    "real-time",
    "notification",
    "search",
    "analytics",
    "admin",
    "ui-role",
    "offline",
    "backend-validator",
    "testing",
    "devops",
    "monitoring",
)

AUTH_DEPENDENT_DOMAINS = frozenset({"admin", "ui-role", "analytics"})

_FIXED_PHASE_NAMES = {
    "database": "Database Schema",
    "auth": "Authentication System",
}


class CyclicPhaseDependencyError(ValueError):
    """Raised when phase dependencies contain a cycle."""


# ---------------------------------------------------------------------------
# Graph checks
# ---------------------------------------------------------------------------


def topological_phase_order(phases: list[Phase]) -> list[int]:
    """Return phase numbers in dependency-first order.

    Raises :class:`CyclicPhaseDependencyError` if the graph has a cycle.
    """
    by_number = {p.number: p for p in phases}
    visited: set[int] = set()
    temp: set[int] = set()
    order: list[int] = []

    def _visit(num: int) -> None:
        if num in temp:
            raise CyclicPhaseDependencyError(f"Cycle detected involving phase {num}")
        if num in visited:
            return
        temp.add(num)
        for dep in by_number[num].dependencies:
            if dep in by_number:
                _visit(dep)
        temp.discard(num)
        visited.add(num)
        order.append(num)

    for num in sorted(by_number):
        if num not in visited:
            _visit(num)
    return order


def check_plan_invariants(phases: list[Phase]) -> list[str]:
    """Structural checks every plan must satisfy.  Empty list = valid."""
    errors: list[str] = []
    numbers = [p.number for p in phases]
    if numbers != list(range(1, len(phases) + 1)):
        errors.append(f"Phase numbers must be contiguous 1..{len(phases)}, got {numbers}")
    if phases and phases[0].dependencies:
        errors.append("Phase 1 must have no dependencies")
    for phase in phases:
        for dep in phase.dependencies:
            if dep >= phase.number:
                errors.append(
                    f"Phase {phase.number} depends on phase {dep} which is not earlier"
                )
    try:
        topological_phase_order(phases)
    except CyclicPhaseDependencyError as exc:
        errors.append(str(exc))
    return errors


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class PhasePlanner:
    """Generate a :class:`PhasePlan` from an :class:`AppConcept`."""

    def __init__(self, config: PhaseGeneratorConfig | None = None) -> None:
        self.config = config or PhaseGeneratorConfig.from_settings()

    # -- public --------------------------------------------------------------

    def generate_plan(self, concept: AppConcept | dict[str, Any]) -> PlanGenerationResult:
        warnings: list[str] = []

        try:
            concept = self._coerce_concept(concept)
        except PlanningError as exc:
            logger.warning("Degrading to minimal plan: %s", exc)
            warnings.append(str(exc))
            fallback_name = concept.get("name", "") if isinstance(concept, dict) else ""
            concept = AppConcept(name=str(fallback_name or "Untitled App"))

        if not concept.core_features:
            phases = self._minimal_phases(concept)
            classifications: list[FeatureClassification] = []
            groups: dict[str, list[FeatureClassification]] = {}
            warnings.append("No features were included in the phase plan")
        else:
            concept = concept.model_copy(update={
                "technical": fill_undeclared_requirements(
                    concept.technical, concept.core_features, concept.description
                ),
            })
            classifications = classify_features(concept.core_features, self.config)
            classifications.extend(get_implicit_features(concept.technical))
            groups = self.group_by_domain(classifications)
            phases = self._phases_from_groups(groups, concept)

        self.calculate_dependencies(phases)
        errors, plan_warnings = self.validate_plan(phases)
        warnings.extend(plan_warnings)
        analysis = self._analysis(classifications, groups)

        if errors:
            logger.error("Phase plan invalid: %s", "; ".join(errors))
            return PlanGenerationResult(
                success=False,
                error="; ".join(errors),
                warnings=warnings,
                analysis=analysis,
            )

        plan = self._create_plan(phases, concept)
        logger.info(
            "Generated plan %s: %d phases (%s) for %r",
            plan.id, plan.total_phases, plan.complexity, concept.name,
        )
        return PlanGenerationResult(success=True, plan=plan, warnings=warnings, analysis=analysis)

    def group_by_domain(
        self, classifications: list[FeatureClassification],
    ) -> dict[str, list[FeatureClassification]]:
        groups: dict[str, list[FeatureClassification]] = {}
        for fc in classifications:
            bucket = groups.setdefault(fc.domain, [])
            if fc.requires_own_phase and any(
                c.suggested_phase_name == fc.suggested_phase_name for c in bucket
            ):
                continue
            bucket.append(fc)
        return groups

    def calculate_dependencies(self, phases: list[Phase]) -> None:
        """Wire strictly backward dependencies onto every phase in place."""
        if not phases:
            return
        last = phases[-1].number
        index: dict[str, int] = {}
        for phase in phases:
            index.setdefault(phase.name, phase.number)
            index.setdefault(phase.domain, phase.number)
            for fc in phase.feature_details:
                index.setdefault(fc.suggested_phase_name, phase.number)
                index.setdefault(fc.feature.name, phase.number)

        db_phase = next((p.number for p in phases if p.domain == "database"), None)
        auth_phase = next((p.number for p in phases if p.domain == "auth"), None)

        for phase in phases:
            if phase.number == 1:
                phase.dependencies = []
                phase.dependency_names = []
                continue
            if phase.domain == "polish" and phase.number == last:
                phase.dependencies = list(range(1, phase.number))
                phase.dependency_names = ["All previous phases"]
                continue

            deps: set[int] = {1}
            names: list[str] = [phases[0].name]
            for fc in phase.feature_details:
                for dep_name in fc.dependencies:
                    num = index.get(dep_name)
                    if num is not None and num < phase.number and num not in deps:
                        deps.add(num)
                        names.append(dep_name)
            if (
                phase.domain not in ("setup", "database")
                and db_phase is not None
                and db_phase < phase.number
                and db_phase not in deps
            ):
                deps.add(db_phase)
                names.append(_FIXED_PHASE_NAMES["database"])
            if (
                phase.domain in AUTH_DEPENDENT_DOMAINS
                and auth_phase is not None
                and auth_phase < phase.number
                and auth_phase not in deps
            ):
                deps.add(auth_phase)
                names.append(_FIXED_PHASE_NAMES["auth"])

            phase.dependencies = sorted(deps)
            phase.dependency_names = names

    def validate_plan(self, phases: list[Phase]) -> tuple[list[str], list[str]]:
        """Return ``(errors, warnings)`` for a wired phase list."""
        errors = check_plan_invariants(phases)
        warnings: list[str] = []
        if len(phases) < self.config.min_phases:
            errors.append(
                f"Too few phases: {len(phases)} (minimum: {self.config.min_phases})"
            )
        if len(phases) > self.config.max_phases:
            warnings.append(
                f"High phase count: {len(phases)} "
                f"(recommended max: {self.config.max_phases})"
            )
        limit = self.config.max_tokens_per_phase * 1.5
        for phase in phases:
            if phase.estimated_tokens > limit:
                warnings.append(
                    f"Phase {phase.number} ({phase.name}) may exceed context limits: "
                    f"{phase.estimated_tokens} tokens"
                )
        return errors, warnings

    # -- internals -----------------------------------------------------------

    @staticmethod
    def _coerce_concept(concept: AppConcept | dict[str, Any]) -> AppConcept:
        if isinstance(concept, AppConcept):
            return concept
        if not isinstance(concept, dict):
            raise PlanningError(f"unsupported concept type {type(concept).__name__}")
        try:
            return AppConcept.model_validate(concept)
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = " -> ".join(str(part) for part in first["loc"])
            raise PlanningError(first["msg"], field=loc) from exc

    def _first_phase(self, concept: AppConcept) -> Phase:
        if concept.layout_files:
            return create_layout_injection_phase(1, concept)
        return create_setup_phase(1, concept, self.config)

    def _minimal_phases(self, concept: AppConcept) -> list[Phase]:
        return [self._first_phase(concept), create_polish_phase(2, concept, self.config)]

    def _phases_from_groups(
        self,
        groups: dict[str, list[FeatureClassification]],
        concept: AppConcept,
    ) -> list[Phase]:
        phases: list[Phase] = [self._first_phase(concept)]
        ordered = [d for d in DOMAIN_ORDER if d in groups]
        ordered += [d for d in groups if d not in DOMAIN_ORDER and d != "polish"]

        for domain in ordered:
            parts = split_features_into_phases(groups[domain], domain, self.config)
            for i, part in enumerate(parts, start=1):
                name, description = part["name"], part["description"]
                fixed = _FIXED_PHASE_NAMES.get(domain)
                if fixed:
                    name = fixed if len(parts) == 1 else f"{fixed} (Part {i})"
                    description = self._fixed_description(domain, concept)
                phases.append(create_phase_from_features(
                    len(phases) + 1, name, description, domain, part["features"], concept,
                ))

        phases.append(create_polish_phase(len(phases) + 1, concept, self.config))
        return phases

    @staticmethod
    def _fixed_description(domain: str, concept: AppConcept) -> str:
        if domain == "database":
            models = concept.technical.data_models
            suffix = f". Data models: {', '.join(m.name for m in models)}" if models else ""
            return f"Set up database tables, types, and configuration{suffix}"
        roles = concept.roles
        suffix = f". User roles: {', '.join(r.name for r in roles)}" if roles else ""
        return f"Implement {concept.technical.auth_type} authentication{suffix}"

    def _create_plan(self, phases: list[Phase], concept: AppConcept) -> PhasePlan:
        total_tokens = sum(p.estimated_tokens for p in phases)
        total_minutes = sum(p.estimated_minutes for p in phases)
        count = len(phases)
        if count <= 3:
            complexity = "simple"
        elif count <= 6:
            complexity = "moderate"
        elif count <= 12:
            complexity = "complex"
        else:
            complexity = "enterprise"
        now = utc_now_iso()
        return PhasePlan(
            id=f"plan-{uuid.uuid4().hex[:12]}",
            app_name=concept.name,
            app_description=concept.description,
            phases=phases,
            estimated_total_tokens=total_tokens,
            estimated_total_time=f"{total_minutes}-{total_minutes + count * 2} min",
            complexity=complexity,
            created_at=now,
            updated_at=now,
            concept=concept,
        )

    @staticmethod
    def _analysis(
        classifications: list[FeatureClassification],
        groups: dict[str, list[FeatureClassification]],
    ) -> dict[str, Any]:
        total_tokens = sum(c.estimated_tokens for c in classifications)
        return {
            "total_features": len(classifications),
            "complex_features": sum(1 for c in classifications if c.complexity == "complex"),
            "domain_breakdown": {d: len(fs) for d, fs in groups.items()},
            "estimated_context_per_phase": round(total_tokens / max(1, len(groups) + 2)),
        }


def generate_phase_plan(
    concept: AppConcept | dict[str, Any],
    config: PhaseGeneratorConfig | None = None,
) -> PlanGenerationResult:
    """Convenience wrapper: plan with default or given budgets."""
    return PhasePlanner(config).generate_plan(concept)


__all__ = [
    "CyclicPhaseDependencyError",
    "DOMAIN_ORDER",
    "PhasePlanner",
    "check_plan_invariants",
    "generate_phase_plan",
    "topological_phase_order",
]
