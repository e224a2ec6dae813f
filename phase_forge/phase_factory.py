"""Phase factory — builds individual :class:`Phase` records.

Covers the mandatory bookend phases (setup or layout injection first,
polish last), feature-group phases, naming, descriptions, role
relevance, test criteria and the greedy budget-bounded splitter.
"""

from __future__ import annotations

import math

from phase_forge.config import PhaseGeneratorConfig
from phase_forge.contracts import AppConcept, FeatureClassification, Phase, UserRole


DOMAIN_DISPLAY_NAMES: dict[str, str] = {
    "setup": "Core Infrastructure",
    "database": "Database",
    "auth": "Authentication",
    "i18n": "Internationalization",
    "core-entity": "Core Features",
    "feature": "Features",
    "ui-component": "UI Components",
    "integration": "Integrations",
    "real-time": "Real-time",
    "storage": "Storage",
    "notification": "Notifications",
    "offline": "Offline Support",
    "search": "Search",
    "analytics": "Analytics",
    "admin": "Admin",
    "ui-role": "Role Views",
    "testing": "Testing",
    "backend-validator": "Backend Validation",
    "devops": "DevOps & Infrastructure",
    "monitoring": "Monitoring & Observability",
    "polish": "Polish",
}

_DOMAIN_TEST_CRITERIA: dict[str, tuple[str, ...]] = {
    "auth": (
        "Login flow works correctly",
        "Logout clears session",
        "Protected routes redirect unauthenticated users",
    ),
    "database": (
        "Schema is valid",
        "Types are generated",
        "Queries execute without errors",
    ),
    "storage": (
        "Files can be uploaded",
        "Files can be retrieved",
        "Invalid files are rejected",
    ),
    "real-time": (
        "WebSocket connection establishes",
        "Real-time updates are received",
        "Reconnection works on disconnect",
    ),
    "backend-validator": (
        "Database schema matches requirements",
        "API routes exist and export correct methods",
        "Auth checks are implemented where required",
    ),
    "devops": (
        "Build pipeline succeeds",
        "Environment variables are configured",
        "Deployment configuration is valid",
    ),
    "monitoring": (
        "Error logging is initialized",
        "Performance metrics are tracked",
        "Health check endpoint returns 200",
    ),
}

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
_COMPLEXITY_ORDER = {"simple": 0, "moderate": 1, "complex": 2}


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------


def build_design_context(concept: AppConcept) -> str:
    """One-line design summary appended to phase descriptions."""
    ui = concept.ui_preferences
    parts: list[str] = []
    if ui.style and ui.style != "custom":
        parts.append(f"{ui.style} design style")
    if ui.color_scheme and ui.color_scheme != "auto":
        parts.append(f"{ui.color_scheme} color scheme")
    if ui.primary_color:
        parts.append(f"primary color: {ui.primary_color}")
    if ui.layout and ui.layout != "custom":
        parts.append(f"{ui.layout} layout")
    if concept.target_users:
        parts.append(f"designed for {concept.target_users}")
    return f"Design: {', '.join(parts)}." if parts else ""


def find_relevant_roles(
    features: list[FeatureClassification],
    roles: list[UserRole] | None,
) -> list[str]:
    """Roles whose name or any capability appears in a feature's text."""
    if not roles:
        return []
    relevant: list[str] = []
    for fc in features:
        text = f"{fc.feature.name} {fc.feature.description}".lower()
        for role in roles:
            if role.name in relevant:
                continue
            if role.name.lower() in text or any(
                cap.lower() in text for cap in role.capabilities
            ):
                relevant.append(role.name)
    return relevant


def generate_test_criteria(
    features: list[FeatureClassification],
    domain: str,
) -> list[str]:
    criteria = list(_DOMAIN_TEST_CRITERIA.get(domain, ()))
    if not criteria:
        criteria = [f"{fc.feature.name} works as expected" for fc in features[:6]]
        if len(features) > 6:
            criteria.append(f"All {len(features)} features are functional")
    criteria.append("No console errors")
    return criteria


# ---------------------------------------------------------------------------
# Bookend phases
# ---------------------------------------------------------------------------


def create_setup_phase(
    number: int,
    concept: AppConcept,
    config: PhaseGeneratorConfig,
) -> Phase:
    ui = concept.ui_preferences
    design = build_design_context(concept)
    features = [
        "Folder structure and organization",
        "Package manifest with dependencies",
        "TypeScript configuration",
        f"Base styling ({ui.color_scheme} theme, {ui.style} style)",
        "Core layout components",
        "Routing configuration",
    ]
    if ui.layout == "dashboard":
        features.append("Dashboard layout skeleton")
    features.extend([
        "ErrorBoundary component wrapping App with fallback UI",
        "Semantic HTML structure (nav, main, section, footer)",
        "Accessibility foundation (ARIA labels, keyboard navigation)",
        "SEO meta tags (title, description, Open Graph)",
    ])
    return Phase(
        number=number,
        name="Project Setup",
        description=(
            f'Initialize project structure, dependencies, and base configuration '
            f'for "{concept.name}". {design}'
        ).strip(),
        domain="setup",
        features=features,
        estimated_tokens=config.base_token_estimates.setup_phase + 800,
        estimated_time="3-4 min",
        dependencies=[],
        test_criteria=[
            "Project runs without errors",
            "Base layout renders correctly",
            f"Theme matches {ui.style} style",
            "Navigation works between routes",
            "No console errors",
            "All interactive elements are keyboard accessible",
        ],
    )


def create_layout_injection_phase(number: int, concept: AppConcept) -> Phase:
    """Phase 1 variant that injects a pre-built layout instead of generating."""
    paths = [f.path for f in concept.layout_files]
    features = [
        "Pre-built layout structure",
        "Navigation framework and routing structure",
        "Responsive layout with mobile-first approach",
    ]
    if paths:
        features.append(f"Layout files: {', '.join(paths[:6])}")
    return Phase(
        number=number,
        name="Layout Injection",
        description=(
            f'Inject pre-built layout code as the app foundation for "{concept.name}".'
        ),
        domain="setup",
        is_layout_injection=True,
        features=features,
        estimated_tokens=500,
        estimated_time="Instant",
        dependencies=[],
        test_criteria=[
            "Layout renders correctly in preview",
            "Design tokens are applied",
            "Navigation structure works",
        ],
    )


def create_polish_phase(
    number: int,
    concept: AppConcept,
    config: PhaseGeneratorConfig,
) -> Phase:
    ui = concept.ui_preferences
    design = build_design_context(concept)
    features = [
        "Loading states and skeletons",
        "Error handling and error states",
        "Empty states with helpful messages",
        f"Micro-interactions and animations ({ui.style} style)",
        "README.md with setup instructions",
        "Final code cleanup",
    ]
    if concept.roles:
        features.append(
            f"Role-specific UX polish for: {', '.join(r.name for r in concept.roles)}"
        )
    return Phase(
        number=number,
        name="Polish & Documentation",
        description=(
            f'Final touches, animations, error states, and documentation for '
            f'"{concept.name}". {design}'
        ).strip(),
        domain="polish",
        features=features,
        estimated_tokens=config.base_token_estimates.polish_phase,
        estimated_time="2-3 min",
        dependencies=list(range(1, number)),
        dependency_names=["All previous phases"],
        test_criteria=[
            "All states have appropriate feedback",
            "Documentation is complete",
            "No console warnings or errors",
        ],
        relevant_roles=[r.name for r in concept.roles],
    )


# ---------------------------------------------------------------------------
# Feature phases
# ---------------------------------------------------------------------------


def create_phase_from_features(
    number: int,
    name: str,
    description: str,
    domain: str,
    features: list[FeatureClassification],
    concept: AppConcept | None = None,
) -> Phase:
    total_tokens = sum(fc.estimated_tokens for fc in features)
    minutes = max(1, math.ceil(total_tokens / 1500))
    roles = find_relevant_roles(features, concept.roles if concept else None)

    enriched = description
    if concept is not None:
        design = build_design_context(concept)
        if design:
            enriched = f"{description}. {design}"
        if roles:
            enriched += f" For users: {', '.join(roles)}."

    return Phase(
        number=number,
        name=name,
        description=enriched,
        domain=domain,
        features=[fc.feature.name for fc in features],
        feature_details=list(features),
        estimated_tokens=total_tokens,
        estimated_time=f"{minutes}-{minutes + 2} min",
        test_criteria=generate_test_criteria(features, domain),
        relevant_roles=roles,
    )


def generate_phase_name(
    domain: str,
    features: list[FeatureClassification],
    part_index: int,
    total_parts: int,
) -> str:
    if len(features) == 1 and features[0].suggested_phase_name:
        return features[0].suggested_phase_name
    base = DOMAIN_DISPLAY_NAMES.get(domain, "Features")
    if total_parts > 1:
        return f"{base} (Part {part_index})"
    return base


def generate_phase_description(features: list[FeatureClassification]) -> str:
    if len(features) == 1:
        only = features[0].feature
        return only.description or f"Implement {only.name}"
    names = [fc.feature.name for fc in features]
    if len(names) <= 3:
        return f"Implement {', '.join(names)}"
    return f"Implement {', '.join(names[:2])}, and {len(names) - 2} more features"


def sort_for_packing(features: list[FeatureClassification]) -> list[FeatureClassification]:
    """Order by priority (high first), then complexity (simple first)."""
    return sorted(
        features,
        key=lambda fc: (
            _PRIORITY_ORDER.get(fc.feature.priority, 1),
            _COMPLEXITY_ORDER.get(fc.complexity, 0),
        ),
    )


def pack_features(
    features: list[FeatureClassification],
    config: PhaseGeneratorConfig,
) -> list[list[FeatureClassification]]:
    """Greedy budget-bounded grouping.

    A feature joins the current group unless that would exceed the token
    or feature budget; then the group is closed.  An oversized feature
    therefore always lands in a group of its own.
    """
    groups: list[list[FeatureClassification]] = []
    current: list[FeatureClassification] = []
    tokens = 0
    for fc in sort_for_packing(features):
        over_tokens = tokens + fc.estimated_tokens > config.max_tokens_per_phase
        over_count = len(current) >= config.max_features_per_phase
        if (over_tokens or over_count) and current:
            groups.append(current)
            current, tokens = [], 0
        current.append(fc)
        tokens += fc.estimated_tokens
    if current:
        groups.append(current)
    return groups


def split_features_into_phases(
    features: list[FeatureClassification],
    domain: str,
    config: PhaseGeneratorConfig,
) -> list[dict]:
    """Split one domain's features into named, budget-bounded sub-phases.

    Returns ``[{"name", "description", "features"}]`` in packing order.
    """
    groups = pack_features(features, config)
    total = len(groups)
    return [
        {
            "name": generate_phase_name(domain, group, i, total),
            "description": generate_phase_description(group),
            "features": group,
        }
        for i, group in enumerate(groups, start=1)
    ]
