"""Feature classification — domain, complexity and cost tagging.

Turns a flat feature list into :class:`FeatureClassification` records
the planner can group into phases.  Classification is keyword driven:
the complex table is consulted first (every complex domain gets its own
phase), then the moderate table, and anything left is a simple
``feature``-domain item.

Also derives *implicit* features from the concept's technical
requirements (auth, database, storage, ...) and fills undeclared
state/memory flags from feature text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from phase_forge.config import PhaseGeneratorConfig
from phase_forge.contracts import (
    Feature,
    FeatureClassification,
    TechnicalRequirements,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainPattern:
    """A keyword rule mapping matching features onto a domain."""

    keywords: tuple[str, ...]
    domain: str
    tokens: int
    suggested_phase_name: str = ""
    requires_own_phase: bool = False


COMPLEX_PATTERNS: tuple[DomainPattern, ...] = (
    DomainPattern(
        ("auth", "authentication", "login", "signup", "sign up", "sign-up",
         "register", "oauth", "sso", "jwt", "session"),
        "auth", 4000, "Authentication System", True,
    ),
    DomainPattern(
        ("database", "schema", "migration", "orm", "prisma", "supabase",
         "postgres", "mysql", "mongodb"),
        "database", 3500, "Database Setup", True,
    ),
    DomainPattern(
        ("payment", "stripe", "paypal", "checkout", "billing", "subscription", "invoice"),
        "integration", 4500, "Payment Integration", True,
    ),
    DomainPattern(
        ("real-time", "realtime", "websocket", "socket", "live", "sync",
         "presence", "collaborative"),
        "real-time", 4000, "Real-time Features", True,
    ),
    DomainPattern(
        ("file upload", "image upload", "storage", "media", "s3", "cloudinary", "upload"),
        "storage", 3500, "File Storage", True,
    ),
    DomainPattern(
        ("push notification", "fcm", "firebase notification", "email notification", "sms"),
        "notification", 3000, "Notification System", True,
    ),
    DomainPattern(
        ("offline", "service worker", "pwa", "local storage", "indexeddb", "sync queue"),
        "offline", 3500, "Offline Support", True,
    ),
    DomainPattern(
        ("search", "elasticsearch", "algolia", "full-text", "autocomplete"),
        "search", 3000, "Search System", True,
    ),
    DomainPattern(
        ("analytics", "dashboard", "charts", "graphs", "reporting", "metrics"),
        "analytics", 3500, "Analytics Dashboard", True,
    ),
    DomainPattern(
        ("admin panel", "admin dashboard", "moderation", "user management", "cms"),
        "admin", 4000, "Admin Panel", True,
    ),
)

MODERATE_PATTERNS: tuple[DomainPattern, ...] = (
    DomainPattern(("form", "multi-step", "wizard", "validation"), "ui-component", 2000),
    DomainPattern(("table", "data grid", "pagination", "sorting"), "ui-component", 2200),
    DomainPattern(("drag", "drop", "sortable", "reorder"), "ui-component", 2500),
    DomainPattern(("calendar", "date picker", "scheduling"), "feature", 2000),
    DomainPattern(("map", "location", "geolocation"), "integration", 2500),
    DomainPattern(("export", "pdf", "csv", "download"), "feature", 1800),
    DomainPattern(("import", "bulk", "batch"), "feature", 2000),
    DomainPattern(("filter", "advanced filter", "faceted"), "feature", 1800),
    DomainPattern(("comment", "reply", "thread"), "feature", 2200),
    DomainPattern(("rating", "review", "feedback"), "feature", 1500),
)

STATE_COMPLEXITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "complex": (
        "undo", "redo", "version history", "collaborative", "workflow",
        "multi-step", "state machine", "drafts",
    ),
    "moderate": (
        "filter", "sort", "cart", "wizard", "form", "settings",
        "preferences", "tabs", "pagination",
    ),
}

MEMORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "context_strong": (
        "remember", "memory", "across sessions", "conversation history",
        "personalized", "learns",
    ),
    "context_weak": ("history", "preferences", "context", "recent", "saved"),
    "state_history": ("undo", "redo", "version history", "revert", "time travel"),
    "caching": ("cache", "offline", "fast", "performance", "prefetch", "instant"),
}

_DEPENDENCY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("user", "account", "profile"), "Authentication System"),
    (("save", "store", "persist", "history"), "Database Setup"),
    (("image", "photo", "file", "upload"), "File Storage"),
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _feature_text(feature: Feature) -> str:
    return f"{feature.name.lower()} {feature.description.lower()}"


def _matched_keywords(keywords: tuple[str, ...], text: str) -> list[str]:
    """Keywords found at the start of a word, so "orm" never matches "form"."""
    return [k for k in keywords if re.search(rf"\b{re.escape(k)}", text)]


def infer_dependencies(feature: Feature) -> list[str]:
    """Infer phase names a feature depends on from its description."""
    description = feature.description.lower()
    return [
        phase_name
        for keywords, phase_name in _DEPENDENCY_KEYWORDS
        if any(k in description for k in keywords)
    ]


def classify_feature(
    feature: Feature,
    config: PhaseGeneratorConfig | None = None,
) -> FeatureClassification:
    """Classify a single feature into domain, complexity and token cost."""
    cfg = config or PhaseGeneratorConfig()
    text = _feature_text(feature)

    for pattern in COMPLEX_PATTERNS:
        matched = _matched_keywords(pattern.keywords, text)
        if matched:
            return FeatureClassification(
                feature=feature,
                domain=pattern.domain,
                complexity="complex",
                estimated_tokens=pattern.tokens,
                requires_own_phase=pattern.requires_own_phase,
                suggested_phase_name=pattern.suggested_phase_name,
                dependencies=infer_dependencies(feature),
                keywords=matched,
            )

    for pattern in MODERATE_PATTERNS:
        matched = _matched_keywords(pattern.keywords, text)
        if matched:
            return FeatureClassification(
                feature=feature,
                domain=pattern.domain,
                complexity="moderate",
                estimated_tokens=pattern.tokens,
                suggested_phase_name=feature.name,
                dependencies=infer_dependencies(feature),
                keywords=matched,
            )

    return FeatureClassification(
        feature=feature,
        domain="feature",
        complexity="simple",
        estimated_tokens=cfg.base_token_estimates.simple_feature,
        suggested_phase_name=feature.name,
    )


def classify_features(
    features: list[Feature],
    config: PhaseGeneratorConfig | None = None,
) -> list[FeatureClassification]:
    return [classify_feature(f, config) for f in features]


# ---------------------------------------------------------------------------
# Implicit features
# ---------------------------------------------------------------------------


def _implicit(
    feature_id: str,
    name: str,
    description: str,
    *,
    domain: str,
    complexity: str,
    tokens: int,
    phase_name: str,
    priority: str = "medium",
    own_phase: bool = True,
    dependencies: list[str] | None = None,
    keywords: list[str] | None = None,
) -> FeatureClassification:
    return FeatureClassification(
        feature=Feature(id=feature_id, name=name, description=description, priority=priority),
        domain=domain,
        complexity=complexity,
        estimated_tokens=tokens,
        requires_own_phase=own_phase,
        suggested_phase_name=phase_name,
        dependencies=dependencies or [],
        keywords=keywords or [],
    )


def get_implicit_features(tech: TechnicalRequirements) -> list[FeatureClassification]:
    """Features implied by technical requirements rather than listed by the user."""
    implicit: list[FeatureClassification] = []
    db_dep = ["Database Setup"] if tech.needs_database else []

    if tech.needs_auth:
        implicit.append(_implicit(
            "implicit-auth", "Authentication System",
            f"{tech.auth_type} authentication with login, logout, and session management",
            domain="auth", complexity="complex", tokens=4000,
            phase_name="Authentication System", priority="high",
            dependencies=db_dep, keywords=["auth", tech.auth_type],
        ))

    if tech.needs_database:
        implicit.append(_implicit(
            "implicit-database", "Database Setup",
            "Database schema, migrations, and data access layer",
            domain="database", complexity="complex", tokens=3500,
            phase_name="Database Schema", priority="high",
            keywords=["database", "schema"],
        ))

    if tech.needs_realtime:
        implicit.append(_implicit(
            "implicit-realtime", "Real-time Updates",
            "WebSocket or SSE connection with live updates",
            domain="real-time", complexity="complex", tokens=4000,
            phase_name="Real-time Features", dependencies=db_dep,
            keywords=["real-time", "websocket"],
        ))

    if tech.needs_file_upload:
        implicit.append(_implicit(
            "implicit-storage", "File Storage",
            "File upload, storage, and retrieval",
            domain="storage", complexity="complex", tokens=3500,
            phase_name="File Storage", keywords=["upload", "storage"],
        ))

    if tech.needs_api:
        implicit.append(_implicit(
            "implicit-api", "API Integration",
            "External API connections and service integration",
            domain="integration", complexity="moderate", tokens=2500,
            phase_name="API Integration", own_phase=False,
            keywords=["api", "integration"],
        ))

    if tech.state_complexity == "complex" or tech.needs_state_history:
        implicit.append(_implicit(
            "implicit-state-management", "State Management Infrastructure",
            "Store setup with slices, persistence middleware, history tracking, and undo/redo",
            domain="setup", complexity="complex", tokens=4000,
            phase_name="State Management Setup", priority="high",
            keywords=["state", "store", "history", "undo", "redo"],
        ))

    if tech.needs_context_persistence:
        implicit.append(_implicit(
            "implicit-context-memory", "Context Memory System",
            "Cross-session context persistence, interaction history, and preference tracking",
            domain="storage", complexity="complex", tokens=4500,
            phase_name="Memory & Context System", priority="high",
            dependencies=db_dep, keywords=["memory", "context", "persistence"],
        ))

    if tech.needs_database or tech.needs_api or tech.needs_auth:
        implicit.append(_implicit(
            "implicit-backend-validation", "Backend Validation",
            "Validation of database schema, API routes, and auth integration",
            domain="backend-validator", complexity="moderate", tokens=2000,
            phase_name="Backend Validation", priority="high",
            dependencies=["Database Setup", "Authentication System", "API Integration"],
            keywords=["validation", "integrity"],
        ))

    if tech.needs_caching:
        implicit.append(_implicit(
            "implicit-caching", "Caching Infrastructure",
            "Caching layer with memoization, request deduplication, and cache invalidation",
            domain="setup", complexity="moderate", tokens=2500,
            phase_name="Caching Layer", own_phase=False,
            keywords=["cache", "memoization"],
        ))

    if tech.needs_offline_support:
        implicit.append(_implicit(
            "implicit-offline", "Offline Support",
            "Service worker setup, IndexedDB storage, and background sync",
            domain="offline", complexity="complex", tokens=4000,
            phase_name="Offline Support", dependencies=db_dep,
            keywords=["offline", "service worker", "pwa"],
        ))

    if tech.needs_i18n:
        implicit.append(_implicit(
            "implicit-i18n", "Internationalization",
            "Multi-language support with translation catalogs",
            domain="i18n", complexity="complex", tokens=4000,
            phase_name="Internationalization Setup", priority="high",
            keywords=["i18n", "localization"],
        ))

    if tech.scale in ("large", "enterprise"):
        implicit.append(_implicit(
            "implicit-devops", "DevOps & Deployment",
            "Container configuration, CI/CD pipeline, and deployment automation",
            domain="devops", complexity="complex", tokens=4000,
            phase_name="DevOps & Infrastructure", dependencies=db_dep,
            keywords=["docker", "ci/cd", "deployment"],
        ))
        implicit.append(_implicit(
            "implicit-monitoring", "Monitoring & Observability",
            "Error tracking, logging infrastructure, and performance monitoring",
            domain="monitoring", complexity="moderate", tokens=3000,
            phase_name="Monitoring & Observability",
            keywords=["monitoring", "logging", "observability"],
        ))

    if implicit:
        logger.debug(
            "Implicit features: %s", ", ".join(c.feature.name for c in implicit)
        )
    return implicit


# ---------------------------------------------------------------------------
# State & memory detection
# ---------------------------------------------------------------------------


def infer_state_complexity(features: list[Feature]) -> str:
    """Guess state complexity (simple/moderate/complex) from feature text."""
    text = " ".join(_feature_text(f) for f in features)
    complex_hits = sum(1 for k in STATE_COMPLEXITY_KEYWORDS["complex"] if k in text)
    if complex_hits >= 2:
        return "complex"
    moderate_hits = sum(1 for k in STATE_COMPLEXITY_KEYWORDS["moderate"] if k in text)
    if complex_hits >= 1 or moderate_hits >= 3:
        return "moderate"
    return "simple"


def detect_memory_needs(features: list[Feature], description: str) -> dict[str, bool]:
    """Detect context-persistence, state-history and caching needs.

    Context persistence uses weighted scoring (strong keyword = 2,
    weak = 1, threshold 2); caching needs two keyword hits.
    """
    text = " ".join([description.lower(), *(_feature_text(f) for f in features)])
    strong = sum(1 for k in MEMORY_KEYWORDS["context_strong"] if k in text)
    weak = sum(1 for k in MEMORY_KEYWORDS["context_weak"] if k in text)
    return {
        "needs_context_persistence": strong * 2 + weak >= 2,
        "needs_state_history": any(k in text for k in MEMORY_KEYWORDS["state_history"]),
        "needs_caching": sum(1 for k in MEMORY_KEYWORDS["caching"] if k in text) >= 2,
    }


def fill_undeclared_requirements(
    tech: TechnicalRequirements,
    features: list[Feature],
    description: str,
) -> TechnicalRequirements:
    """Return a copy of *tech* with undeclared state/memory flags inferred."""
    updates: dict = {}
    if tech.state_complexity is None:
        updates["state_complexity"] = infer_state_complexity(features)
    memory = detect_memory_needs(features, description)
    for flag, value in memory.items():
        if getattr(tech, flag) is None:
            updates[flag] = value
    return tech.model_copy(update=updates) if updates else tech


__all__ = [
    "COMPLEX_PATTERNS",
    "MODERATE_PATTERNS",
    "DomainPattern",
    "classify_feature",
    "classify_features",
    "detect_memory_needs",
    "fill_undeclared_requirements",
    "get_implicit_features",
    "infer_dependencies",
    "infer_state_complexity",
]
