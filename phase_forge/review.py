"""Quality gate — per-phase light review and whole-build comprehensive review.

The gate delegates the actual review to an injected async callable
``(files, context, options) -> ReviewOutcome``.  :class:`HeuristicReviewer`
is the built-in one: it runs the regex checks from
:mod:`phase_forge.analyzers`, keeps only the categories enabled for the
configured strictness, applies allow-listed auto-fixes and scores what
remains.

Scoring
-------
Each score group starts at 100 and loses a fixed penalty per remaining
issue (critical 25, high 15, medium 8, low 3), floored at 0.  The
overall score is the weighted mean of the groups; the requirements
group only takes part in comprehensive reviews.  A report passes when
no critical issue remains and the overall score is at least
:data:`PASS_THRESHOLD`.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from phase_forge.analyzers import DEFAULT_CHECKS, Check, run_checks
from phase_forge.auto_fix import AutoFixEngine
from phase_forge.config import settings
from phase_forge.contracts import (
    APIContract,
    Feature,
    GeneratedFile,
    QualityIssue,
    QualityReport,
    QualityScores,
    TechnicalRequirements,
)
from phase_forge.errors import ReviewError

logger = logging.getLogger(__name__)

PASS_THRESHOLD = 70
FINAL_REPORT_KEY = "final"

SEVERITY_PENALTY: dict[str, int] = {"critical": 25, "high": 15, "medium": 8, "low": 3}

SCORE_WEIGHTS: dict[str, float] = {
    "syntax": 0.25,
    "security": 0.30,
    "best_practices": 0.20,
    "performance": 0.15,
    "accessibility": 0.10,
    "requirements": 0.15,
}

_RELAXED = frozenset({
    "syntax_error",
    "type_error",
    "security_xss",
    "security_injection",
    "security_eval",
    "security_secrets",
    "react_hooks_rule",
    "react_invalid_hook",
})
_STANDARD = _RELAXED | {
    "react_missing_key",
    "react_missing_deps",
    "performance_rerender",
    "import_missing",
    "logic_warning",
}
_STRICT = _STANDARD | {
    "performance_memo",
    "performance_expensive",
    "accessibility",
    "import_unused",
    "missing_feature",
}

STRICTNESS_CATEGORIES: dict[str, frozenset[str]] = {
    "relaxed": _RELAXED,
    "standard": _STANDARD,
    "strict": _STRICT,
}

_AUTH_EVIDENCE = re.compile(r"login|signin|sign_in|signup|authenticat|session|useauth|jwt", re.IGNORECASE)
_DATABASE_EVIDENCE = re.compile(
    r"prisma|supabase|mongoose|sequelize|drizzle|schema|database|\bdb\.|\bsql\b|createtable",
    re.IGNORECASE,
)


def score_group(category: str) -> str:
    """Which score group an issue category counts against."""
    if category in ("syntax_error", "type_error") or category.startswith("import_"):
        return "syntax"
    if category.startswith("security_"):
        return "security"
    if category.startswith("react_") or category == "logic_warning":
        return "best_practices"
    if category.startswith("performance_"):
        return "performance"
    if category == "accessibility":
        return "accessibility"
    return "requirements"


# ---------------------------------------------------------------------------
# Callable protocol
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReviewOptions:
    strictness: str = "standard"
    apply_fixes: bool = True
    max_issues_per_file: int = 50

    @classmethod
    def from_settings(cls) -> "ReviewOptions":
        return cls(
            strictness=settings.REVIEW_STRICTNESS,
            max_issues_per_file=settings.REVIEW_MAX_ISSUES_PER_FILE,
        )


@dataclass
class ReviewContext:
    """What the reviewer knows about the code under review."""

    key: int | str
    review_type: str = "light"
    phase_name: str = ""
    features: list[Feature] = field(default_factory=list)
    technical: TechnicalRequirements | None = None
    api_contracts: list[APIContract] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)


@dataclass
class ReviewOutcome:
    report: QualityReport
    modified_files: list[GeneratedFile] = field(default_factory=list)


ReviewCallable = Callable[
    [list[GeneratedFile], ReviewContext, ReviewOptions],
    Awaitable[ReviewOutcome],
]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_issues(issues: list[QualityIssue], *, requirements: int | None = None) -> QualityScores:
    penalties: Counter[str] = Counter()
    for issue in issues:
        penalties[score_group(issue.category)] += SEVERITY_PENALTY.get(issue.severity, 0)

    def clamp(group: str) -> int:
        return max(0, 100 - penalties[group])

    return QualityScores(
        syntax=clamp("syntax"),
        security=clamp("security"),
        best_practices=clamp("best_practices"),
        performance=clamp("performance"),
        accessibility=clamp("accessibility"),
        requirements=requirements,
    )


def overall_score(scores: QualityScores) -> int:
    values = scores.model_dump()
    total = 0.0
    weight = 0.0
    for group, w in SCORE_WEIGHTS.items():
        value = values.get(group)
        if value is None:
            continue
        total += value * w
        weight += w
    return round(total / weight) if weight else 100


def build_report(
    key: int | str,
    *,
    review_type: str,
    found: list[QualityIssue],
    remaining: list[QualityIssue],
    fixes: list | None = None,
    validation_errors: list[str] | None = None,
    requirements_score: int | None = None,
    started: float | None = None,
) -> QualityReport:
    scores = score_issues(remaining, requirements=requirements_score)
    overall = overall_score(scores)
    has_critical = any(i.severity == "critical" for i in remaining)
    return QualityReport(
        key=key,
        review_type=review_type,
        total_issues=len(found),
        fixed_issues=len(fixes or []),
        remaining_issues=len(remaining),
        issues_by_category=dict(Counter(i.category for i in remaining)),
        issues_by_severity=dict(Counter(i.severity for i in remaining)),
        scores=scores,
        overall_score=overall,
        passed=not has_critical and overall >= PASS_THRESHOLD,
        issues=remaining,
        fixes=list(fixes or []),
        validation_errors=list(validation_errors or []),
        duration_ms=int((time.monotonic() - started) * 1000) if started is not None else 0,
    )


# ---------------------------------------------------------------------------
# Built-in reviewer
# ---------------------------------------------------------------------------


class HeuristicReviewer:
    """Regex-based reviewer usable as the gate's review callable."""

    def __init__(
        self,
        engine: AutoFixEngine | None = None,
        checks: tuple[Check, ...] = DEFAULT_CHECKS,
    ) -> None:
        self.engine = engine or AutoFixEngine()
        self.checks = checks

    async def __call__(
        self,
        files: list[GeneratedFile],
        context: ReviewContext,
        options: ReviewOptions,
    ) -> ReviewOutcome:
        return self.review(files, context, options)

    def find_issues(self, files: list[GeneratedFile], options: ReviewOptions) -> list[QualityIssue]:
        enabled = STRICTNESS_CATEGORIES.get(options.strictness, _STANDARD)
        issues: list[QualityIssue] = []
        for f in files:
            found = [i for i in run_checks(f.path, f.content, self.checks) if i.category in enabled]
            issues.extend(found[: options.max_issues_per_file])
        return issues

    def check_requirements(
        self,
        files: list[GeneratedFile],
        context: ReviewContext,
    ) -> tuple[list[QualityIssue], int | None]:
        """Requirement gaps plus the requirements score (``None`` if nothing to check)."""
        corpus = "\n".join(f.content for f in files).lower()
        issues: list[QualityIssue] = []
        total = 0

        for feature in context.features:
            if feature.priority != "high":
                continue
            total += 1
            keywords = [w for w in re.findall(r"[a-z0-9]+", feature.name.lower()) if len(w) > 3]
            if keywords and not any(k in corpus for k in keywords):
                issues.append(QualityIssue(
                    id=f"requirement:feature:{feature.id or feature.name}",
                    category="missing_feature",
                    severity="high",
                    file="",
                    message=f"High-priority feature '{feature.name}' has no visible implementation",
                ))

        tech = context.technical
        if tech is not None and tech.needs_auth:
            total += 1
            if not _AUTH_EVIDENCE.search(corpus):
                issues.append(QualityIssue(
                    id="requirement:auth",
                    category="missing_feature",
                    severity="critical",
                    file="",
                    message="Authentication is required but no auth code was found",
                ))
        if tech is not None and tech.needs_database:
            total += 1
            if not _DATABASE_EVIDENCE.search(corpus):
                issues.append(QualityIssue(
                    id="requirement:database",
                    category="missing_feature",
                    severity="high",
                    file="",
                    message="A database is required but no data layer was found",
                ))

        if total == 0:
            return issues, None
        return issues, round((total - len(issues)) / total * 100)

    def review(
        self,
        files: list[GeneratedFile],
        context: ReviewContext,
        options: ReviewOptions,
    ) -> ReviewOutcome:
        started = time.monotonic()
        found = self.find_issues(files, options)
        requirements_score = None
        if context.review_type == "comprehensive":
            gaps, requirements_score = self.check_requirements(files, context)
            found.extend(gaps)

        modified: list[GeneratedFile] = []
        fixes: list = []
        validation_errors: list[str] = []
        remaining = found
        if options.apply_fixes and found:
            run = self.engine.apply_fixes(files, found)
            remaining = run.remaining
            fixes = run.applied
            validation_errors = run.validation_errors
            modified = [f for f in run.files if f.path in run.modified_paths]

        report = build_report(
            context.key,
            review_type=context.review_type,
            found=found,
            remaining=remaining,
            fixes=fixes,
            validation_errors=validation_errors,
            requirements_score=requirements_score,
            started=started,
        )
        return ReviewOutcome(report=report, modified_files=modified)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class QualityGate:
    """Runs reviews through the injected callable and keeps the reports."""

    def __init__(
        self,
        review: ReviewCallable | None = None,
        options: ReviewOptions | None = None,
    ) -> None:
        self.review = review or HeuristicReviewer()
        self.options = options or ReviewOptions.from_settings()
        self.reports: dict[int | str, QualityReport] = {}

    async def _run(
        self,
        files: list[GeneratedFile],
        context: ReviewContext,
    ) -> ReviewOutcome:
        try:
            outcome = await self.review(files, context, self.options)
        except Exception as exc:
            raise ReviewError(context.key, str(exc) or type(exc).__name__) from exc
        self.reports[context.key] = outcome.report
        logger.info(
            "Review %r: score=%d passed=%s issues=%d fixed=%d",
            context.key,
            outcome.report.overall_score,
            outcome.report.passed,
            outcome.report.total_issues,
            outcome.report.fixed_issues,
        )
        return outcome

    async def review_phase(
        self,
        phase_number: int,
        files: list[GeneratedFile],
        context: ReviewContext | None = None,
    ) -> ReviewOutcome:
        """Light review of one phase's files; report stored under the phase number."""
        context = context or ReviewContext(key=phase_number)
        context.key = phase_number
        context.review_type = "light"
        return await self._run(files, context)

    async def review_final(
        self,
        files: list[GeneratedFile],
        context: ReviewContext | None = None,
    ) -> ReviewOutcome:
        """Comprehensive review of the whole build; report stored under ``"final"``."""
        context = context or ReviewContext(key=FINAL_REPORT_KEY)
        context.key = FINAL_REPORT_KEY
        context.review_type = "comprehensive"
        return await self._run(files, context)

    def get_report(self, key: int | str) -> QualityReport | None:
        return self.reports.get(key)

    def discard(self, key: int | str) -> None:
        self.reports.pop(key, None)

    def clear(self) -> None:
        self.reports.clear()


__all__ = [
    "FINAL_REPORT_KEY",
    "HeuristicReviewer",
    "PASS_THRESHOLD",
    "QualityGate",
    "ReviewCallable",
    "ReviewContext",
    "ReviewOptions",
    "ReviewOutcome",
    "STRICTNESS_CATEGORIES",
    "build_report",
    "overall_score",
    "score_group",
    "score_issues",
]
