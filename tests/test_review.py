"""Tests for phase_forge.review — scoring, strictness and the quality gate."""

from __future__ import annotations

import textwrap
from unittest.mock import AsyncMock

import pytest

from phase_forge.contracts import (
    Feature,
    GeneratedFile,
    QualityIssue,
    QualityScores,
    TechnicalRequirements,
)
from phase_forge.errors import ReviewError
from phase_forge.review import (
    FINAL_REPORT_KEY,
    PASS_THRESHOLD,
    HeuristicReviewer,
    QualityGate,
    ReviewContext,
    ReviewOptions,
    build_report,
    overall_score,
    score_group,
    score_issues,
)


def _issue(category: str, severity: str, file: str = "src/a.ts") -> QualityIssue:
    return QualityIssue(id=f"{file}:{category}:{severity}", category=category,
                        severity=severity, file=file, message=category)


COUNTER = GeneratedFile(
    path="src/components/Counter.tsx",
    content=textwrap.dedent("""\
        import { useState } from 'react';

        export function Counter() {
          const [count, setCount] = useState(0);

          function increment() {
            setCount(count + 1);
          }

          console.log('x');
          return <button onClick={increment}>{count}</button>;
        }"""),
)

EVAL_FILE = GeneratedFile(path="src/run.ts", content="export function run(code) {\n  return eval(code);\n}")


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestScoring:
    def test_score_groups(self):
        assert score_group("syntax_error") == "syntax"
        assert score_group("import_unused") == "syntax"
        assert score_group("security_xss") == "security"
        assert score_group("react_missing_key") == "best_practices"
        assert score_group("logic_warning") == "best_practices"
        assert score_group("performance_memo") == "performance"
        assert score_group("accessibility") == "accessibility"
        assert score_group("missing_feature") == "requirements"

    def test_penalties_and_floor(self):
        scores = score_issues([
            _issue("security_eval", "critical"),
            _issue("syntax_error", "low"),
            _issue("syntax_error", "medium"),
        ] + [_issue("react_missing_key", "high")] * 8)
        assert scores.security == 75
        assert scores.syntax == 89
        assert scores.best_practices == 0
        assert scores.requirements is None

    def test_overall_is_weighted_mean(self):
        assert overall_score(QualityScores()) == 100
        assert overall_score(QualityScores(security=0)) == round(70 / 1.0)
        with_requirements = QualityScores(requirements=0)
        assert overall_score(with_requirements) == round(100 / 1.15)

    def test_critical_issue_fails_report(self):
        report = build_report(1, review_type="light",
                              found=[_issue("security_eval", "critical")],
                              remaining=[_issue("security_eval", "critical")])
        assert report.overall_score >= PASS_THRESHOLD
        assert report.passed is False
        assert report.issues_by_severity == {"critical": 1}

    def test_low_score_fails_report(self):
        remaining = [_issue("security_xss", "high")] * 7 + [_issue("syntax_error", "high")] * 7
        report = build_report(1, review_type="light", found=remaining, remaining=remaining)
        assert report.overall_score < 70
        assert report.passed is False


# ---------------------------------------------------------------------------
# HeuristicReviewer
# ---------------------------------------------------------------------------


class TestHeuristicReviewer:
    def test_light_review_fixes_debris(self):
        outcome = HeuristicReviewer().review([COUNTER], ReviewContext(key=1), ReviewOptions())
        report = outcome.report
        assert report.total_issues == 1
        assert report.fixed_issues == 1
        assert report.remaining_issues == 0
        assert report.passed is True
        assert [f.path for f in outcome.modified_files] == [COUNTER.path]
        assert "console.log" not in outcome.modified_files[0].content

        second = HeuristicReviewer().review(outcome.modified_files, ReviewContext(key=1), ReviewOptions())
        assert second.report.issues_by_category.get("syntax_error", 0) == 0

    def test_without_fixes_issues_remain(self):
        outcome = HeuristicReviewer().review(
            [COUNTER], ReviewContext(key=1), ReviewOptions(apply_fixes=False),
        )
        assert outcome.modified_files == []
        assert outcome.report.remaining_issues == 1
        assert outcome.report.scores.syntax == 97

    def test_eval_is_critical_and_unfixable(self):
        report = HeuristicReviewer().review([EVAL_FILE], ReviewContext(key=2), ReviewOptions()).report
        assert report.passed is False
        assert report.issues[0].category == "security_eval"
        assert report.issues[0].severity == "critical"

    def test_strictness_filters_categories(self):
        unused = GeneratedFile(path="src/a.ts", content="import { format } from 'date-fns';\nexport const a = 1;")
        reviewer = HeuristicReviewer()
        assert reviewer.find_issues([unused], ReviewOptions(strictness="standard")) == []
        strict = reviewer.find_issues([unused], ReviewOptions(strictness="strict"))
        assert [i.category for i in strict] == ["import_unused"]

    def test_issue_cap_per_file(self):
        noisy = GeneratedFile(path="src/a.ts", content="\n".join(["console.log(1);"] * 10))
        issues = HeuristicReviewer().find_issues([noisy], ReviewOptions(max_issues_per_file=3))
        assert len(issues) == 3

    def test_non_script_files_are_skipped(self):
        styles = GeneratedFile(path="src/app.css", content="console.log('x');")
        assert HeuristicReviewer().find_issues([styles], ReviewOptions()) == []


class TestRequirementsCheck:
    def _context(self, **tech) -> ReviewContext:
        return ReviewContext(
            key=FINAL_REPORT_KEY,
            review_type="comprehensive",
            features=[
                Feature(name="Todo list", priority="high"),
                Feature(name="Export to CSV", priority="low"),
            ],
            technical=TechnicalRequirements(**tech),
        )

    def test_satisfied_requirements(self):
        files = [GeneratedFile(path="src/TodoList.tsx", content="export function TodoList() {}")]
        issues, score = HeuristicReviewer().check_requirements(files, self._context())
        assert issues == []
        assert score == 100

    def test_missing_auth_is_critical(self):
        files = [GeneratedFile(path="src/TodoList.tsx", content="export function TodoList() {}")]
        issues, score = HeuristicReviewer().check_requirements(files, self._context(needs_auth=True))
        assert [i.severity for i in issues] == ["critical"]
        assert score == 50

    def test_missing_feature_in_comprehensive_review(self):
        files = [GeneratedFile(path="src/App.tsx", content="export function App() {}")]
        report = HeuristicReviewer().review(files, self._context(), ReviewOptions()).report
        assert report.review_type == "comprehensive"
        assert report.scores.requirements == 0
        assert report.issues_by_category == {"missing_feature": 1}

    def test_nothing_to_check(self):
        issues, score = HeuristicReviewer().check_requirements([], ReviewContext(key="final"))
        assert issues == []
        assert score is None


# ---------------------------------------------------------------------------
# QualityGate
# ---------------------------------------------------------------------------


class TestQualityGate:
    @pytest.mark.asyncio
    async def test_phase_report_stored_under_number(self):
        gate = QualityGate()
        outcome = await gate.review_phase(3, [COUNTER])
        assert outcome.report.key == 3
        assert outcome.report.review_type == "light"
        assert gate.get_report(3) is outcome.report

    @pytest.mark.asyncio
    async def test_final_report_stored_under_final(self):
        gate = QualityGate()
        await gate.review_final([COUNTER], ReviewContext(key="ignored"))
        report = gate.get_report(FINAL_REPORT_KEY)
        assert report is not None
        assert report.review_type == "comprehensive"

    @pytest.mark.asyncio
    async def test_review_failure_raises_review_error(self):
        gate = QualityGate(review=AsyncMock(side_effect=RuntimeError("model unavailable")))
        with pytest.raises(ReviewError) as exc_info:
            await gate.review_phase(2, [COUNTER])
        assert exc_info.value.review_key == 2
        assert "model unavailable" in str(exc_info.value)
        assert gate.get_report(2) is None

    @pytest.mark.asyncio
    async def test_options_from_settings(self, monkeypatch):
        monkeypatch.setattr("phase_forge.config.settings.REVIEW_STRICTNESS", "strict")
        review = AsyncMock(side_effect=HeuristicReviewer().__call__)
        gate = QualityGate(review=review)
        await gate.review_phase(1, [COUNTER])
        options = review.await_args.args[2]
        assert options.strictness == "strict"

    @pytest.mark.asyncio
    async def test_discard_and_clear(self):
        gate = QualityGate()
        await gate.review_phase(1, [COUNTER])
        await gate.review_phase(2, [COUNTER])
        gate.discard(1)
        assert gate.get_report(1) is None
        gate.clear()
        assert gate.reports == {}
