"""Auto-fix engine — mechanical repairs for a narrow set of issue categories.

Only categories in :data:`AUTO_FIXABLE_CATEGORIES` are ever touched.
Fixes for one file are applied bottom-up (descending line number) so
that deleting a line never shifts the target of a fix still pending;
imports that must be *added* as a new line go in last for the same
reason.

Every fixed file is validated against its original before it is
accepted.  A file that fails validation is returned unchanged and all
of its issues stay in the remaining set.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from phase_forge.analyzers import map_body_offset, parse_import_clause
from phase_forge.contracts import AppliedFix, GeneratedFile, QualityIssue
from phase_forge.errors import FixValidationError

logger = logging.getLogger(__name__)

AUTO_FIXABLE_CATEGORIES: frozenset[str] = frozenset({
    "syntax_error",
    "react_missing_key",
    "import_unused",
    "import_missing",
    "security_eval",
})

_BRACKET_PAIRS = (("{", "}"), ("[", "]"), ("(", ")"))
_EXPORT_RE = re.compile(r"^\s*export\s+(?:default\s+)?", re.MULTILINE)
_STANDALONE_CONSOLE_LOG_RE = re.compile(r"^\s*console\.log\s*\([^)]*\)\s*;?\s*$")
_DEBUGGER_RE = re.compile(r"^\s*debugger\s*;?\s*$")
_IMPORT_RE = re.compile(
    r"""^(?P<indent>\s*)import\s+(?P<clause>[^'"]+?)\s+from\s+(?P<q>['"])(?P<source>[^'"]+)(?P=q)(?P<semi>\s*;?)\s*$"""
)
_TIMER_STRING_RE = re.compile(r"\b(?P<fn>setTimeout|setInterval)\s*\(\s*(?P<q>['\"])(?P<code>.*?)(?P=q)\s*,")
_JSX_OPEN_RE = re.compile(r"<(?P<tag>[A-Za-z][\w.]*)(?P<attrs>[^<>]*?)/?>")
_UNUSED_SYMBOL_RE = re.compile(r"Unused import: '(?P<symbol>[\w$]+)'")
_MISSING_SYMBOL_RE = re.compile(r"'(?P<symbol>[\w$]+)' is used but not imported from '(?P<source>[^']+)'")
_KEY_SUGGESTION_RE = re.compile(r"key=\{(?P<expr>.+)\}")
_DIRECTIVE_RE = re.compile(r"""^\s*['"]use (?:client|server|strict)['"]\s*;?\s*$""")
_NAMESPACE_RE = re.compile(r"\*\s*as\s+[\w$]+")

# A strategy edits ``lines`` in place and returns a description of the
# change, or ``None`` when it could not apply.
FixStrategy = Callable[[list[str], QualityIssue], "str | None"]


@dataclass
class FixRunResult:
    """Outcome of one auto-fix run over a set of files."""

    files: list[GeneratedFile] = field(default_factory=list)
    applied: list[AppliedFix] = field(default_factory=list)
    remaining: list[QualityIssue] = field(default_factory=list)
    validation_errors: list[str] = field(default_factory=list)
    modified_paths: list[str] = field(default_factory=list)


def is_auto_fixable(issue: QualityIssue) -> bool:
    return issue.auto_fixable and issue.category in AUTO_FIXABLE_CATEGORIES


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_fix(original: str, fixed: str) -> list[str]:
    """Reasons *fixed* must be rejected; empty when it is acceptable.

    The fixed text must be non-empty, keep the same open/close balance
    for each bracket kind, and keep the same number of top-level
    ``export`` statements.
    """
    reasons: list[str] = []
    if not fixed.strip():
        reasons.append("fixed content is empty")
        return reasons
    for open_ch, close_ch in _BRACKET_PAIRS:
        before = original.count(open_ch) - original.count(close_ch)
        after = fixed.count(open_ch) - fixed.count(close_ch)
        if before != after:
            reasons.append(f"unbalanced {open_ch}{close_ch} ({after:+d} vs {before:+d})")
    exports_before = len(_EXPORT_RE.findall(original))
    exports_after = len(_EXPORT_RE.findall(fixed))
    if exports_before != exports_after:
        reasons.append(f"export count changed from {exports_before} to {exports_after}")
    return reasons


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def _target(lines: list[str], issue: QualityIssue) -> int | None:
    if issue.line is None or not 1 <= issue.line <= len(lines):
        return None
    return issue.line - 1


def fix_debris(lines: list[str], issue: QualityIssue) -> str | None:
    """Delete a standalone ``console.log(...)`` or ``debugger`` line."""
    idx = _target(lines, issue)
    if idx is None:
        return None
    line = lines[idx]
    if "console.log" in issue.message and _STANDALONE_CONSOLE_LOG_RE.match(line):
        del lines[idx]
        return "Removed console.log statement"
    if "debugger" in issue.message and _DEBUGGER_RE.match(line):
        del lines[idx]
        return "Removed debugger statement"
    return None


def fix_missing_key(lines: list[str], issue: QualityIssue) -> str | None:
    """Add a ``key`` attribute to the first unkeyed JSX element on the line."""
    idx = _target(lines, issue)
    if idx is None:
        return None
    line = lines[idx]
    element = _JSX_OPEN_RE.search(line, map_body_offset(line))
    if element is None or "key=" in element.group("attrs"):
        return None
    suggestion = _KEY_SUGGESTION_RE.search(issue.suggestion or "")
    expr = suggestion.group("expr") if suggestion else "index"
    insert_at = element.end("tag")
    lines[idx] = f"{line[:insert_at]} key={{{expr}}}{line[insert_at:]}"
    return f"Added key={{{expr}}} to <{element.group('tag')}>"


def _render_import(indent: str, default: str | None, named: list[str], q: str, source: str, semi: str) -> str:
    parts: list[str] = []
    if default:
        parts.append(default)
    if named:
        parts.append("{ " + ", ".join(named) + " }")
    return f"{indent}import {', '.join(parts)} from {q}{source}{q}{semi}"


def fix_unused_import(lines: list[str], issue: QualityIssue) -> str | None:
    """Drop the unused symbol from its import, or the whole import if it empties."""
    idx = _target(lines, issue)
    symbol_match = _UNUSED_SYMBOL_RE.search(issue.message)
    if idx is None or symbol_match is None:
        return None
    match = _IMPORT_RE.match(lines[idx])
    if match is None:
        return None
    symbol = symbol_match.group("symbol")
    clause = match.group("clause")
    default, _ = parse_import_clause(clause)
    brace = re.search(r"\{([^}]*)\}", clause)
    raw_named = [p.strip() for p in brace.group(1).split(",") if p.strip()] if brace else []

    kept_named = [p for p in raw_named if re.split(r"\s+as\s+", p)[-1].strip() != symbol]
    kept_default = None if default == symbol else default
    if kept_default == default and len(kept_named) == len(raw_named):
        return None
    if kept_default is None and not kept_named:
        del lines[idx]
        return f"Removed unused import of '{symbol}'"
    lines[idx] = _render_import(
        match.group("indent"), kept_default, kept_named,
        match.group("q"), match.group("source"), match.group("semi"),
    )
    return f"Removed '{symbol}' from import"


def add_missing_import(lines: list[str], symbol: str, source: str) -> str:
    """Merge *symbol* into an existing import of *source*, else prepend one.

    Namespace imports (``* as React``) are never merged into since the
    rewritten clause would drop the namespace binding.
    """
    for i, line in enumerate(lines):
        match = _IMPORT_RE.match(line)
        if match is None or match.group("source") != source:
            continue
        if _NAMESPACE_RE.search(match.group("clause")):
            continue
        default, named = parse_import_clause(match.group("clause"))
        if symbol in named:
            return f"'{symbol}' already imported"
        brace = re.search(r"\{([^}]*)\}", match.group("clause"))
        raw_named = [p.strip() for p in brace.group(1).split(",") if p.strip()] if brace else []
        lines[i] = _render_import(
            match.group("indent"), default, raw_named + [symbol],
            match.group("q"), source, match.group("semi"),
        )
        return f"Added '{symbol}' to existing import from '{source}'"

    insert_at = 0
    while insert_at < len(lines) and _DIRECTIVE_RE.match(lines[insert_at]):
        insert_at += 1
    lines.insert(insert_at, f"import {{ {symbol} }} from '{source}';")
    return f"Added import of '{symbol}' from '{source}'"


def fix_string_timer(lines: list[str], issue: QualityIssue) -> str | None:
    """``setTimeout("code", n)`` becomes ``setTimeout(() => { code }, n)``."""
    idx = _target(lines, issue)
    if idx is None:
        return None
    line = lines[idx]
    timer = _TIMER_STRING_RE.search(line)
    if timer is None:
        return None
    code = timer.group("code").strip().rstrip(";")
    replacement = f"{timer.group('fn')}(() => {{ {code}; }},"
    lines[idx] = line[: timer.start()] + replacement + line[timer.end():]
    return f"Replaced string argument of {timer.group('fn')}() with a function"


DEFAULT_STRATEGIES: dict[str, FixStrategy] = {
    "syntax_error": fix_debris,
    "react_missing_key": fix_missing_key,
    "import_unused": fix_unused_import,
    "security_eval": fix_string_timer,
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AutoFixEngine:
    """Apply allow-listed fixes to generated files, validating each file."""

    def __init__(self, strategies: dict[str, FixStrategy] | None = None) -> None:
        self.strategies = dict(DEFAULT_STRATEGIES)
        if strategies:
            self.strategies.update(strategies)

    def apply_fixes(
        self,
        files: list[GeneratedFile],
        issues: list[QualityIssue],
    ) -> FixRunResult:
        result = FixRunResult()
        by_file: dict[str, list[QualityIssue]] = defaultdict(list)
        for issue in issues:
            by_file[issue.file].append(issue)
        known = {f.path for f in files}
        for path, file_issues in by_file.items():
            if path not in known:
                result.remaining.extend(file_issues)

        for f in files:
            file_issues = by_file.get(f.path, [])
            fixable = [i for i in file_issues if is_auto_fixable(i)]
            result.remaining.extend(i for i in file_issues if not is_auto_fixable(i))
            if not fixable:
                result.files.append(f)
                continue

            content, applied, unapplied = self.fix_content(f.content, fixable)
            if not applied:
                result.files.append(f)
                result.remaining.extend(fixable)
                continue

            reasons = validate_fix(f.content, content)
            if reasons:
                error = FixValidationError(f.path, reasons)
                logger.warning("%s", error)
                result.validation_errors.append(str(error))
                result.files.append(f)
                result.remaining.extend(fixable)
                continue

            result.files.append(GeneratedFile(path=f.path, content=content))
            result.modified_paths.append(f.path)
            result.applied.extend(applied)
            result.remaining.extend(unapplied)

        if result.applied:
            logger.info(
                "Auto-fixed %d issue(s) across %d file(s)",
                len(result.applied),
                len(result.modified_paths),
            )
        return result

    def fix_content(
        self,
        content: str,
        issues: list[QualityIssue],
    ) -> tuple[str, list[AppliedFix], list[QualityIssue]]:
        """Apply fixes to one file's text.  Returns ``(content, applied, unapplied)``."""
        lines = content.split("\n")
        applied: list[AppliedFix] = []
        unapplied: list[QualityIssue] = []

        line_fixes = [i for i in issues if i.category != "import_missing"]
        import_fixes = [i for i in issues if i.category == "import_missing"]

        for issue in sorted(line_fixes, key=lambda i: i.line or 0, reverse=True):
            strategy = self.strategies.get(issue.category)
            description = strategy(lines, issue) if strategy else None
            if description is None:
                unapplied.append(issue)
                continue
            applied.append(AppliedFix(
                issue_id=issue.id,
                file=issue.file,
                line=issue.line,
                description=description,
                category=issue.category,
            ))

        for issue in import_fixes:
            missing = _MISSING_SYMBOL_RE.search(issue.message)
            if missing is None:
                unapplied.append(issue)
                continue
            description = add_missing_import(lines, missing.group("symbol"), missing.group("source"))
            applied.append(AppliedFix(
                issue_id=issue.id,
                file=issue.file,
                line=issue.line,
                description=description,
                category=issue.category,
            ))

        return "\n".join(lines), applied, unapplied


__all__ = [
    "AUTO_FIXABLE_CATEGORIES",
    "AutoFixEngine",
    "FixRunResult",
    "FixStrategy",
    "is_auto_fixable",
    "validate_fix",
]
