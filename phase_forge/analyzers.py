"""Default heuristic checks used by the built-in reviewer.

Line-oriented regex checks over TypeScript / JavaScript sources.  Each
check is a plain function ``(path, content) -> list[QualityIssue]``;
:data:`DEFAULT_CHECKS` is the table the reviewer runs.  Messages are
part of the contract with :mod:`phase_forge.auto_fix`, which parses the
offending symbol back out of them.
"""

from __future__ import annotations

import re
from typing import Callable

from phase_forge.contracts import QualityIssue

Check = Callable[[str, str], list[QualityIssue]]

SCRIPT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

REACT_HOOKS = (
    "useState",
    "useEffect",
    "useCallback",
    "useMemo",
    "useRef",
    "useContext",
    "useReducer",
    "useLayoutEffect",
)

_CONSOLE_LOG_RE = re.compile(r"\bconsole\.log\s*\(")
_DEBUGGER_RE = re.compile(r"^\s*debugger\s*;?\s*$")
_IMPORT_LINE_RE = re.compile(
    r"""^\s*import\s+(?!type\b)(?P<clause>[^'"]+?)\s+from\s+['"](?P<source>[^'"]+)['"]\s*;?\s*$"""
)
_MAP_CALL_RE = re.compile(r"\.map\(\s*(?:\(\s*(?P<p1>\w+)(?:\s*,\s*(?P<p2>\w+))?[^)]*\)|(?P<p0>\w+))\s*=>")
_JSX_OPEN_RE = re.compile(r"<(?P<tag>[A-Za-z][\w.]*)(?P<attrs>[^<>]*?)/?>")
_TIMER_STRING_RE = re.compile(r"\b(?P<fn>setTimeout|setInterval)\s*\(\s*(?P<q>['\"])(?P<code>.*?)(?P=q)\s*,")
_EVAL_RE = re.compile(r"(?<![.\w])eval\s*\(")
_NEW_FUNCTION_RE = re.compile(r"\bnew\s+Function\s*\(")
_EMPTY_CATCH_RE = re.compile(r"catch\s*(?:\([^)]*\))?\s*\{\s*\}")
_IMG_RE = re.compile(r"<img\b(?P<attrs>[^>]*)>")

KEY_LOOKAHEAD_LINES = 3


def is_script(path: str) -> bool:
    return path.endswith(SCRIPT_EXTENSIONS)


def _issue(
    path: str,
    line: int | None,
    category: str,
    severity: str,
    message: str,
    *,
    fixable: bool = False,
    suggestion: str | None = None,
) -> QualityIssue:
    return QualityIssue(
        id=f"{path}:{line or 0}:{category}:{re.sub(r'[^a-z0-9]+', '-', message.lower()).strip('-')[:32]}",
        category=category,
        severity=severity,
        file=path,
        line=line,
        message=message,
        auto_fixable=fixable,
        suggestion=suggestion,
    )


# ---------------------------------------------------------------------------
# Import parsing (shared with auto_fix)
# ---------------------------------------------------------------------------


def parse_import_clause(clause: str) -> tuple[str | None, list[str]]:
    """Split ``React, { a, b as c }`` into ``("React", ["a", "c"])``.

    Aliased names report the local binding since that is what the
    module body references.  Namespace imports are ignored.
    """
    default: str | None = None
    named: list[str] = []
    brace = re.search(r"\{([^}]*)\}", clause)
    head = clause[: brace.start()] if brace else clause
    head = head.strip().rstrip(",").strip()
    if head and not head.startswith("*"):
        default = head
    if brace:
        for part in brace.group(1).split(","):
            part = part.strip()
            if not part:
                continue
            pieces = re.split(r"\s+as\s+", part)
            name = pieces[-1].strip()
            if name.startswith("type "):
                continue
            named.append(name)
    return default, named


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_debris(path: str, content: str) -> list[QualityIssue]:
    """console.log calls and debugger statements left in code."""
    issues: list[QualityIssue] = []
    for n, line in enumerate(content.splitlines(), start=1):
        if line.lstrip().startswith("//"):
            continue
        if _CONSOLE_LOG_RE.search(line):
            issues.append(_issue(
                path, n, "syntax_error", "low",
                "console.log statement left in code", fixable=True,
            ))
        elif _DEBUGGER_RE.match(line):
            issues.append(_issue(
                path, n, "syntax_error", "medium",
                "debugger statement left in code", fixable=True,
            ))
    return issues


def check_imports(path: str, content: str) -> list[QualityIssue]:
    """Unused imports and React hooks used without an import."""
    issues: list[QualityIssue] = []
    lines = content.splitlines()
    import_lines: set[int] = set()
    imported: set[str] = set()

    for n, line in enumerate(lines, start=1):
        match = _IMPORT_LINE_RE.match(line)
        if not match:
            continue
        import_lines.add(n)
        default, named = parse_import_clause(match.group("clause"))
        for symbol in ([default] if default else []) + named:
            imported.add(symbol)

    body = "\n".join(l for i, l in enumerate(lines, start=1) if i not in import_lines)
    for n in sorted(import_lines):
        match = _IMPORT_LINE_RE.match(lines[n - 1])
        default, named = parse_import_clause(match.group("clause"))
        for symbol in ([default] if default else []) + named:
            # JSX transform keeps React in scope implicitly.
            if symbol == "React":
                continue
            if not re.search(rf"(?<![\w$]){re.escape(symbol)}(?![\w$])", body):
                issues.append(_issue(
                    path, n, "import_unused", "low",
                    f"Unused import: '{symbol}'", fixable=True,
                ))

    for hook in REACT_HOOKS:
        if hook in imported:
            continue
        usage = re.compile(rf"(?<![.\w$]){hook}\s*\(")
        defined = re.search(rf"(?:function|const|let)\s+{hook}\b", content)
        if defined:
            continue
        for n, line in enumerate(lines, start=1):
            if n not in import_lines and usage.search(line):
                issues.append(_issue(
                    path, n, "import_missing", "high",
                    f"'{hook}' is used but not imported from 'react'", fixable=True,
                ))
                break
    return issues


def map_body_offset(line: str) -> int:
    """Column where the arrow body of a ``.map()`` callback starts, else 0.

    Shared with the key fixer so both look for the element at the same
    place; a typed parameter such as ``(item: Box<Foo>)`` is skipped.
    """
    call = _MAP_CALL_RE.search(line)
    return call.end() if call else 0


def find_unkeyed_map_elements(lines: list[str]) -> list[tuple[int, str, str]]:
    """``(line_no, tag, key_expression)`` for JSX elements rendered by ``.map()`` without a key."""
    found: list[tuple[int, str, str]] = []
    for i, line in enumerate(lines):
        call = _MAP_CALL_RE.search(line)
        if not call:
            continue
        item = call.group("p1") or call.group("p0")
        index = call.group("p2")
        key_expr = f"{item}.id ?? {index}" if item and index else (f"{item}.id" if item else "index")
        for j in range(i, min(len(lines), i + 1 + KEY_LOOKAHEAD_LINES)):
            text = lines[j][map_body_offset(lines[j]):] if j == i else lines[j]
            element = _JSX_OPEN_RE.search(text)
            if not element:
                continue
            if "key=" not in element.group("attrs"):
                found.append((j + 1, element.group("tag"), key_expr))
            break
    return found


def check_react_keys(path: str, content: str) -> list[QualityIssue]:
    if not path.endswith((".tsx", ".jsx")):
        return []
    return [
        _issue(
            path, n, "react_missing_key", "high",
            'Missing "key" prop for element in .map() iteration',
            fixable=True, suggestion=f"key={{{expr}}}",
        )
        for n, _tag, expr in find_unkeyed_map_elements(content.splitlines())
    ]


def check_security(path: str, content: str) -> list[QualityIssue]:
    issues: list[QualityIssue] = []
    for n, line in enumerate(content.splitlines(), start=1):
        timer = _TIMER_STRING_RE.search(line)
        if timer:
            issues.append(_issue(
                path, n, "security_eval", "high",
                f"String argument passed to {timer.group('fn')}() is evaluated as code",
                fixable=True,
            ))
        if _EVAL_RE.search(line):
            issues.append(_issue(path, n, "security_eval", "critical", "Use of eval()"))
        if _NEW_FUNCTION_RE.search(line):
            issues.append(_issue(
                path, n, "security_eval", "critical", "Use of new Function() constructor",
            ))
        if "dangerouslySetInnerHTML" in line:
            issues.append(_issue(
                path, n, "security_xss", "high",
                "dangerouslySetInnerHTML renders unsanitised HTML",
            ))
        elif re.search(r"\.innerHTML\s*=", line):
            issues.append(_issue(path, n, "security_xss", "medium", "Direct innerHTML assignment"))
    return issues


def check_logic(path: str, content: str) -> list[QualityIssue]:
    issues: list[QualityIssue] = []
    for n, line in enumerate(content.splitlines(), start=1):
        if _EMPTY_CATCH_RE.search(line):
            issues.append(_issue(path, n, "logic_warning", "low", "Empty catch block swallows errors"))
    return issues


def check_accessibility(path: str, content: str) -> list[QualityIssue]:
    if not path.endswith((".tsx", ".jsx")):
        return []
    issues: list[QualityIssue] = []
    for n, line in enumerate(content.splitlines(), start=1):
        for img in _IMG_RE.finditer(line):
            if "alt=" not in img.group("attrs"):
                issues.append(_issue(path, n, "accessibility", "low", "<img> element without alt text"))
    return issues


DEFAULT_CHECKS: tuple[Check, ...] = (
    check_debris,
    check_imports,
    check_react_keys,
    check_security,
    check_logic,
    check_accessibility,
)


def run_checks(
    path: str,
    content: str,
    checks: tuple[Check, ...] = DEFAULT_CHECKS,
) -> list[QualityIssue]:
    """All issues for one file; non-script files are not analysed."""
    if not is_script(path):
        return []
    issues: list[QualityIssue] = []
    for check in checks:
        issues.extend(check(path, content))
    return issues
