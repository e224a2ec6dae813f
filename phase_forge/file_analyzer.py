"""File analyzer — typed metadata for generated files.

All extractors are **pure** (string in → model out).  No filesystem
access.

Extractors
----------
- ``classify_file_type``     — path / content signature → type tag
- ``extract_exports``        — named, default-with-name, and ``export { }`` lists
- ``extract_imports``        — external package names
- ``extract_imports_rich``   — ``ImportInfo`` records (named + default)
- ``generate_file_summary``  — doc-comment first line or a type-based line
- ``extract_api_contracts``  — one ``APIContract`` per exported HTTP method
- ``detect_patterns``        — idiom names from the :data:`PATTERN_RULES` table

:class:`FileAnalyzer` bundles them into a single ``analyze(files)`` pass.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Callable

from phase_forge.contracts import (
    AccumulatedFile,
    APIContract,
    FileType,
    GeneratedFile,
    ImportInfo,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_EXPORTS = 20
MAX_EXTERNAL_IMPORTS = 15
HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")

_NAMED_EXPORT_RE = re.compile(
    r"export\s+(?:async\s+)?(?:const|let|function|class|interface|type|enum)\s+(\w+)"
)
_DEFAULT_EXPORT_RE = re.compile(
    r"export\s+default\s+(?:(?:async\s+)?(?:function|class)\s+(\w+)|(\w+)\s*;?\s*$)",
    re.MULTILINE,
)
_BRACED_EXPORT_RE = re.compile(r"export\s*\{\s*([^}]+)\s*\}")
_AS_RE = re.compile(r"\s+as\s+")

_IMPORT_SOURCE_RE = re.compile(r"""import\s+(?:.*?\s+from\s+)?['"]([^'"]+)['"]""")
_NAMED_IMPORT_RE = re.compile(r"""import\s+(?:type\s+)?\{([^}]+)\}\s+from\s+['"]([^'"]+)['"]""")
_DEFAULT_IMPORT_RE = re.compile(r"""import\s+(\w+)\s*(?:,\s*\{[^}]*\})?\s+from\s+['"]([^'"]+)['"]""")

_DOC_COMMENT_RE = re.compile(r"^\s*/\*\*([\s\S]*?)\*/")
_API_ENDPOINT_RE = re.compile(r"/api/(.+?)(?:/route)?\.(?:ts|js)x?$")
_AUTH_MARKERS = ("getServerSession", "auth()", "requireAuth", "Authorization")

# Lines that may appear in a declaration-only (types) module.
_DECLARATION_LINE_RE = re.compile(
    r"^\s*(?:export\s+)?(?:declare\s+)?(?:interface|type|enum)\b"
    r"|^\s*(?:import|export)\s+(?:type\s+)?\{"
    r"|^\s*[\w?$]+\s*\??:\s*[^=]+;?\s*$"
    r"|^\s*[}\])]?[;,]?\s*$"
    r"|^\s*(?://|/\*|\*)"
    r"|^\s*\|"
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _is_declaration_only(content: str) -> bool:
    lines = [ln for ln in content.splitlines() if ln.strip()]
    if not lines:
        return False
    has_declaration = any(re.search(r"\b(?:interface|type|enum)\s+\w+", ln) for ln in lines)
    return has_declaration and all(_DECLARATION_LINE_RE.search(ln) for ln in lines)


def classify_file_type(path: str, content: str) -> FileType:
    """Classify a file from its path first, then its content signature."""
    p = path.lower()
    if "/api/" in p or p.startswith("api/") or p.endswith(("route.ts", "route.js")):
        return "api"
    if "/types/" in p or p.startswith("types/") or p.endswith(".d.ts"):
        return "type"
    if any(seg in p for seg in ("/utils/", "/lib/", "/helpers/")):
        return "util"
    if "/components/" in p or p.startswith("components/") or (
        "export default function" in content and "return (" in content
    ):
        return "component"
    if p.endswith((".css", ".scss")) or "/styles/" in p:
        return "style"
    if ".config." in p or "/config/" in p:
        return "config"
    if p.endswith((".ts", ".tsx")) and _is_declaration_only(content):
        return "type"
    return "other"


# ---------------------------------------------------------------------------
# Exports & imports
# ---------------------------------------------------------------------------


def _split_symbol_list(raw: str) -> list[str]:
    names: list[str] = []
    for part in raw.split(","):
        name = _AS_RE.split(part.strip())[0].strip()
        if name.startswith("type "):
            name = name[5:].strip()
        if name:
            names.append(name)
    return names


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def extract_exports(content: str) -> list[str]:
    """Exported symbol names, de-duplicated, capped at :data:`MAX_EXPORTS`.

    Default exports with a name are reported as ``default:<Name>``;
    ``export { a as b }`` reports the local name ``a``.
    """
    exports = _NAMED_EXPORT_RE.findall(content)
    default = _DEFAULT_EXPORT_RE.search(content)
    if default:
        exports.append(f"default:{default.group(1) or default.group(2)}")
    for match in _BRACED_EXPORT_RE.finditer(content):
        exports.extend(_split_symbol_list(match.group(1)))
    return _dedupe(exports)[:MAX_EXPORTS]


def extract_imports(content: str) -> list[str]:
    """External package names (relative and ``@/`` alias imports skipped)."""
    packages: list[str] = []
    for source in _IMPORT_SOURCE_RE.findall(content):
        if source.startswith((".", "@/")):
            continue
        if source.startswith("@") and "/" in source:
            packages.append("/".join(source.split("/")[:2]))
        else:
            packages.append(source.split("/")[0])
    return _dedupe(packages)[:MAX_EXTERNAL_IMPORTS]


def extract_imports_rich(content: str) -> list[ImportInfo]:
    """Named and default imports with their source and relative flag."""
    imports: list[ImportInfo] = []
    seen: set[str] = set()
    for match in _NAMED_IMPORT_RE.finditer(content):
        source = match.group(2)
        imports.append(ImportInfo(
            symbols=_split_symbol_list(match.group(1)),
            source=source,
            is_relative=source.startswith("."),
        ))
        seen.add(source)
    for match in _DEFAULT_IMPORT_RE.finditer(content):
        source = match.group(2)
        if source in seen:
            continue
        imports.append(ImportInfo(
            symbols=[f"default:{match.group(1)}"],
            source=source,
            is_relative=source.startswith("."),
        ))
        seen.add(source)
    return imports


# ---------------------------------------------------------------------------
# Summary & API contracts
# ---------------------------------------------------------------------------


def _strip_ext(name: str) -> str:
    return re.sub(r"\.(tsx?|jsx?|json)$", "", name)


def generate_file_summary(path: str, content: str) -> str:
    doc = _DOC_COMMENT_RE.match(content)
    if doc:
        text = re.sub(r"^\s*\*\s?", "", doc.group(1), flags=re.MULTILINE).strip()
        first = text.split("\n")[0].strip() if text else ""
        if 10 < len(first) < 150:
            return first

    file_type = classify_file_type(path, content)
    exports = extract_exports(content)
    file_name = path.rsplit("/", 1)[-1]
    head = ", ".join(exports[:3]) + ("..." if len(exports) > 3 else "")

    if file_type == "api":
        methods = [e for e in exports if e in HTTP_METHODS]
        return f"API route handling {', '.join(methods) or 'requests'}"
    if file_type == "component":
        return f"React component: {exports[0] if exports else _strip_ext(file_name)}"
    if file_type == "type":
        return f"Type definitions: {head}"
    if file_type == "util":
        return f"Utility functions: {head}"
    if file_type == "config":
        return f"Configuration for {_strip_ext(file_name)}"
    return f"{file_name} - {len(exports)} exports"


def extract_api_contracts(
    path: str,
    content: str,
    *,
    phase_number: int | None = None,
) -> list[APIContract]:
    """One contract per HTTP method exported by a route file."""
    match = _API_ENDPOINT_RE.search(path)
    endpoint = f"/api/{match.group(1)}" if match else path
    requires_auth = any(marker in content for marker in _AUTH_MARKERS)
    response = re.search(r"\.json\s*\(\s*\{[^}]*\}\s*as\s+(\w+)", content)

    contracts: list[APIContract] = []
    for method in HTTP_METHODS:
        if (
            f"export async function {method}" not in content
            and f"export function {method}" not in content
        ):
            continue
        request = re.search(rf"{method}[^{{]*\{{[^}}]*body[^:]*:\s*(\w+)", content)
        contracts.append(APIContract(
            endpoint=endpoint,
            method=method,
            request_schema=request.group(1) if request else None,
            response_schema=response.group(1) if response else None,
            requires_auth=requires_auth,
            file_path=path,
            phase_number=phase_number,
        ))
    return contracts


# ---------------------------------------------------------------------------
# Idiom detection -- pluggable rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternRule:
    """Named idiom with a predicate over file content."""

    name: str
    category: str
    predicate: Callable[[str], bool]


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda content: all(n in content for n in needles)


PATTERN_RULES: tuple[PatternRule, ...] = (
    # state management
    PatternRule("react-useState", "state", _contains("useState")),
    PatternRule("react-useReducer", "state", _contains("useReducer")),
    PatternRule("react-context", "state", _contains("createContext")),
    PatternRule("zustand-store", "state", _contains("zustand")),
    PatternRule("redux", "state", _contains("redux")),
    # data fetching
    PatternRule("swr", "data-fetching", _contains("useSWR")),
    PatternRule("react-query", "data-fetching", _contains("useQuery")),
    PatternRule("next-ssr", "data-fetching", _contains("getServerSideProps")),
    PatternRule("next-ssg", "data-fetching", _contains("getStaticProps")),
    # styling
    PatternRule("tailwind-dynamic", "styling", _contains("className=", "`")),
    PatternRule("styled-components", "styling", _contains("styled.")),
    PatternRule("emotion", "styling", _contains("css`")),
    # forms
    PatternRule("react-hook-form", "forms", _contains("useForm")),
    PatternRule("formik", "forms", _contains("Formik")),
    PatternRule("zod-validation", "forms", _contains("zod")),
    # auth
    PatternRule("next-auth", "auth", _contains("getServerSession")),
    PatternRule("supabase-auth", "auth", _contains("supabase.auth")),
    # error handling
    PatternRule("try-catch", "error-handling", _contains("try {", "catch")),
    PatternRule("error-boundary", "error-handling", _contains("ErrorBoundary")),
)


def detect_patterns(
    content: str,
    rules: tuple[PatternRule, ...] = PATTERN_RULES,
) -> list[str]:
    return [rule.name for rule in rules if rule.predicate(content)]


# ---------------------------------------------------------------------------
# Content hash
# ---------------------------------------------------------------------------


def content_hash(content: str) -> str:
    """Short stable digest used for overwrite / change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


@dataclass
class FileAnalysis:
    """Result of one :meth:`FileAnalyzer.analyze` pass."""

    files: list[AccumulatedFile] = field(default_factory=list)
    api_contracts: list[APIContract] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    external_packages: list[str] = field(default_factory=list)


class FileAnalyzer:
    """Analyse generated files into accumulated-state records.

    *rules* replaces the idiom table; use :meth:`with_rule` to extend
    the default one.
    """

    def __init__(self, rules: tuple[PatternRule, ...] | None = None) -> None:
        self.rules = PATTERN_RULES if rules is None else rules

    def with_rule(self, rule: PatternRule) -> "FileAnalyzer":
        return FileAnalyzer(self.rules + (rule,))

    def analyze_file(
        self,
        file: GeneratedFile,
        *,
        phase_number: int | None = None,
    ) -> AccumulatedFile:
        return AccumulatedFile(
            path=file.path,
            type=classify_file_type(file.path, file.content),
            exports=extract_exports(file.content),
            imports=extract_imports_rich(file.content),
            summary=generate_file_summary(file.path, file.content),
            content_hash=content_hash(file.content),
            phase_number=phase_number,
        )

    def analyze(
        self,
        files: list[GeneratedFile],
        *,
        phase_number: int | None = None,
    ) -> FileAnalysis:
        result = FileAnalysis()
        patterns: list[str] = []
        packages: list[str] = []
        for f in files:
            record = self.analyze_file(f, phase_number=phase_number)
            result.files.append(record)
            if record.type == "api":
                result.api_contracts.extend(
                    extract_api_contracts(f.path, f.content, phase_number=phase_number)
                )
            patterns.extend(detect_patterns(f.content, self.rules))
            packages.extend(extract_imports(f.content))
        result.patterns = _dedupe(patterns)
        result.external_packages = _dedupe(packages)
        return result


__all__ = [
    "FileAnalysis",
    "FileAnalyzer",
    "HTTP_METHODS",
    "PATTERN_RULES",
    "PatternRule",
    "classify_file_type",
    "content_hash",
    "detect_patterns",
    "extract_api_contracts",
    "extract_exports",
    "extract_imports",
    "extract_imports_rich",
    "generate_file_summary",
]
