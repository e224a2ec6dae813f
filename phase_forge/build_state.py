"""Accumulated build state — the running cross-phase ledger.

Every phase's generated files are analysed and folded in here keyed by
path (replace semantics: a later phase regenerating a path overwrites
the earlier record in place, never duplicates it).  The ledger is what
later phases receive as context so they stay consistent with earlier
output: file list, exports, API contracts, established idioms, and the
features implemented so far.

The ``accumulated_code`` blob is rebuilt from the current file set
whenever files change (fold, auto-fix, rollback).
"""

from __future__ import annotations

import copy
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any

from phase_forge.blob import build_code_blob
from phase_forge.contracts import (
    AccumulatedFile,
    APIContract,
    FileConflict,
    GeneratedFile,
)
from phase_forge.file_analyzer import FileAnalysis, FileAnalyzer, detect_patterns

logger = logging.getLogger(__name__)

_RESOLVE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")


def conflict_severity(path: str) -> str:
    """How risky it is for a later phase to overwrite *path*."""
    if any(marker in path for marker in ("App.tsx", "layout.tsx", "/types/", "/api/")):
        return "critical"
    if "/components/" in path or "/utils/" in path:
        return "warning"
    return "info"


@dataclass
class FoldResult:
    """What changed when a phase's files were folded in."""

    phase_number: int | None
    added: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
    conflicts: list[FileConflict] = field(default_factory=list)
    analysis: FileAnalysis = field(default_factory=FileAnalysis)

    @property
    def has_breaking_changes(self) -> bool:
        return any(c.severity == "critical" for c in self.conflicts)


class AccumulatedBuildState:
    """Path-keyed file ledger plus derived cross-phase knowledge."""

    def __init__(
        self,
        analyzer: FileAnalyzer | None = None,
        *,
        app_name: str = "",
        app_description: str = "",
        full_stack: bool = False,
    ) -> None:
        self.analyzer = analyzer or FileAnalyzer()
        self.app_name = app_name
        self.app_description = app_description
        self.full_stack = full_stack
        self._contents: dict[str, str] = {}
        self._files: dict[str, AccumulatedFile] = {}
        self._contracts: dict[tuple[str, str], APIContract] = {}
        self.patterns: list[str] = []
        self.features: list[str] = []
        self.conflicts: list[FileConflict] = []
        self.accumulated_code: str = ""

    # -- reads ---------------------------------------------------------------

    @property
    def files(self) -> list[AccumulatedFile]:
        return list(self._files.values())

    @property
    def paths(self) -> list[str]:
        return list(self._files)

    @property
    def api_contracts(self) -> list[APIContract]:
        return list(self._contracts.values())

    def get_file(self, path: str) -> AccumulatedFile | None:
        return self._files.get(path)

    def get_content(self, path: str) -> str | None:
        return self._contents.get(path)

    def generated_files(self, paths: list[str] | None = None) -> list[GeneratedFile]:
        """Current ``{path, content}`` pairs, optionally limited to *paths*."""
        wanted = self._contents if paths is None else [p for p in paths if p in self._contents]
        return [GeneratedFile(path=p, content=self._contents[p]) for p in wanted]

    def __len__(self) -> int:
        return len(self._files)

    # -- writes --------------------------------------------------------------

    def fold(
        self,
        files: list[GeneratedFile],
        *,
        phase_number: int | None = None,
    ) -> FoldResult:
        """Analyse *files* and merge them in with replace-at-path semantics.

        A phase regenerating its own files (a retry) is not a conflict.
        """
        result = self._merge(files, phase_number)
        if result.conflicts:
            self.conflicts.extend(result.conflicts)
            logger.warning(
                "Phase %s overwrote %d file(s): %s",
                phase_number,
                len(result.conflicts),
                ", ".join(c.path for c in result.conflicts),
            )
        self.rebuild_accumulated_code()
        return result

    def _merge(self, files: list[GeneratedFile], phase_number: int | None) -> FoldResult:
        result = FoldResult(phase_number=phase_number)
        result.analysis = self.analyzer.analyze(files, phase_number=phase_number)

        for gen, record in zip(files, result.analysis.files):
            previous = self._files.get(gen.path)
            if previous is None:
                result.added.append(gen.path)
            else:
                result.replaced.append(gen.path)
                own_retry = phase_number is not None and previous.phase_number == phase_number
                if previous.content_hash != record.content_hash and not own_retry:
                    result.conflicts.append(FileConflict(
                        path=gen.path,
                        previous_phase=previous.phase_number,
                        current_phase=phase_number,
                        severity=conflict_severity(gen.path),
                    ))
            self._contents[gen.path] = gen.content
            self._files[gen.path] = record

        # Contracts from regenerated route files replace the old ones.
        touched = {f.path for f in files}
        self._contracts = {
            k: c for k, c in self._contracts.items() if c.file_path not in touched
        }
        for contract in result.analysis.api_contracts:
            self._contracts[(contract.endpoint, contract.method)] = contract

        for name in result.analysis.patterns:
            if name not in self.patterns:
                self.patterns.append(name)
        return result

    def update_contents(self, files: list[GeneratedFile]) -> list[str]:
        """Apply modified content for known paths (e.g. after auto-fix).

        The last writer phase of each file is preserved, and contracts and
        established patterns are refreshed from the new content.  Returns
        the paths whose content actually changed.
        """
        changed = [f for f in files if self._contents.get(f.path) != f.content]
        for f in changed:
            record = self._files.get(f.path)
            self._merge([f], record.phase_number if record else None)
        if changed:
            still_present = {
                name
                for content in self._contents.values()
                for name in detect_patterns(content, self.analyzer.rules)
            }
            self.patterns = [p for p in self.patterns if p in still_present]
            self.rebuild_accumulated_code()
        return [f.path for f in changed]

    def replace_all(
        self,
        files: list[GeneratedFile],
        writers: dict[str, int | None] | None = None,
    ) -> None:
        """Reset the ledger to exactly *files* (rollback).

        *writers* maps a path to the phase that last wrote it, so restored
        records keep their phase attribution.
        """
        self._contents.clear()
        self._files.clear()
        self._contracts.clear()
        self.patterns = []
        self.conflicts = []
        writers = writers or {}
        for f in files:
            self._merge([f], writers.get(f.path))
        self.rebuild_accumulated_code()

    def file_phases(self) -> dict[str, int | None]:
        """Path to last writer phase, as stored with restore points."""
        return {path: record.phase_number for path, record in self._files.items()}

    def record_features(self, names: list[str]) -> None:
        for name in names:
            if name not in self.features:
                self.features.append(name)

    def clear(self) -> None:
        self.replace_all([])
        self.features = []

    # -- derived -------------------------------------------------------------

    def rebuild_accumulated_code(self) -> str:
        self.accumulated_code = build_code_blob(
            self.generated_files(),
            name=self.app_name,
            description=self.app_description,
            app_type="FULL_STACK" if self.full_stack else "FRONTEND_ONLY",
        ) if self._contents else ""
        return self.accumulated_code

    def resolve_import(self, from_file: str, source: str) -> str | None:
        """Resolve a relative import to a known path, or ``None``."""
        base = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), source))
        candidates = [base]
        candidates += [base + ext for ext in _RESOLVE_EXTENSIONS]
        candidates += [f"{base}/index{ext}" for ext in _RESOLVE_EXTENSIONS]
        for candidate in candidates:
            if candidate in self._files:
                return candidate
        return None

    def validate_imports(self) -> list[dict[str, str]]:
        """Relative imports that point at a missing file or symbol."""
        unresolved: list[dict[str, str]] = []
        for record in self._files.values():
            for imp in record.imports:
                if not imp.is_relative:
                    continue
                target = self.resolve_import(record.path, imp.source)
                if target is None:
                    unresolved.append({
                        "file": record.path,
                        "import_from": imp.source,
                        "reason": "FILE_NOT_FOUND",
                    })
                    continue
                exports = self._files[target].exports
                for symbol in imp.symbols:
                    if symbol.startswith("default:"):
                        ok = any(e.startswith("default:") for e in exports)
                    else:
                        ok = symbol in exports
                    if not ok:
                        unresolved.append({
                            "file": record.path,
                            "import_from": imp.source,
                            "symbol": symbol,
                            "reason": "SYMBOL_NOT_EXPORTED",
                        })
        return unresolved

    def generation_context(self) -> dict[str, Any]:
        """Compact context handed to the generator for the next phase."""
        return {
            "files": [
                {"path": f.path, "type": f.type, "exports": list(f.exports), "summary": f.summary}
                for f in self._files.values()
            ],
            "api_contracts": [c.model_dump() for c in self._contracts.values()],
            "established_patterns": list(self.patterns),
            "implemented_features": list(self.features),
            "accumulated_code": self.accumulated_code,
        }

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the ledger for restore-point metadata and tests."""
        return copy.deepcopy({
            "files": [f.model_dump() for f in self._files.values()],
            "api_contracts": [c.model_dump() for c in self._contracts.values()],
            "patterns": self.patterns,
            "features": self.features,
        })


__all__ = [
    "AccumulatedBuildState",
    "FoldResult",
    "conflict_severity",
]
