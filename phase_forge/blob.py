"""Delimited multi-file blob codec.

Generation returns every phase's output as one text blob::

    ===NAME===
    <app name>
    ===DESCRIPTION===
    <description>
    ===APP_TYPE===
    FRONTEND_ONLY | FULL_STACK
    ===FILE:src/App.tsx===
    <content>
    ===DEPENDENCIES===
    {"react": "^18.2.0"}
    ===END===

:func:`parse_code_blob` is a line scanner: each ``===...===`` marker
line opens a section, everything until the next marker belongs to it,
and ``===END===`` stops the scan.  Section bodies are stripped of
surrounding blank space.  A path repeated inside one blob keeps its
first position with the last content.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from phase_forge.contracts import GeneratedFile

logger = logging.getLogger(__name__)

FILE_MARKER = re.compile(r"^===\s*FILE:\s*(?P<path>[^=]+?)\s*===\s*$")
SECTION_MARKER = re.compile(r"^===(?P<tag>NAME|DESCRIPTION|APP_TYPE|DEPENDENCIES|END)===\s*$")

APP_TYPES = ("FRONTEND_ONLY", "FULL_STACK")


@dataclass
class ParsedBlob:
    """Structured view of a generation blob."""

    name: str = ""
    description: str = ""
    app_type: str = ""
    files: list[GeneratedFile] = field(default_factory=list)
    dependencies: dict[str, str] = field(default_factory=dict)
    terminated: bool = False

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


def _close_section(
    parsed: ParsedBlob,
    files: dict[str, str],
    section: str | None,
    path: str | None,
    lines: list[str],
) -> None:
    body = "\n".join(lines).strip()
    if section == "FILE" and path:
        files[path] = body
    elif section == "NAME":
        parsed.name = body
    elif section == "DESCRIPTION":
        parsed.description = body
    elif section == "APP_TYPE":
        parsed.app_type = body
    elif section == "DEPENDENCIES" and body:
        try:
            deps = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("Unparseable DEPENDENCIES section (%d chars)", len(body))
            return
        if isinstance(deps, dict):
            parsed.dependencies = {str(k): str(v) for k, v in deps.items()}


def parse_code_blob(blob: str) -> ParsedBlob:
    """Scan *blob* into headers, files and dependencies."""
    parsed = ParsedBlob()
    files: dict[str, str] = {}
    section: str | None = None
    path: str | None = None
    lines: list[str] = []

    for line in (blob or "").splitlines():
        file_match = FILE_MARKER.match(line)
        section_match = None if file_match else SECTION_MARKER.match(line)
        if not file_match and not section_match:
            if section is not None:
                lines.append(line)
            continue

        _close_section(parsed, files, section, path, lines)
        lines = []
        if file_match:
            section, path = "FILE", file_match.group("path").strip()
            continue
        section, path = section_match.group("tag"), None
        if section == "END":
            parsed.terminated = True
            section = None
            break

    _close_section(parsed, files, section, path, lines)
    parsed.files = [GeneratedFile(path=p, content=c) for p, c in files.items()]
    return parsed


def parse_files(blob: str) -> list[GeneratedFile]:
    """Shortcut: just the ``{path, content}`` list of a blob."""
    return parse_code_blob(blob).files


def extract_file_paths(blob: str) -> list[str]:
    return parse_code_blob(blob).paths


def build_code_blob(
    files: list[GeneratedFile],
    *,
    name: str = "",
    description: str = "",
    app_type: str = "FRONTEND_ONLY",
    dependencies: dict[str, str] | None = None,
) -> str:
    """Serialise files back into the delimited blob format."""
    if app_type not in APP_TYPES:
        raise ValueError(f"app_type must be one of {APP_TYPES}, got {app_type!r}")
    parts = [
        "===NAME===", name,
        "===DESCRIPTION===", description,
        "===APP_TYPE===", app_type,
    ]
    for f in files:
        parts.append(f"===FILE:{f.path}===")
        parts.append(f.content)
    if dependencies:
        parts.append("===DEPENDENCIES===")
        parts.append(json.dumps(dependencies, sort_keys=True))
    parts.append("===END===")
    return "\n".join(parts)


__all__ = [
    "APP_TYPES",
    "ParsedBlob",
    "build_code_blob",
    "extract_file_paths",
    "parse_code_blob",
    "parse_files",
]
