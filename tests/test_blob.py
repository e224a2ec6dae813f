"""Tests for phase_forge.blob — the delimited multi-file codec."""

from __future__ import annotations

import pytest

from phase_forge.blob import (
    build_code_blob,
    extract_file_paths,
    parse_code_blob,
    parse_files,
)
from phase_forge.build_state import AccumulatedBuildState
from phase_forge.contracts import GeneratedFile


TWO_FILE_BLOB = (
    "===FILE:a.ts===\nexport const x=1;\n"
    "===FILE:b.ts===\nexport const y=2;\n"
    "===END==="
)


class TestParseCodeBlob:
    def test_two_files_fold_into_two_records(self):
        state = AccumulatedBuildState()
        state.fold(parse_files(TWO_FILE_BLOB), phase_number=1)
        assert state.paths == ["a.ts", "b.ts"]
        assert state.get_file("a.ts").exports == ["x"]
        assert state.get_file("b.ts").exports == ["y"]

    def test_headers_and_dependencies(self):
        blob = "\n".join([
            "===NAME===",
            "Todo App",
            "===DESCRIPTION===",
            "  A small task tracker  ",
            "===APP_TYPE===",
            "FULL_STACK",
            "===FILE:src/App.tsx===",
            "export default function App() {}",
            "===DEPENDENCIES===",
            '{"react": "^18.2.0"}',
            "===END===",
        ])
        parsed = parse_code_blob(blob)
        assert parsed.name == "Todo App"
        assert parsed.description == "A small task tracker"
        assert parsed.app_type == "FULL_STACK"
        assert parsed.dependencies == {"react": "^18.2.0"}
        assert parsed.paths == ["src/App.tsx"]
        assert parsed.terminated is True

    def test_end_marker_stops_scanning(self):
        blob = TWO_FILE_BLOB + "\n===FILE:c.ts===\nexport const z=3;\n"
        assert extract_file_paths(blob) == ["a.ts", "b.ts"]

    def test_missing_end_marker_keeps_last_file(self):
        parsed = parse_code_blob("===FILE:a.ts===\nexport const x=1;\n")
        assert parsed.terminated is False
        assert parsed.files == [GeneratedFile(path="a.ts", content="export const x=1;")]

    def test_repeated_path_keeps_last_content(self):
        blob = "===FILE:a.ts===\nold\n===FILE:b.ts===\nb\n===FILE:a.ts===\nnew\n===END==="
        parsed = parse_code_blob(blob)
        assert parsed.paths == ["a.ts", "b.ts"]
        assert parsed.files[0].content == "new"

    def test_bad_dependencies_are_ignored(self):
        parsed = parse_code_blob("===FILE:a.ts===\nx\n===DEPENDENCIES===\n{not json\n===END===")
        assert parsed.dependencies == {}
        assert parsed.paths == ["a.ts"]

    def test_empty_input(self):
        parsed = parse_code_blob("")
        assert parsed.files == []
        assert parse_code_blob(None).files == []


class TestBuildCodeBlob:
    def test_output_parses_back(self):
        files = [GeneratedFile(path="src/a.ts", content="export const a = 1;")]
        blob = build_code_blob(files, name="Todo App", dependencies={"zod": "^3.0.0"})
        parsed = parse_code_blob(blob)
        assert parsed.files == files
        assert parsed.name == "Todo App"
        assert parsed.app_type == "FRONTEND_ONLY"
        assert parsed.dependencies == {"zod": "^3.0.0"}

    def test_rejects_unknown_app_type(self):
        with pytest.raises(ValueError):
            build_code_blob([], app_type="MOBILE")
