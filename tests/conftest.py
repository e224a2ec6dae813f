"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``set_test_config`` — autouse fixture pinning pipeline settings
- ``make_blob`` — build a generation blob from ``{path: content}``
- ``todo_concept`` — small concept that plans into four phases
- ``simple_plan`` — hand-built setup / auth / polish plan
- ``clean_generate`` — AsyncMock generation callable returning clean files
- ``test_client`` — TestClient against the app
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from phase_forge.blob import build_code_blob
from phase_forge.contracts import (
    AppConcept,
    Feature,
    GeneratedFile,
    Phase,
    PhasePlan,
)


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "phase_forge.config.settings.REVIEW_STRICTNESS": "standard",
    "phase_forge.config.settings.ENFORCE_QUALITY_GATE": True,
    "phase_forge.config.settings.MAX_RESTORE_POINTS": 10,
    "phase_forge.config.settings.RESTORE_POINTS_PATH": "",
    "phase_forge.config.settings.REVIEW_MAX_ISSUES_PER_FILE": 50,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Pin settings so a developer's ``.env`` cannot change test outcomes."""
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_blob(files: dict[str, str], *, name: str = "Todo App") -> str:
    """Generation blob for ``{path: content}``."""
    return build_code_blob(
        [GeneratedFile(path=p, content=c) for p, c in files.items()],
        name=name,
        description="test app",
    )


def clean_component(number: int) -> str:
    return (
        f"export function Phase{number}() {{\n"
        f"  return <div>Phase {number}</div>;\n"
        f"}}\n"
    )


@pytest.fixture
def todo_concept() -> AppConcept:
    return AppConcept(
        name="Todo App",
        description="A small task tracker",
        core_features=[
            Feature(id="f1", name="Todo list", description="Create, edit and complete todos", priority="high"),
            Feature(id="f2", name="Email login", description="Sign in with email and password", priority="high"),
            Feature(id="f3", name="Export to CSV", description="Download tasks as a CSV file", priority="low"),
        ],
    )


@pytest.fixture
def simple_plan() -> PhasePlan:
    """Setup -> auth -> polish with derived tasks and checks."""
    return PhasePlan(
        id="plan-test",
        app_name="Todo App",
        app_description="A small task tracker",
        phases=[
            Phase(
                number=1, name="Project Setup", domain="setup",
                features=["Folder structure", "Routing"],
                test_criteria=["Base layout renders correctly", "No console errors"],
                estimated_time="3-4 min",
            ),
            Phase(
                number=2, name="Authentication System", domain="auth",
                features=["Email login"], dependencies=[1],
                test_criteria=["Login flow works correctly"],
                estimated_time="3-5 min",
            ),
            Phase(
                number=3, name="Polish & Documentation", domain="polish",
                features=["Loading states"], dependencies=[1, 2],
                test_criteria=["Documentation is complete"],
                estimated_time="2-3 min",
            ),
        ],
        concept=AppConcept(name="Todo App", description="A small task tracker"),
    )


@pytest.fixture
def clean_generate() -> AsyncMock:
    """Generation callable returning one clean component per phase."""

    async def _generate(phase, context):
        return make_blob({f"src/phase{phase.number}.tsx": clean_component(phase.number)})

    return AsyncMock(side_effect=_generate)


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)
