"""Analysis router -- file analysis and light review of generated code."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from phase_forge.blob import parse_files
from phase_forge.build_state import AccumulatedBuildState
from phase_forge.contracts import GeneratedFile
from phase_forge.review import HeuristicReviewer, ReviewContext, ReviewOptions

router = APIRouter(tags=["analysis"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class FilesRequest(BaseModel):
    """Files given either as a list or as one delimited generation blob."""

    files: list[GeneratedFile] = Field(default_factory=list)
    blob: str = Field("", description="===FILE:path=== delimited blob")
    phase_number: int | None = Field(None, ge=1)

    def resolved_files(self) -> list[GeneratedFile]:
        return list(self.files) + (parse_files(self.blob) if self.blob else [])


class ReviewRequest(FilesRequest):
    strictness: str = Field("standard", pattern="^(relaxed|standard|strict)$")
    apply_fixes: bool = True


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/analysis/files")
async def analyze_files(body: FilesRequest) -> dict:
    """Fold the files into a fresh ledger and return what was learned."""
    state = AccumulatedBuildState()
    fold = state.fold(body.resolved_files(), phase_number=body.phase_number)
    return {
        "files": [f.model_dump() for f in state.files],
        "api_contracts": [c.model_dump() for c in state.api_contracts],
        "patterns": list(state.patterns),
        "external_packages": list(fold.analysis.external_packages),
        "unresolved_imports": state.validate_imports(),
    }


@router.post("/review/files")
async def review_files(body: ReviewRequest) -> dict:
    """Light review of the files, with allow-listed auto-fixes applied."""
    reviewer = HeuristicReviewer()
    outcome = await reviewer(
        body.resolved_files(),
        ReviewContext(key=body.phase_number or "adhoc"),
        ReviewOptions(strictness=body.strictness, apply_fixes=body.apply_fixes),
    )
    return {
        "report": outcome.report.model_dump(mode="json"),
        "modified_files": [f.model_dump() for f in outcome.modified_files],
    }
