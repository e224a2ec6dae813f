"""Plans router -- turn an application concept into a phase plan."""

import logging

from fastapi import APIRouter

from phase_forge.contracts import AppConcept
from phase_forge.errors import PlanningError
from phase_forge.planner import PhasePlanner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["plans"])


@router.post("")
async def create_plan(body: AppConcept) -> dict:
    """Plan *body* into ordered phases.

    The planner itself degrades malformed input to a minimal plan; the
    HTTP surface is stricter and rejects a concept with no name or no
    features outright.
    """
    if not body.name.strip():
        raise PlanningError("concept name is required", field="name")
    if not body.core_features:
        raise PlanningError("at least one feature is required", field="core_features")

    result = PhasePlanner().generate_plan(body)
    if result.plan is not None:
        logger.info(
            "Planned %r into %d phase(s)", body.name, result.plan.total_phases,
        )
    return result.model_dump(mode="json")
