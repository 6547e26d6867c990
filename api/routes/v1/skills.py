"""
api/routes/v1/skills.py -- Skill catalog and progression endpoints.

Routes:
  GET  /api/v1/skills                        -- configured skills and curves (public)
  GET  /api/v1/skills/me                     -- caller's progress in every skill
  POST /api/v1/skills/users/{id}/award       -- award experience (manage_skills)
  PUT  /api/v1/skills/users/{id}/level       -- administrative level override (manage_skills)

The admin routes only need a valid session here; AuthGateway checks the
manage_skills rule and refuses self-edits, so the CLI and the API share one
policy.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AwardRequest, ProgressRow, SetLevelRequest, SkillDefinition
from auth.dependencies import get_gateway, get_session
from auth.models import SkillProgress, Validation
from core.catalog import Catalog

router = APIRouter()


def _row(request: Request, progress: SkillProgress) -> ProgressRow:
    catalog: Catalog = request.app.state.catalog
    return ProgressRow.from_progress(progress, catalog.skills[progress.skill])


@router.get("/skills", response_model=list[SkillDefinition])
def list_skills(request: Request) -> list[SkillDefinition]:
    catalog: Catalog = request.app.state.catalog
    return [
        SkillDefinition(
            name=skill.name,
            description=skill.description,
            thresholds=list(skill.thresholds),
            max_level=skill.max_level,
        )
        for skill in catalog.skills.values()
    ]


@router.get("/skills/me", response_model=list[ProgressRow])
def my_progress(request: Request, session: Validation = Depends(get_session)) -> list[ProgressRow]:
    progress = get_gateway(request).profile(session.user_id).progress
    return [_row(request, p) for p in progress]


@router.post("/skills/users/{user_id}/award", response_model=ProgressRow)
def award_experience(
    request: Request,
    user_id: int,
    body: AwardRequest,
    session: Validation = Depends(get_session),
) -> ProgressRow:
    """Add experience to another user's skill. Level is re-derived from the new total."""
    progress = get_gateway(request).award_experience(session.user_id, user_id, body.skill, body.amount)
    return _row(request, progress)


@router.put("/skills/users/{user_id}/level", response_model=ProgressRow)
def set_level(
    request: Request,
    user_id: int,
    body: SetLevelRequest,
    session: Validation = Depends(get_session),
) -> ProgressRow:
    """Force a level; experience is pinned to that level's threshold."""
    progress = get_gateway(request).set_level(session.user_id, user_id, body.skill, body.level)
    return _row(request, progress)
