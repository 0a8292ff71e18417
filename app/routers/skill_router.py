# app/routers/skill_router.py

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.models.user import User
from app.schemas.skill_schema import SkillOut, QuizSubmission, QuizResultOut
from app.services.skill_service import SkillService

router = APIRouter(
    prefix="/skills",
    tags=["Skills"]
)

def get_skill_service(db: AsyncSession = Depends(get_db)) -> SkillService:
    return SkillService(db)

@router.get("", response_model=List[SkillOut], summary="All active skills")
async def api_list_skills(service: SkillService = Depends(get_skill_service)):
    return await service.list_skills()

@router.post("/{skill_id}/verify", response_model=QuizResultOut, summary="Take a skill quiz")
async def api_verify_skill(
    skill_id: str,
    submission: QuizSubmission,
    service: SkillService = Depends(get_skill_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Freelancer) Submit quiz answers. Passing adds the skill to the profile,
    which unlocks applying for jobs that require it.
    """
    result = await service.verify_skill(current_user, skill_id, submission.answers, submission.time_taken)
    return QuizResultOut(**vars(result))
