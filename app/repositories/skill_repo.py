# app/repositories/skill_repo.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import exists, func
from app.models.skill import Skill, Question, UserSkill
from typing import List

class SkillRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_skills(self) -> List[Skill]:
        stmt = select(Skill).where(Skill.is_active == True).order_by(Skill.name)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_skill_by_id(self, skill_id: str) -> Skill | None:
        stmt = select(Skill).where(Skill.skill_id == skill_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def skill_exists(self, skill_id: str) -> bool:
        stmt = select(exists().where(Skill.skill_id == skill_id))
        result = await self.db.execute(stmt)
        return bool(result.scalar())

    async def has_passed_skill(self, user_id: str, skill_id: str) -> bool:
        """
        True when the user holds a passed quiz record for the skill
        """
        stmt = select(
            exists().where(
                UserSkill.user_id == user_id,
                UserSkill.skill_id == skill_id,
                UserSkill.passed == True,
            )
        )
        result = await self.db.execute(stmt)
        return bool(result.scalar())

    async def get_questions_by_ids(self, skill_id: str, question_ids: List[str]) -> List[Question]:
        """
        Active questions of this skill among question_ids (unknown or foreign ids are dropped)
        """
        if not question_ids:
            return []
        stmt = select(Question).where(
            Question.skill_id == skill_id,
            Question.question_id.in_(question_ids),
            Question.is_active == True,
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count_active_questions(self, skill_id: str) -> int:
        stmt = select(func.count()).select_from(Question).where(
            Question.skill_id == skill_id,
            Question.is_active == True,
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0
