# app/services/skill_service.py

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    NotFoundError, ForbiddenError, DuplicateEntityError, InvalidInputError, InvalidStateError,
)
from app.models.skill import Skill, QuizAttempt, UserSkill
from app.models.user import User
from app.repositories.skill_repo import SkillRepository
from app.schemas.skill_schema import QuizAnswer

logger = logging.getLogger(__name__)


@dataclass
class QuizResult:
    skill_id: str
    score: int
    total_questions: int
    pass_score: int
    passed: bool
    message: str


class SkillService:
    def __init__(self, db: AsyncSession, pass_score: Optional[int] = None, min_pass_ratio: Optional[float] = None):
        self.db = db
        self.repo = SkillRepository(db)
        self.pass_score = pass_score if pass_score is not None else settings.QUIZ_PASS_SCORE
        self.min_pass_ratio = min_pass_ratio if min_pass_ratio is not None else settings.QUIZ_MIN_PASS_RATIO

    async def list_skills(self) -> List[Skill]:
        return await self.repo.list_active_skills()

    async def has_passed_skill(self, user_id: str, skill_id: str) -> bool:
        return await self.repo.has_passed_skill(user_id, skill_id)

    def pass_score_for(self, total_questions: int) -> int:
        """Configured pass score, scaled down for quizzes shorter than it."""
        if total_questions < self.pass_score:
            return math.ceil(total_questions * self.min_pass_ratio)
        return self.pass_score

    async def verify_skill(
        self, freelancer: User, skill_id: str, answers: List[QuizAnswer], time_taken: int = 0
    ) -> QuizResult:
        """
        Grade a quiz and, on a pass, add the skill to the freelancer.

        Grading happens entirely in memory; the attempt and the skill are written
        in a single commit afterwards, so a failure leaves nothing behind.
        """
        if freelancer.role != "freelancer":
            raise ForbiddenError("Only freelancers can verify skills")
        skill = await self.repo.get_skill_by_id(skill_id)
        if not skill or not skill.is_active:
            raise NotFoundError("Skill not found")
        if await self.repo.has_passed_skill(freelancer.user_id, skill_id):
            raise DuplicateEntityError("You already have this skill verified")
        quiz_size = await self.repo.count_active_questions(skill_id)
        if quiz_size == 0:
            raise InvalidStateError("This skill has no quiz yet")

        if not answers:
            raise InvalidInputError("At least one answer is required")
        question_ids = [a.question_id for a in answers]
        if len(set(question_ids)) != len(question_ids):
            raise InvalidInputError("Each question can only be answered once")
        questions = {q.question_id: q for q in await self.repo.get_questions_by_ids(skill_id, question_ids)}
        if len(questions) != len(question_ids):
            raise InvalidInputError("Some answers refer to questions outside this quiz")

        # 步驟 1: 在記憶體中評分
        graded = []
        for answer in answers:
            is_correct = questions[answer.question_id].correct_option == answer.selected_option
            graded.append({
                "question_id": answer.question_id,
                "selected_option": answer.selected_option,
                "is_correct": is_correct,
            })
        score = sum(1 for g in graded if g["is_correct"])
        # 分母是整份測驗的題數，未作答視為答錯
        total = quiz_size
        pass_score = self.pass_score_for(total)
        passed = score >= pass_score

        # 步驟 2: 作答紀錄 (及技能) 同一次 commit
        self.db.add(QuizAttempt(
            user_id=freelancer.user_id,
            skill_id=skill_id,
            answers=graded,
            score=score,
            total_questions=total,
            passed=passed,
            time_taken=time_taken,
        ))
        if passed:
            self.db.add(UserSkill(
                user_id=freelancer.user_id,
                skill_id=skill_id,
                quiz_score=score,
                passed=True,
                passed_at=datetime.now(),
            ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateEntityError("You already have this skill verified")

        logger.info(f"Quiz for skill {skill_id} by {freelancer.user_id}: {score}/{total} (pass {pass_score})")
        if passed:
            message = f"Congratulations! You've added {skill.name} to your skills!"
        else:
            message = f"You scored {score}/{total}. You need at least {pass_score} to add this skill."
        return QuizResult(
            skill_id=skill_id,
            score=score,
            total_questions=total,
            pass_score=pass_score,
            passed=passed,
            message=message,
        )
