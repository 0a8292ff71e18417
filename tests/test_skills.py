import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    DuplicateEntityError, ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError,
)
from app.models.skill import QuizAttempt, UserSkill
from app.schemas.skill_schema import QuizAnswer
from app.services.skill_service import SkillService
from conftest import get_questions, make_skill


def answer_all(questions, correct: int):
    """Answer the first `correct` questions right (option 0) and the rest wrong."""
    return [
        QuizAnswer(question_id=q.question_id, selected_option=0 if i < correct else 1)
        for i, q in enumerate(questions)
    ]


@pytest.mark.asyncio
async def test_passing_quiz_adds_skill(db, freelancer, skill):
    questions = await get_questions(db, skill)
    result = await SkillService(db).verify_skill(freelancer, skill.skill_id, answer_all(questions, 8), time_taken=120)

    assert result.passed is True
    assert result.score == 8
    assert result.total_questions == 10
    assert result.pass_score == 7
    assert result.message == "Congratulations! You've added Python to your skills!"
    assert await SkillService(db).has_passed_skill(freelancer.user_id, skill.skill_id)

    attempt = (await db.execute(select(QuizAttempt))).scalars().one()
    assert attempt.passed is True
    assert attempt.time_taken == 120
    assert sum(1 for a in attempt.answers if a["is_correct"]) == 8


@pytest.mark.asyncio
async def test_failing_quiz_records_attempt_only(db, freelancer, skill):
    questions = await get_questions(db, skill)
    result = await SkillService(db).verify_skill(freelancer, skill.skill_id, answer_all(questions, 6))

    assert result.passed is False
    assert result.message == "You scored 6/10. You need at least 7 to add this skill."
    assert (await db.execute(select(func.count()).select_from(UserSkill))).scalar() == 0
    assert (await db.execute(select(func.count()).select_from(QuizAttempt))).scalar() == 1

    # failing never locks the freelancer out
    retry = await SkillService(db).verify_skill(freelancer, skill.skill_id, answer_all(questions, 7))
    assert retry.passed is True


@pytest.mark.asyncio
async def test_pass_score_scales_for_short_quizzes(db, freelancer):
    short = await make_skill(db, "Go", correct_options=[0, 0, 0, 0])
    questions = await get_questions(db, short)
    service = SkillService(db)

    assert service.pass_score_for(4) == 3
    assert service.pass_score_for(10) == 7
    assert service.pass_score_for(25) == 7

    result = await service.verify_skill(freelancer, short.skill_id, answer_all(questions, 3))
    assert result.pass_score == 3
    assert result.passed is True


@pytest.mark.asyncio
async def test_partial_submission_is_scored_against_whole_quiz(db, freelancer, skill):
    questions = await get_questions(db, skill)
    one_right = [QuizAnswer(question_id=questions[0].question_id, selected_option=0)]

    result = await SkillService(db).verify_skill(freelancer, skill.skill_id, one_right)

    assert result.passed is False
    assert result.score == 1
    assert result.total_questions == 10
    assert result.pass_score == 7
    assert result.message == "You scored 1/10. You need at least 7 to add this skill."
    assert (await db.execute(select(func.count()).select_from(UserSkill))).scalar() == 0


@pytest.mark.asyncio
async def test_skill_without_questions_cannot_be_verified(db, freelancer):
    empty = await make_skill(db, "Cobol", correct_options=[])
    with pytest.raises(InvalidStateError):
        await SkillService(db).verify_skill(
            freelancer, empty.skill_id, [QuizAnswer(question_id="q", selected_option=0)]
        )


@pytest.mark.asyncio
async def test_verify_rejects_repeats_and_bad_answers(db, freelancer, client_user, skill):
    questions = await get_questions(db, skill)
    service = SkillService(db)

    with pytest.raises(ForbiddenError):
        await service.verify_skill(client_user, skill.skill_id, answer_all(questions, 10))
    with pytest.raises(NotFoundError):
        await service.verify_skill(freelancer, "missing", answer_all(questions, 10))
    with pytest.raises(InvalidInputError):
        doubled = [QuizAnswer(question_id=questions[0].question_id, selected_option=0)] * 2
        await service.verify_skill(freelancer, skill.skill_id, doubled)

    other = await make_skill(db, "Rust")
    foreign = answer_all(await get_questions(db, other), 1)[:1]
    with pytest.raises(InvalidInputError):
        await service.verify_skill(freelancer, skill.skill_id, foreign)

    await service.verify_skill(freelancer, skill.skill_id, answer_all(questions, 10))
    with pytest.raises(DuplicateEntityError):
        await service.verify_skill(freelancer, skill.skill_id, answer_all(questions, 10))


@pytest.mark.asyncio
async def test_list_skills(db, skill):
    names = [s.name for s in await SkillService(db).list_skills()]
    assert names == ["Python"]
