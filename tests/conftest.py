"""
Shared fixtures: a fresh SQLite database per test, factories for users, skills,
jobs and applications, and a fake WebSocket connection.
"""
import os
import sys
from decimal import Decimal
from typing import Any, Dict, List

# Settings are read at import time, so the environment has to be ready first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.models.application import Application
from app.models.job import Job
from app.models.message import Chat, Message  # noqa: F401  (table registration)
from app.models.notification import Notification  # noqa: F401
from app.models.skill import Skill, Question, UserSkill
from app.models.transaction import Transaction  # noqa: F401
from app.models.user import User, UserRoleEnum


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    # NullPool: every session opens its own connection on the running loop
    engine = create_async_engine(database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# --- Factories ---

async def make_user(db, role: UserRoleEnum, name: str = None, **fields) -> User:
    name = name or f"{role.value}-user"
    user = User(email=f"{name}@example.com", name=name, role=role, **fields)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_skill(db, name: str = "Python", correct_options: List[int] = None) -> Skill:
    """A skill with one question per entry of correct_options (default 10 questions, answer 0)."""
    correct_options = correct_options if correct_options is not None else [0] * 10
    skill = Skill(name=name, description=f"{name} basics")
    db.add(skill)
    await db.flush()
    for i, correct in enumerate(correct_options):
        db.add(Question(
            skill_id=skill.skill_id,
            text=f"{name} question {i + 1}",
            options=["a", "b", "c", "d"],
            correct_option=correct,
        ))
    await db.commit()
    await db.refresh(skill)
    return skill


async def get_questions(db, skill: Skill) -> List[Question]:
    from sqlalchemy import select
    result = await db.execute(
        select(Question).where(Question.skill_id == skill.skill_id).order_by(Question.text)
    )
    return result.scalars().all()


async def pass_skill(db, user: User, skill: Skill) -> UserSkill:
    user_skill = UserSkill(user_id=user.user_id, skill_id=skill.skill_id, quiz_score=10, passed=True)
    db.add(user_skill)
    await db.commit()
    return user_skill


async def make_job(db, client: User, skill: Skill, budget_min="500.00", budget_max="500.00", **fields) -> Job:
    job = Job(
        client_id=client.user_id,
        skill_id=skill.skill_id,
        title=fields.pop("title", "Build an API"),
        description=fields.pop("description", "FastAPI service"),
        budget_min=Decimal(budget_min),
        budget_max=Decimal(budget_max),
        budget_type=fields.pop("budget_type", "fixed"),
        status=fields.pop("status", "open"),
        applications_count=fields.pop("applications_count", 0),
        **fields,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def make_application(db, job: Job, freelancer: User, proposed_budget="500.00", status="pending") -> Application:
    application = Application(
        job_id=job.job_id,
        freelancer_id=freelancer.user_id,
        cover_letter="I can do this",
        proposed_budget=Decimal(proposed_budget),
        estimated_duration="1 week",
        status=status,
    )
    db.add(application)
    await db.commit()
    await db.refresh(application)
    return application


class FakeConnection:
    """Stands in for a WebSocket: records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self, name: str = None) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if name is None or frame["event"] == name]


# --- Common fixtures ---

@pytest_asyncio.fixture
async def client_user(db):
    return await make_user(db, UserRoleEnum.client, "alice")


@pytest_asyncio.fixture
async def freelancer(db):
    return await make_user(db, UserRoleEnum.freelancer, "bob")


@pytest_asyncio.fixture
async def other_freelancer(db):
    return await make_user(db, UserRoleEnum.freelancer, "carol")


@pytest_asyncio.fixture
async def admin(db):
    return await make_user(db, UserRoleEnum.admin, "root")


@pytest_asyncio.fixture
async def skill(db):
    return await make_skill(db)


@pytest_asyncio.fixture
async def job(db, client_user, skill):
    return await make_job(db, client_user, skill)
