# app/models/skill.py
import uuid
from sqlalchemy import (
    Column, String, TEXT, Boolean, ForeignKey, INT, CHAR, JSON, TIMESTAMP,
    UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from app.core.database import Base

class Skill(Base):
    __tablename__ = "skills"
    skill_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500), default="")
    is_active = Column(Boolean, default=True)

    questions = relationship("Question", back_populates="skill", cascade="all, delete-orphan")
    holders = relationship("UserSkill", back_populates="skill")

class Question(Base):
    __tablename__ = "questions"
    question_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    skill_id = Column(CHAR(36), ForeignKey("skills.skill_id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(TEXT, nullable=False)
    # 選項字串列表
    options = Column(JSON, nullable=False)
    correct_option = Column(INT, nullable=False)
    is_active = Column(Boolean, default=True)

    skill = relationship("Skill", back_populates="questions")

class UserSkill(Base):
    """A skill the user has proven by passing its quiz."""
    __tablename__ = "user_skills"
    __table_args__ = (UniqueConstraint("user_id", "skill_id", name="uq_user_skill"),)

    user_skill_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    skill_id = Column(CHAR(36), ForeignKey("skills.skill_id", ondelete="RESTRICT"), nullable=False, index=True)
    quiz_score = Column(INT, default=0)
    passed = Column(Boolean, default=False, nullable=False)
    passed_at = Column(TIMESTAMP, nullable=True)

    user = relationship("User", back_populates="skills")
    skill = relationship("Skill", back_populates="holders", lazy="selectin")

class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    attempt_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    skill_id = Column(CHAR(36), ForeignKey("skills.skill_id", ondelete="CASCADE"), nullable=False, index=True)
    # [{"question_id": ..., "selected_option": ..., "is_correct": ...}]
    answers = Column(JSON, nullable=False)
    score = Column(INT, nullable=False)
    total_questions = Column(INT, nullable=False)
    passed = Column(Boolean, nullable=False)
    time_taken = Column(INT, default=0) # seconds
    created_at = Column(TIMESTAMP, server_default=func.now())
