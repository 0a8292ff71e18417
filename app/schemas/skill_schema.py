# app/schemas/skill_schema.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

class SkillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    skill_id: str
    name: str
    description: Optional[str] = None

class QuizAnswer(BaseModel):
    question_id: str
    selected_option: int = Field(..., ge=0)

class QuizSubmission(BaseModel):
    answers: List[QuizAnswer] = Field(..., min_length=1)
    time_taken: int = Field(0, ge=0, description="seconds")

class QuizResultOut(BaseModel):
    skill_id: str
    score: int
    total_questions: int
    pass_score: int
    passed: bool
    message: str
