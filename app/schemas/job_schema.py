# app/schemas/job_schema.py
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Literal, Optional
from datetime import datetime
from decimal import Decimal

from app.schemas.skill_schema import SkillOut

# 1. Input / Output 共用欄位
class JobBase(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=5000)
    budget_min: Decimal = Field(..., ge=0, decimal_places=2)
    budget_max: Decimal = Field(..., ge=0, decimal_places=2)
    budget_type: Literal['fixed', 'hourly'] = 'fixed'
    deadline: Optional[datetime] = None

# 2. 雇主刊登職缺 (Input)
class JobCreate(JobBase):
    skill_id: str

    @model_validator(mode="after")
    def check_budget_range(self):
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        return self

class Attachment(BaseModel):
    name: str = Field(..., max_length=255)
    url: str = Field(..., max_length=500)

# 3. 接案者交件 (Input)
class WorkSubmission(BaseModel):
    description: str = Field(..., min_length=1, max_length=5000)
    attachments: List[Attachment] = []

class SubmissionReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class InviteCreate(BaseModel):
    freelancer_id: str
    message: Optional[str] = Field(None, max_length=2000)

class InviteResponse(BaseModel):
    accept: bool

class InviteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invite_id: str
    job_id: str
    freelancer_id: str
    status: str
    message: Optional[str] = None
    invited_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

# 4. 回傳給前端的職缺 (Output)
class JobOut(JobBase):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    client_id: str
    skill_id: str
    status: str
    applications_count: int
    hired_freelancer_id: Optional[str] = None
    hired_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    payment_status: str
    submission_description: Optional[str] = None
    submission_attachments: Optional[List[Attachment]] = None
    submission_status: Optional[str] = None
    submitted_at: Optional[datetime] = None
    skill: Optional[SkillOut] = None
    invites: List[InviteOut] = []
