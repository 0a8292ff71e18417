# app/schemas/application_schema.py
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

# --- 應徵 (Input) ---
class ApplicationCreate(BaseModel):
    # job_id 來自 URL，freelancer_id 來自 Token
    cover_letter: str = Field(..., min_length=1, max_length=2000)
    proposed_budget: Decimal = Field(..., ge=0, decimal_places=2)
    estimated_duration: str = Field(..., max_length=100)

# --- 雇主決定 (Input) ---
class ApplicationStatusUpdate(BaseModel):
    status: Literal['shortlisted', 'accepted', 'rejected']
    notes: Optional[str] = Field(None, max_length=2000)

# --- 回傳 (Output) ---
class ApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: str
    job_id: str
    freelancer_id: str
    cover_letter: str
    proposed_budget: Decimal
    estimated_duration: str
    status: str
    client_notes: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class ApplicationDecisionOut(BaseModel):
    application: ApplicationOut
    # 錄取時開啟 (或沿用) 的聊天室
    chat_id: Optional[str] = None
    warnings: List[str] = []
