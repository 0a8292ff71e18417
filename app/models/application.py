# app/models/application.py
import uuid
from sqlalchemy import Column, String, Text, DECIMAL, ForeignKey, TIMESTAMP, Enum, UniqueConstraint, func
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship
from app.core.database import Base

ApplicationStatusEnum = Enum(
    'pending', 'shortlisted', 'accepted', 'rejected', 'withdrawn',
    name="application_status_enum"
)

class Application(Base):
    __tablename__ = "applications"
    # 每個 (job, freelancer) 只能應徵一次
    __table_args__ = (UniqueConstraint("job_id", "freelancer_id", name="uq_application_job_freelancer"),)

    application_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id"), nullable=False, index=True)

    cover_letter = Column(Text, nullable=False)
    proposed_budget = Column(DECIMAL(12, 2), nullable=False)
    estimated_duration = Column(String(100), nullable=False)

    status = Column(ApplicationStatusEnum, default='pending', nullable=False)
    client_notes = Column(Text, default="")
    accepted_at = Column(TIMESTAMP, nullable=True)
    rejected_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    job = relationship("Job", back_populates="applications")
    freelancer = relationship("User", back_populates="applications")
