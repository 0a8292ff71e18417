# models/job.py
import uuid
from sqlalchemy import (
    Column, String, TEXT, INT, DECIMAL, TIMESTAMP, JSON, ForeignKey, Enum, CHAR,
    UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from app.core.database import Base

JobStatusEnum = Enum('open', 'in-progress', 'completed', 'cancelled', 'closed', name="job_status_enum")
SubmissionStatusEnum = Enum('pending', 'approved', 'rejected', name="submission_status_enum")
PaymentStatusEnum = Enum('pending', 'escrowed', 'released', 'refunded', name="payment_status_enum")
InviteStatusEnum = Enum('pending', 'accepted', 'declined', name="invite_status_enum")

class Job(Base):
    __tablename__ = "jobs"

    job_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    skill_id = Column(CHAR(36), ForeignKey("skills.skill_id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(TEXT, nullable=False)
    budget_min = Column(DECIMAL(12, 2), nullable=False)
    budget_max = Column(DECIMAL(12, 2), nullable=False)
    budget_type = Column(Enum('fixed', 'hourly', name="budget_type_enum"), default='fixed', nullable=False)
    deadline = Column(TIMESTAMP, nullable=True)

    status = Column(JobStatusEnum, default='open', nullable=False, index=True)
    applications_count = Column(INT, default=0, nullable=False)

    # --- 雇用 ---
    hired_freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True, index=True)
    hired_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    payment_status = Column(PaymentStatusEnum, default='pending', nullable=False)

    # --- 交件 (status 為 NULL 代表尚未交件) ---
    submission_description = Column(TEXT, nullable=True)
    submission_attachments = Column(JSON, nullable=True)
    submission_status = Column(SubmissionStatusEnum, nullable=True)
    submitted_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())

    client = relationship("User", foreign_keys=[client_id], back_populates="jobs_owned")
    hired_freelancer = relationship("User", foreign_keys=[hired_freelancer_id])
    skill = relationship("Skill", lazy="selectin")

    applications = relationship(
        "Application",
        back_populates="job",
        cascade="all, delete-orphan"
    )

    invites = relationship(
        "JobInvite",
        back_populates="job",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

class JobInvite(Base):
    __tablename__ = "job_invites"
    __table_args__ = (UniqueConstraint("job_id", "freelancer_id", name="uq_job_invite"),)

    invite_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(InviteStatusEnum, default='pending', nullable=False)
    message = Column(TEXT)
    invited_at = Column(TIMESTAMP, server_default=func.now())
    responded_at = Column(TIMESTAMP, nullable=True)

    job = relationship("Job", back_populates="invites")
