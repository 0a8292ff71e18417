# models/user.py
import enum
import uuid
from sqlalchemy import Column, String, Boolean, Enum, DECIMAL, INT, TIMESTAMP, func
from sqlalchemy.dialects.mysql import CHAR  # UUIDs on MySQL
from sqlalchemy.orm import relationship
from app.core.database import Base

class UserRoleEnum(str, enum.Enum):
    client = "client"
    freelancer = "freelancer"
    admin = "admin"

class User(Base):
    __tablename__ = "users"

    user_id = Column(CHAR(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False, default="")
    role = Column(Enum(UserRoleEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    is_active = Column(Boolean, default=True)
    is_suspended = Column(Boolean, default=False, nullable=False)

    # 帳務快取。total_earnings 只增不減 (已扣抽成)；
    # 可用餘額由 transactions 表即時計算。
    total_earnings = Column(DECIMAL(12, 2), nullable=False, default=0)
    completed_jobs = Column(INT, nullable=False, default=0)

    # 上線狀態 (盡力而為)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())

    skills = relationship(
        "UserSkill",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    jobs_owned = relationship(
        "Job",
        foreign_keys="[Job.client_id]",
        back_populates="client",
    )

    applications = relationship(
        "Application",
        back_populates="freelancer",
    )
