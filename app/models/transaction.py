# app/models/transaction.py

import random
import string
import time
import uuid
from sqlalchemy import Column, String, DECIMAL, TIMESTAMP, ForeignKey, Enum, CHAR, func
from sqlalchemy.orm import relationship
from app.core.database import Base

TransactionTypeEnum = Enum(
    'payment', 'withdrawal', 'commission', 'refund', 'bonus',
    name="transaction_type_enum"
)
TransactionStatusEnum = Enum(
    'pending', 'completed', 'failed', 'cancelled', 'refunded',
    name="transaction_status_enum"
)

def generate_transaction_ref() -> str:
    """TXN-<epoch ms>-<9 upper-case alphanumerics>"""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"TXN-{int(time.time() * 1000)}-{suffix}"

class Transaction(Base):
    """
    Append-only ledger entry. Only status, the terminal timestamps and
    failure_reason change after insert.
    """
    __tablename__ = "transactions"

    transaction_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_ref = Column(String(40), unique=True, nullable=False, default=generate_transaction_ref)

    type = Column(TransactionTypeEnum, nullable=False, index=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    status = Column(TransactionStatusEnum, default='pending', nullable=False, index=True)

    from_user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True)
    # 抽成 (平台) 與提領沒有 job
    to_user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True)
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="SET NULL"), nullable=True, index=True)

    description = Column(String(500), default="")
    # 寫入當下的費率，之後調整費率不影響舊紀錄
    commission_rate = Column(DECIMAL(6, 4), nullable=True)
    commission = Column(DECIMAL(12, 2), nullable=False, default=0)
    # 只有 type='payment' 有意義
    net_amount = Column(DECIMAL(12, 2), nullable=False, default=0)
    payment_method = Column(String(50), default="platform")

    completed_at = Column(TIMESTAMP, nullable=True)
    failed_at = Column(TIMESTAMP, nullable=True)
    failure_reason = Column(String(500), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now(), index=True)

    from_user = relationship("User", foreign_keys=[from_user_id])
    to_user = relationship("User", foreign_keys=[to_user_id])
    job = relationship("Job")
