# app/models/notification.py

import uuid
from sqlalchemy import Column, String, TEXT, BOOLEAN, CHAR, ForeignKey, TIMESTAMP, Index, func
from sqlalchemy.orm import relationship
from app.core.database import Base

class Notification(Base):
    """
    站內通知：收件人不在線上時，訊息 / 雇用 / 付款等事件改存成通知
    """
    __tablename__ = "notifications"
    __table_args__ = (
        # 未讀數與未讀列表都以 (user_id, is_read) 查詢
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    notification_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)

    title = Column(String(255), nullable=False)
    message = Column(TEXT)
    link_url = Column(String(500))

    is_read = Column(BOOLEAN, default=False, nullable=False)
    created_at = Column(TIMESTAMP, server_default=func.now())

    recipient = relationship("User")
