# app/models/message.py

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, ForeignKey, TIMESTAMP, CHAR, INT, Boolean, Enum,
    UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import relationship
from app.core.database import Base

# 微秒精度：同一聊天室的訊息以 created_at 排序
PreciseTimestamp = TIMESTAMP().with_variant(mysql.TIMESTAMP(fsp=6), "mysql")

MessageTypeEnum = Enum('text', 'image', 'file', 'system', name="message_type_enum")

def ordered_pair(user_a: str, user_b: str):
    """Normalize an unordered participant pair to (low, high)."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)

class Chat(Base):
    """
    One-to-one chat. The pair is stored ordered so the unique constraint
    holds for the unordered pair.
    """
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("participant_low_id", "participant_high_id", name="uq_chat_participants"),
        CheckConstraint("participant_low_id < participant_high_id", name="ck_chat_two_participants"),
    )

    chat_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    participant_low_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    participant_high_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = Column(CHAR(36), ForeignKey("jobs.job_id", ondelete="SET NULL"), nullable=True, index=True)

    last_message_id = Column(CHAR(36), nullable=True)
    last_message_at = Column(PreciseTimestamp, default=datetime.now)

    # 未讀數，每位參與者各一
    unread_low = Column(INT, default=0, nullable=False)
    unread_high = Column(INT, default=0, nullable=False)

    is_active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    participant_low = relationship("User", foreign_keys=[participant_low_id], lazy="selectin")
    participant_high = relationship("User", foreign_keys=[participant_high_id], lazy="selectin")
    job = relationship("Job")

    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )

    @property
    def participant_ids(self):
        return (self.participant_low_id, self.participant_high_id)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def other_participant(self, user_id: str) -> str:
        return self.participant_high_id if user_id == self.participant_low_id else self.participant_low_id

    def unread_for(self, user_id: str) -> int:
        if user_id == self.participant_low_id:
            return self.unread_low
        if user_id == self.participant_high_id:
            return self.unread_high
        return 0

    @staticmethod
    def unread_column_for(chat: "Chat", user_id: str):
        """The unread counter column belonging to user_id in this chat."""
        return Chat.unread_low if user_id == chat.participant_low_id else Chat.unread_high

class Message(Base):
    __tablename__ = "messages"
    message_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(CHAR(36), ForeignKey("chats.chat_id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(MessageTypeEnum, default='text', nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(TIMESTAMP, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(PreciseTimestamp, default=datetime.now, nullable=False, index=True)

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", lazy="selectin")
