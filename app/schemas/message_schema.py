# app/schemas/message_schema.py

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Literal, Optional
from datetime import datetime

from app.schemas.user_schema import UserBrief

class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    message_id: str
    chat_id: str
    sender_id: str
    content: str
    message_type: str
    is_read: bool
    is_deleted: bool
    created_at: datetime
    # 顯示用的發送者名稱 / 頭像
    sender: Optional[UserBrief] = None

class MessageCreate(BaseModel):
    """
    REST message body; the chat comes from the path
    """
    content: str = Field(..., min_length=1, max_length=5000, description="message body")
    message_type: Literal['text', 'image', 'file'] = 'text'

class MessageIn(MessageCreate):
    """
    Websocket message:send payload
    """
    chat_id: str

class ChatStart(BaseModel):
    """
    Body for opening (or reusing) a chat with another user
    """
    user_id: str = Field(..., description="the other participant")
    job_id: Optional[str] = None

class ChatOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    chat_id: str
    job_id: Optional[str] = None
    participants: List[UserBrief]
    last_message_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    # 目前使用者的未讀數
    unread_count: int = 0
    created_at: Optional[datetime] = None

    @classmethod
    def for_viewer(cls, chat, viewer_id: str) -> "ChatOut":
        return cls(
            chat_id=chat.chat_id,
            job_id=chat.job_id,
            participants=[
                UserBrief.model_validate(chat.participant_low),
                UserBrief.model_validate(chat.participant_high),
            ],
            last_message_id=chat.last_message_id,
            last_message_at=chat.last_message_at,
            unread_count=chat.unread_for(viewer_id),
            created_at=chat.created_at,
        )
