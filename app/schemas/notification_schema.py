# app/schemas/notification_schema.py

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_id: str
    title: str
    message: Optional[str] = None
    # 前端點擊後開啟的路由
    link_url: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

class NotificationListOut(BaseModel):
    """
    通知列表 + 未讀總數 (未讀數不受 limit 影響，給前端徽章用)
    """
    items: List[NotificationOut]
    unread_count: int

class MarkAllReadOut(BaseModel):
    success: bool = True
    marked: int
