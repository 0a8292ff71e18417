# app/repositories/notification_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from typing import List, Optional

from app.models.notification import Notification

class NotificationRepository:
    """
    通知資料存取。所有寫入只 flush，commit 由 Service 決定
    (訊息、雇用等流程需要把通知併入同一個交易)。
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, notification: Notification) -> Notification:
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def get_by_id(self, notification_id: str) -> Optional[Notification]:
        stmt = select(Notification).where(Notification.notification_id == notification_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 20) -> List[Notification]:
        # 新的在前
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read == False)
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def count_unread(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False,
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def mark_read(self, user_id: str, notification_id: Optional[str] = None) -> int:
        """
        單筆 (給 notification_id) 或全部未讀設為已讀，回傳實際更新筆數
        """
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        if notification_id is not None:
            stmt = stmt.where(Notification.notification_id == notification_id)
        result = await self.db.execute(stmt)
        return result.rowcount
