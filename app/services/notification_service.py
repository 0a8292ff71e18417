# app/services/notification_service.py
# 離線使用者的站內通知：其他 Service 寫入，使用者上線後以 REST 讀取。

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from app.core.exceptions import NotFoundError, ForbiddenError
from app.models.user import User
from app.models.notification import Notification
from app.repositories.notification_repo import NotificationRepository
from app.schemas.notification_schema import NotificationListOut, NotificationOut

logger = logging.getLogger(__name__)

class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = NotificationRepository(db)

    async def create_notification(
        self,
        user_id: str,
        title: str,
        link_url: str,
        message: Optional[str] = None,
        commit: bool = True,
    ) -> Notification:
        """
        commit=False: 只 flush，由呼叫端的交易一起提交 (失敗時也由呼叫端 rollback)
        """
        notification = await self.repo.add(
            Notification(user_id=user_id, title=title, message=message, link_url=link_url, is_read=False)
        )
        if commit:
            try:
                await self.db.commit()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Failed to store notification for {user_id}: {e}", exc_info=True)
                raise
            # created_at 由 DB 產生
            await self.db.refresh(notification)
        logger.info(f"Notification for user {user_id}: {title} ({link_url})")
        return notification

    async def list_notifications(self, user: User, unread_only: bool = False, limit: int = 20) -> NotificationListOut:
        items = await self.repo.list_for_user(user.user_id, unread_only=unread_only, limit=limit)
        return NotificationListOut(
            items=[NotificationOut.model_validate(n) for n in items],
            unread_count=await self.repo.count_unread(user.user_id),
        )

    async def mark_notification_as_read(self, notification_id: str, user: User) -> Notification:
        notification = await self.repo.get_by_id(notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        # 只有收件人本人可以操作
        if notification.user_id != user.user_id:
            raise ForbiddenError("Not allowed to modify this notification")

        if await self.repo.mark_read(user.user_id, notification_id):
            await self.db.commit()
            await self.db.refresh(notification)
        return notification

    async def mark_all_as_read(self, user: User) -> int:
        marked = await self.repo.mark_read(user.user_id)
        await self.db.commit()
        return marked
