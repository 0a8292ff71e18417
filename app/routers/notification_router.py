# app/routers/notification_router.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import get_current_user
from app.models.user import User
from app.schemas.notification_schema import MarkAllReadOut, NotificationListOut, NotificationOut
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])

def get_notification_service(db: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(db)

@router.get("/my", response_model=NotificationListOut, summary="My notifications")
async def list_my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    """
    離線期間累積的通知 (新的在前) 與未讀總數
    """
    return await service.list_notifications(user, unread_only=unread_only, limit=limit)

# 固定路徑要放在 /{notification_id}/read 之前
@router.post("/read-all", response_model=MarkAllReadOut, summary="Mark all my notifications read")
async def mark_all_read(
    user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return MarkAllReadOut(marked=await service.mark_all_as_read(user))

@router.patch("/{notification_id}/read", response_model=NotificationOut, summary="Mark a notification read")
async def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return await service.mark_notification_as_read(notification_id, user)
