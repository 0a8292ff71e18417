# app/services/realtime_service.py
# WebSocket 連線生命週期與用戶端事件分派。
# 雙向 frame 格式皆為 {"event": <name>, "data": {...}}。

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppError, InvalidInputError
from app.core.websocket_manager import ConnectionRegistry
from app.models.user import User
from app.repositories.chat_repo import ChatRepository
from app.repositories.user_repo import UserRepository
from app.schemas.message_schema import MessageIn
from app.services.chat_service import ChatService, room_for
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def _chat_id(data: Dict[str, Any]) -> str:
    chat_id = data.get("chat_id")
    if not chat_id or not isinstance(chat_id, str):
        raise InvalidInputError("chat_id is required")
    return chat_id


class RealtimeService:
    def __init__(self, db: AsyncSession, connections: ConnectionRegistry):
        self.db = db
        self.connections = connections
        self.chat_service = ChatService(db, connections)
        self.chat_repo = ChatRepository(db)
        self.user_repo = UserRepository(db)
        self.notification_service = NotificationService(db)
        self._handlers: Dict[str, Callable[[User, Dict[str, Any]], Awaitable[None]]] = {
            "chat:join": self._join,
            "chat:leave": self._leave,
            "message:send": self._send_message,
            "message:read": self._read,
            "typing:start": self._typing_start,
            "typing:stop": self._typing_stop,
            "notification:send": self._send_notification,
        }

    # --- 連線生命週期 ---

    async def on_connect(self, user: User, connection: Any) -> None:
        """
        Register the connection, mark the user online, subscribe it to all of the
        user's chats and tell everyone else.

        A storage failure undoes the registration and propagates.
        """
        user_id = user.user_id
        self.connections.register(user_id, connection)
        try:
            await self.user_repo.set_presence(user_id, True)
            await self.db.commit()
            for chat_id in await self.chat_repo.get_chat_ids_by_user_id(user_id):
                self.connections.join_room(room_for(chat_id), user_id)
        except Exception:
            self.connections.unregister(user_id, connection)
            await self.db.rollback()
            raise

        await self.connections.broadcast_all(
            "user:online", {"user_id": user_id}, exclude_user_id=user_id
        )

    async def on_disconnect(self, user_id: str, connection: Any) -> None:
        # 同一使用者已有較新的連線 -> 維持上線
        if not self.connections.unregister(user_id, connection):
            return
        await self.user_repo.set_presence(user_id, False)
        await self.db.commit()
        await self.connections.broadcast_all(
            "user:offline",
            {"user_id": user_id, "last_seen": datetime.now().isoformat()},
            exclude_user_id=user_id,
        )

    # --- 事件分派 ---

    async def handle_event(self, user: User, frame: Any) -> None:
        """
        Run one client frame. Failures go back to the sender as an "error" event;
        they never close the connection.
        """
        user_id = user.user_id
        try:
            if not isinstance(frame, dict):
                raise InvalidInputError("Frames must be JSON objects")
            event = frame.get("event")
            handler = self._handlers.get(event)
            if handler is None:
                raise InvalidInputError(f"Unknown event: {event}")
            data = frame.get("data") or {}
            if not isinstance(data, dict):
                raise InvalidInputError("data must be an object")
            await handler(user, data)
        except AppError as e:
            await self.connections.notify(user_id, "error", e.to_dict())
        except ValidationError as e:
            error = InvalidInputError(f"Invalid payload: {e.errors()[0].get('msg', 'invalid')}")
            await self.connections.notify(user_id, "error", error.to_dict())
        except SQLAlchemyError as e:
            logger.error(f"Storage error on a frame from {user_id}: {e}", exc_info=True)
            await self.db.rollback()
            await self.connections.notify(
                user_id, "error", {"error": "InternalError", "message": "Something went wrong"}
            )
            # rollback 讓 user 過期，重新載入給下一個 frame 使用
            await self.db.refresh(user)

    # --- 事件處理 ---

    async def _join(self, user: User, data: Dict[str, Any]) -> None:
        self.connections.join_room(room_for(_chat_id(data)), user.user_id)

    async def _leave(self, user: User, data: Dict[str, Any]) -> None:
        self.connections.leave_room(room_for(_chat_id(data)), user.user_id)

    async def _send_message(self, user: User, data: Dict[str, Any]) -> None:
        message_in = MessageIn.model_validate(data)
        await self.chat_service.send_message(
            user.user_id, message_in.chat_id, message_in.content, message_in.message_type
        )

    async def _read(self, user: User, data: Dict[str, Any]) -> None:
        await self.chat_service.mark_read(user.user_id, _chat_id(data))

    async def _typing(self, user: User, data: Dict[str, Any], is_typing: bool) -> None:
        chat_id = _chat_id(data)
        await self.connections.broadcast(
            room_for(chat_id),
            "typing:update",
            {"chat_id": chat_id, "user_id": user.user_id, "user_name": user.name, "is_typing": is_typing},
            exclude_user_id=user.user_id,
        )

    async def _typing_start(self, user: User, data: Dict[str, Any]) -> None:
        await self._typing(user, data, True)

    async def _typing_stop(self, user: User, data: Dict[str, Any]) -> None:
        await self._typing(user, data, False)

    async def _send_notification(self, user: User, data: Dict[str, Any]) -> None:
        """
        Relay a notification to another user: live if they are connected,
        stored for later otherwise.
        """
        recipient_id = data.get("recipient_id")
        notification = data.get("notification") or {}
        if not recipient_id or not isinstance(notification, dict):
            raise InvalidInputError("recipient_id and notification are required")

        payload = {**notification, "from_user_id": user.user_id}
        if await self.connections.notify(recipient_id, "notification:received", payload):
            return
        recipient = await self.user_repo.get_user_by_id(recipient_id)
        if recipient is None:
            return
        await self.notification_service.create_notification(
            user_id=recipient_id,
            title=str(notification.get("title") or "New notification")[:255],
            message=notification.get("message"),
            link_url=str(notification.get("link_url") or "/notifications")[:500],
        )
