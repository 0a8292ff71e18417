# app/services/chat_service.py

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    NotFoundError, ForbiddenError, InvalidInputError, NotAParticipantError,
)
from app.core.websocket_manager import ConnectionRegistry
from app.models.job import Job
from app.models.message import Chat, Message, ordered_pair
from app.models.user import User
from app.repositories.chat_repo import ChatRepository
from app.repositories.user_repo import UserRepository
from app.schemas.message_schema import MessageOut
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000
USER_MESSAGE_TYPES = ("text", "image", "file")


def room_for(chat_id: str) -> str:
    return f"chat:{chat_id}"


class ChatService:
    """
    兩位使用者之間的一對一聊天。

    寫入走 ChatRepository；即時推播走 ConnectionRegistry。
    沒有給 connections 時 (例如測試) 只寫入不推播。
    """
    def __init__(self, db: AsyncSession, connections: Optional[ConnectionRegistry] = None):
        self.db = db
        self.connections = connections
        self.chat_repo = ChatRepository(db)
        self.user_repo = UserRepository(db)
        self.notification_service = NotificationService(db)

    # --- 建立聊天室 ---

    async def get_or_create_chat(self, user_a: str, user_b: str, job_id: Optional[str] = None) -> Tuple[Chat, bool]:
        """
        取得 (或建立) 兩人之間唯一的聊天室，回傳 (chat, created)。

        兩個請求同時建立時都會嘗試 INSERT，由唯一約束擋下其中一個，
        失敗的一方 rollback 後改讀對方建立的那一筆。新聊天室只 flush 不 commit。
        """
        if user_a == user_b:
            raise InvalidInputError("Cannot open a chat with yourself")

        chat = await self.chat_repo.find_chat_between(user_a, user_b)
        if chat:
            return chat, False

        low, high = ordered_pair(user_a, user_b)
        try:
            chat = await self.chat_repo.add_chat(
                Chat(participant_low_id=low, participant_high_id=high, job_id=job_id)
            )
            return chat, True
        except IntegrityError:
            await self.db.rollback()
            chat = await self.chat_repo.find_chat_between(user_a, user_b)
            if chat is None:
                raise
            logger.info(f"Chat between {low} and {high} was created concurrently, reusing {chat.chat_id}")
            return chat, False

    async def start_chat(self, user: User, other_user_id: str, job_id: Optional[str] = None) -> Chat:
        """
        Open (or reuse) the chat between the caller and another user
        """
        other = await self.user_repo.get_user_by_id(other_user_id)
        if not other:
            raise NotFoundError("User not found")

        chat, created = await self.get_or_create_chat(user.user_id, other_user_id, job_id)
        if created:
            await self.db.commit()
            await self.chat_repo.refresh(chat)
            logger.info(f"Chat {chat.chat_id} started by {user.user_id}")
        self._subscribe_participants(chat)
        return chat

    async def open_hire_chat(self, client_id: str, freelancer_id: str, job: Job) -> Chat:
        """
        Chat opened by a hire: reuses any existing chat of the pair and posts a
        system message addressed to the freelancer.
        """
        # get_or_create_chat 可能 rollback 讓 job 過期，先讀出來
        job_id, title = job.job_id, job.title
        chat, created = await self.get_or_create_chat(client_id, freelancer_id, job_id)
        try:
            message = await self.chat_repo.save_message(
                chat.chat_id, client_id, f"You've been hired for the job: {title}", "system"
            )
            await self.chat_repo.touch_after_message(chat, message, freelancer_id)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        await self.chat_repo.refresh(chat)
        logger.info(f"Hire chat {chat.chat_id} for job {job_id} ({'created' if created else 'reused'})")
        self._subscribe_participants(chat)
        await self._deliver(chat, message, client_id, freelancer_id)
        return chat

    # --- 訊息 ---

    async def _get_chat_for(self, user_id: str, chat_id: str) -> Chat:
        chat = await self.chat_repo.get_chat_by_id(chat_id)
        if not chat:
            raise NotFoundError("Chat not found")
        if not chat.has_participant(user_id):
            raise NotAParticipantError()
        return chat

    async def send_message(self, sender_id: str, chat_id: str, content: str, message_type: str = "text") -> Message:
        if not content or len(content) > MAX_MESSAGE_LENGTH:
            raise InvalidInputError(f"Message content must be 1 to {MAX_MESSAGE_LENGTH} characters")
        if message_type not in USER_MESSAGE_TYPES:
            raise InvalidInputError(f"Unsupported message type: {message_type}")

        chat = await self._get_chat_for(sender_id, chat_id)
        recipient_id = chat.other_participant(sender_id)
        recipient_online = self.connections is not None and self.connections.is_user_online(recipient_id)

        try:
            # 步驟 1: 訊息、最後訊息指標、對方未讀數一起寫入
            message = await self.chat_repo.save_message(chat_id, sender_id, content, message_type)
            await self.chat_repo.touch_after_message(chat, message, recipient_id)
            # 步驟 2: 對方離線 -> 改存站內通知
            if not recipient_online:
                await self.notification_service.create_notification(
                    user_id=recipient_id,
                    title="New message",
                    message=content[:100],
                    link_url=f"/chat/{chat_id}",
                    commit=False,
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to store message in chat {chat_id}: {e}", exc_info=True)
            raise

        await self._deliver(chat, message, sender_id, recipient_id)
        return message

    async def _deliver(self, chat: Chat, message: Message, sender_id: str, recipient_id: str) -> None:
        """
        Room broadcast to everyone viewing the chat, then a direct event for the
        recipient in case they are online but not in the room.
        """
        if self.connections is None:
            return
        payload = MessageOut.model_validate(message).model_dump(mode="json")
        await self.connections.broadcast(
            room_for(chat.chat_id), "message:received", {"chat_id": chat.chat_id, "message": payload}
        )
        if self.connections.is_user_online(recipient_id):
            sender_name = message.sender.name if message.sender else ""
            await self.connections.notify(
                recipient_id,
                "notification:message",
                {"chat_id": chat.chat_id, "message": payload, "sender": sender_name},
            )

    async def mark_read(self, user_id: str, chat_id: str) -> int:
        """
        Mark everything the other participant sent as read and zero the caller's
        unread counter. Returns how many messages flipped.
        """
        chat = await self._get_chat_for(user_id, chat_id)
        try:
            count = await self.chat_repo.mark_messages_as_read(chat_id, user_id)
            await self.chat_repo.reset_unread(chat, user_id)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.chat_repo.refresh(chat)

        if self.connections is not None:
            await self.connections.broadcast(
                room_for(chat_id), "message:seen", {"chat_id": chat_id, "read_by": user_id}
            )
        return count

    async def list_chats(self, user: User) -> List[Chat]:
        return await self.chat_repo.get_chats_by_user_id(user.user_id)

    async def get_messages(self, user: User, chat_id: str, page: int = 1, limit: int = 50) -> List[Message]:
        """
        One page of history in creation order. Page 1 holds the newest messages.
        """
        await self._get_chat_for(user.user_id, chat_id)
        return await self.chat_repo.get_messages_by_chat_id(chat_id, limit=limit, offset=(page - 1) * limit)

    async def delete_message(self, user: User, message_id: str) -> Message:
        message = await self.chat_repo.get_message_by_id(message_id)
        if not message:
            raise NotFoundError("Message not found")
        if message.sender_id != user.user_id:
            raise ForbiddenError("You can only delete your own messages")

        deleted = await self.chat_repo.soft_delete_message(message_id, user.user_id)
        await self.db.commit()
        await self.db.refresh(message)
        if deleted and self.connections is not None:
            await self.connections.broadcast(
                room_for(message.chat_id), "message:deleted",
                {"chat_id": message.chat_id, "message_id": message_id},
            )
        return message

    def _subscribe_participants(self, chat: Chat) -> None:
        # 離線的參與者下次連線時自行加入
        if self.connections is None:
            return
        for user_id in chat.participant_ids:
            if self.connections.is_user_online(user_id):
                self.connections.join_room(room_for(chat.chat_id), user_id)
