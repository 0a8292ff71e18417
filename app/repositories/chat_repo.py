# app/repositories/chat_repo.py

from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, update
from typing import Optional, List

from app.models.message import Chat, Message, ordered_pair

class ChatRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Chat ---

    async def get_chat_by_id(self, chat_id: str) -> Optional[Chat]:
        stmt = select(Chat).where(Chat.chat_id == chat_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_chat_between(self, user_a: str, user_b: str) -> Optional[Chat]:
        low, high = ordered_pair(user_a, user_b)
        stmt = select(Chat).where(
            Chat.participant_low_id == low,
            Chat.participant_high_id == high,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def add_chat(self, chat: Chat) -> Chat:
        """
        Adds and flushes; a concurrent insert of the same pair fails here
        with IntegrityError.
        """
        self.db.add(chat)
        await self.db.flush()
        return chat

    async def get_chats_by_user_id(self, user_id: str) -> List[Chat]:
        """
        Active chats of the user, most recent activity first
        """
        stmt = (
            select(Chat)
            .where(
                or_(Chat.participant_low_id == user_id, Chat.participant_high_id == user_id),
                Chat.is_active == True,
            )
            .order_by(Chat.last_message_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def get_chat_ids_by_user_id(self, user_id: str) -> List[str]:
        stmt = select(Chat.chat_id).where(
            or_(Chat.participant_low_id == user_id, Chat.participant_high_id == user_id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def touch_after_message(self, chat: Chat, message: Message, recipient_id: str) -> None:
        """
        Point the chat at its newest message and bump the recipient's unread
        counter in SQL.
        """
        counter = Chat.unread_column_for(chat, recipient_id)
        stmt = (
            update(Chat)
            .where(Chat.chat_id == chat.chat_id)
            .values({
                Chat.last_message_id: message.message_id,
                Chat.last_message_at: message.created_at,
                counter: counter + 1,
            })
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def reset_unread(self, chat: Chat, user_id: str) -> None:
        counter = Chat.unread_column_for(chat, user_id)
        stmt = (
            update(Chat)
            .where(Chat.chat_id == chat.chat_id)
            .values({counter: 0})
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def refresh(self, chat: Chat) -> Chat:
        await self.db.refresh(chat)
        return chat

    # --- Message ---

    async def get_message_by_id(self, message_id: str) -> Optional[Message]:
        stmt = select(Message).where(Message.message_id == message_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_messages_by_chat_id(self, chat_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
        """
        Page of messages counted from the newest, returned oldest first
        """
        stmt = (
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()[::-1]

    async def save_message(self, chat_id: str, sender_id: str, content: str, message_type: str) -> Message:
        new_message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            created_at=datetime.now(),
        )
        self.db.add(new_message)
        await self.db.flush()
        await self.db.refresh(new_message)
        return new_message

    async def mark_messages_as_read(self, chat_id: str, user_id: str) -> int:
        """
        Flip every unread message in the chat not written by user_id. Returns the count.
        """
        update_stmt = (
            update(Message)
            .where(
                and_(
                    Message.chat_id == chat_id,
                    Message.sender_id != user_id,
                    Message.is_read == False
                )
            )
            .values(is_read=True, read_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(update_stmt)
        return result.rowcount

    async def soft_delete_message(self, message_id: str, sender_id: str) -> bool:
        stmt = (
            update(Message)
            .where(
                Message.message_id == message_id,
                Message.sender_id == sender_id,
                Message.is_deleted == False,
            )
            .values(is_deleted=True, deleted_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
