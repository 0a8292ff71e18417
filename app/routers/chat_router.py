# app/routers/chat_router.py

from fastapi import APIRouter, Depends, Query, status, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import json
import logging

from app.core.database import get_db
from app.core.security import get_current_user, get_current_user_from_websocket_token
from app.core.websocket_manager import ConnectionRegistry, get_connections
from app.models.user import User
from app.schemas.message_schema import ChatOut, ChatStart, MessageCreate, MessageOut
from app.services.chat_service import ChatService
from app.services.realtime_service import RealtimeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])

def get_chat_service(
    db: AsyncSession = Depends(get_db),
    connections: ConnectionRegistry = Depends(get_connections),
) -> ChatService:
    return ChatService(db, connections)

# --- RESTful API (歷史訊息、已讀) ---

@router.get("", response_model=List[ChatOut], summary="My chats")
async def list_user_chats(
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    chats = await service.list_chats(user)
    return [ChatOut.for_viewer(chat, user.user_id) for chat in chats]

@router.post("", response_model=ChatOut, status_code=status.HTTP_201_CREATED, summary="Start or reuse a chat")
async def start_chat(
    body: ChatStart,
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    """
    Returns the existing chat with that user if there is one; there is never
    more than one chat per pair of users.
    """
    chat = await service.start_chat(user, body.user_id, body.job_id)
    return ChatOut.for_viewer(chat, user.user_id)

@router.get("/{chat_id}/messages", response_model=List[MessageOut], summary="Chat history")
async def get_history_messages(
    chat_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    return await service.get_messages(user, chat_id, page, limit)

@router.post(
    "/{chat_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message"
)
async def send_message(
    chat_id: str,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    return await service.send_message(user.user_id, chat_id, body.content, body.message_type)

@router.post("/{chat_id}/read", summary="Mark chat read")
async def mark_chat_read(
    chat_id: str,
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    count = await service.mark_read(user.user_id, chat_id)
    return {"success": True, "marked": count}

@router.delete("/messages/{message_id}", response_model=MessageOut, summary="Delete my message")
async def delete_message(
    message_id: str,
    user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service)
):
    return await service.delete_message(user, message_id)


# --- WebSocket 端點 (即時聊天) ---

@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    user: User = Depends(get_current_user_from_websocket_token),
    db: AsyncSession = Depends(get_db),
    connections: ConnectionRegistry = Depends(get_connections)
):
    """
    Realtime channel.
    - URL: /chat/ws?token=<JWT_TOKEN>
    - Frames: {"event": "...", "data": {...}}
    """
    service = RealtimeService(db, connections)
    user_id = user.user_id

    await websocket.accept()
    try:
        await service.on_connect(user, websocket)
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except json.JSONDecodeError:
                await websocket.send_json({"event": "error", "data": {"error": "ValidationError", "message": "Invalid JSON"}})
                continue
            await service.handle_event(user, frame)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Unexpected error in websocket of user {user_id}: {e}", exc_info=True)
        await db.rollback()
    finally:
        await service.on_disconnect(user_id, websocket)
