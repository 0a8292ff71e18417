import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    ForbiddenError, InvalidInputError, NotAParticipantError, NotFoundError,
)
from app.core.websocket_manager import ConnectionRegistry
from app.models.message import Chat, Message, ordered_pair
from app.models.notification import Notification
from app.models.user import User, UserRoleEnum
from app.repositories.chat_repo import ChatRepository
from app.repositories.user_repo import UserRepository
from app.services.application_service import ApplicationService
from app.services.chat_service import ChatService, room_for
from app.services.realtime_service import RealtimeService
from conftest import FakeConnection, make_application, make_user


async def count(db, model, *criteria):
    return (await db.execute(select(func.count()).select_from(model).where(*criteria))).scalar()


# --- Connection registry ---

@pytest.mark.asyncio
async def test_registry_rooms_and_presence():
    registry = ConnectionRegistry()
    alice, bob = FakeConnection(), FakeConnection()
    registry.register("alice", alice)
    registry.register("bob", bob)
    registry.join_room("chat:1", "alice")
    registry.join_room("chat:1", "bob")

    delivered = await registry.broadcast("chat:1", "typing:update", {"x": 1}, exclude_user_id="alice")
    assert delivered == 1
    assert alice.sent == []
    assert bob.sent == [{"event": "typing:update", "data": {"x": 1}}]

    assert registry.unregister("alice", alice) is True
    assert registry.is_user_online("alice") is False
    assert registry.room_members("chat:1") == {"bob"}
    assert await registry.notify("alice", "ping", {}) is False


@pytest.mark.asyncio
async def test_stale_connection_cannot_evict_newer_one():
    registry = ConnectionRegistry()
    first, second = FakeConnection(), FakeConnection()
    registry.register("bob", first)
    assert registry.register("bob", second) is first

    assert registry.unregister("bob", first) is False
    assert registry.is_user_online("bob")
    await registry.notify("bob", "ping", {})
    assert first.sent == []
    assert len(second.sent) == 1


@pytest.mark.asyncio
async def test_dead_connection_is_dropped():
    registry = ConnectionRegistry()
    registry.register("bob", FakeConnection(fail=True))
    registry.join_room("chat:1", "bob")

    assert await registry.notify("bob", "ping", {}) is False
    assert registry.is_user_online("bob") is False
    assert registry.room_members("chat:1") == set()


# --- Chats ---

@pytest.mark.asyncio
async def test_one_chat_per_pair(db, client_user, freelancer):
    service = ChatService(db)
    first = await service.start_chat(client_user, freelancer.user_id)
    second = await service.start_chat(freelancer, client_user.user_id)
    assert first.chat_id == second.chat_id
    assert await count(db, Chat) == 1

    with pytest.raises(InvalidInputError):
        await service.start_chat(client_user, client_user.user_id)
    with pytest.raises(NotFoundError):
        await service.start_chat(client_user, "nobody")


@pytest.mark.asyncio
async def test_concurrent_chat_creation_reuses_the_winner(db, session_factory, client_user, freelancer, monkeypatch):
    client_id, freelancer_id = client_user.user_id, freelancer.user_id
    find_chat_between = ChatRepository.find_chat_between
    winner_ids = []

    async def find_while_another_request_inserts(self, user_a, user_b):
        if not winner_ids:
            # the other request commits the pair right after our lookup misses
            low, high = ordered_pair(user_a, user_b)
            async with session_factory() as other:
                winner = Chat(participant_low_id=low, participant_high_id=high)
                other.add(winner)
                await other.commit()
                winner_ids.append(winner.chat_id)
            return None
        return await find_chat_between(self, user_a, user_b)

    monkeypatch.setattr(ChatRepository, "find_chat_between", find_while_another_request_inserts)

    chat = await ChatService(db).start_chat(client_user, freelancer_id)

    assert chat.chat_id == winner_ids[0]
    assert chat.has_participant(client_id)
    assert await count(db, Chat) == 1


@pytest.mark.asyncio
async def test_hire_reuses_existing_chat(db, client_user, job, freelancer):
    existing = await ChatService(db).start_chat(freelancer, client_user.user_id)
    application = await make_application(db, job, freelancer)

    decision = await ApplicationService(db).decide_application(client_user, application.application_id, "accepted")

    assert decision.chat.chat_id == existing.chat_id
    assert await count(db, Chat) == 1
    assert await count(db, Message, Message.message_type == "system") == 1


@pytest.mark.asyncio
async def test_unread_counters_and_mark_read(db, client_user, freelancer):
    service = ChatService(db)
    chat = await service.start_chat(client_user, freelancer.user_id)

    await service.send_message(client_user.user_id, chat.chat_id, "hi")
    await service.send_message(client_user.user_id, chat.chat_id, "are you there?")
    await service.send_message(freelancer.user_id, chat.chat_id, "yes")
    await db.refresh(chat)
    assert chat.unread_for(freelancer.user_id) == 2
    assert chat.unread_for(client_user.user_id) == 1
    assert chat.last_message_id is not None

    assert await service.mark_read(freelancer.user_id, chat.chat_id) == 2
    await db.refresh(chat)
    assert chat.unread_for(freelancer.user_id) == 0
    assert chat.unread_for(client_user.user_id) == 1
    assert await count(db, Message, Message.is_read == False) == 1


@pytest.mark.asyncio
async def test_history_is_paged_in_creation_order(db, client_user, freelancer):
    service = ChatService(db)
    chat = await service.start_chat(client_user, freelancer.user_id)
    for i in range(5):
        await service.send_message(client_user.user_id, chat.chat_id, f"m{i}")

    newest = await service.get_messages(freelancer, chat.chat_id, page=1, limit=2)
    older = await service.get_messages(freelancer, chat.chat_id, page=2, limit=2)
    assert [m.content for m in newest] == ["m3", "m4"]
    assert [m.content for m in older] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_only_participants_can_use_a_chat(db, client_user, freelancer, other_freelancer):
    service = ChatService(db)
    chat = await service.start_chat(client_user, freelancer.user_id)

    with pytest.raises(NotAParticipantError):
        await service.send_message(other_freelancer.user_id, chat.chat_id, "let me in")
    with pytest.raises(NotAParticipantError):
        await service.get_messages(other_freelancer, chat.chat_id)
    with pytest.raises(NotFoundError):
        await service.send_message(client_user.user_id, "missing", "hello")
    with pytest.raises(InvalidInputError):
        await service.send_message(client_user.user_id, chat.chat_id, "x" * 5001)
    with pytest.raises(InvalidInputError):
        await service.send_message(client_user.user_id, chat.chat_id, "fake", "system")


@pytest.mark.asyncio
async def test_offline_recipient_gets_stored_notification(db, client_user, freelancer):
    registry = ConnectionRegistry()
    service = ChatService(db, registry)
    chat = await service.start_chat(client_user, freelancer.user_id)

    await service.send_message(client_user.user_id, chat.chat_id, "offline ping")
    assert await count(db, Notification, Notification.user_id == freelancer.user_id) == 1

    bob = FakeConnection()
    registry.register(freelancer.user_id, bob)
    await service.send_message(client_user.user_id, chat.chat_id, "online ping")
    assert await count(db, Notification, Notification.user_id == freelancer.user_id) == 1
    [live] = bob.events("notification:message")
    assert live["data"]["chat_id"] == chat.chat_id
    assert live["data"]["message"]["content"] == "online ping"
    assert live["data"]["sender"] == "alice"


@pytest.mark.asyncio
async def test_room_members_receive_messages_and_read_receipts(db, client_user, freelancer):
    registry = ConnectionRegistry()
    alice, bob = FakeConnection(), FakeConnection()
    registry.register(client_user.user_id, alice)
    registry.register(freelancer.user_id, bob)
    service = ChatService(db, registry)

    chat = await service.start_chat(client_user, freelancer.user_id)
    assert registry.room_members(room_for(chat.chat_id)) == {client_user.user_id, freelancer.user_id}

    message = await service.send_message(client_user.user_id, chat.chat_id, "hello")
    [received] = bob.events("message:received")
    assert received["data"]["message"]["message_id"] == message.message_id

    await service.mark_read(freelancer.user_id, chat.chat_id)
    [seen] = alice.events("message:seen")
    assert seen["data"] == {"chat_id": chat.chat_id, "read_by": freelancer.user_id}


@pytest.mark.asyncio
async def test_delete_own_message_only(db, client_user, freelancer):
    registry = ConnectionRegistry()
    bob = FakeConnection()
    registry.register(freelancer.user_id, bob)
    service = ChatService(db, registry)
    chat = await service.start_chat(client_user, freelancer.user_id)
    message = await service.send_message(client_user.user_id, chat.chat_id, "oops")

    with pytest.raises(ForbiddenError):
        await service.delete_message(freelancer, message.message_id)

    deleted = await service.delete_message(client_user, message.message_id)
    assert deleted.is_deleted is True
    assert bob.events("message:deleted")[0]["data"]["message_id"] == message.message_id


# --- Realtime events ---

@pytest.mark.asyncio
async def test_connect_and_disconnect_broadcast_presence(db, client_user, freelancer):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    chat = await ChatService(db).start_chat(client_user, freelancer.user_id)

    alice, bob = FakeConnection(), FakeConnection()
    await realtime.on_connect(client_user, alice)
    await realtime.on_connect(freelancer, bob)

    assert registry.room_members(room_for(chat.chat_id)) == {client_user.user_id, freelancer.user_id}
    assert alice.events("user:online")[0]["data"] == {"user_id": freelancer.user_id}
    assert bob.events("user:online") == []
    await db.refresh(freelancer)
    assert freelancer.is_online is True

    await realtime.on_disconnect(freelancer.user_id, bob)
    [offline] = alice.events("user:offline")
    assert offline["data"]["user_id"] == freelancer.user_id
    assert "last_seen" in offline["data"]
    await db.refresh(freelancer)
    assert freelancer.is_online is False


@pytest.mark.asyncio
async def test_reconnect_keeps_user_online(db, freelancer, client_user):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    old, new, alice = FakeConnection(), FakeConnection(), FakeConnection()
    await realtime.on_connect(client_user, alice)
    await realtime.on_connect(freelancer, old)
    await realtime.on_connect(freelancer, new)

    await realtime.on_disconnect(freelancer.user_id, old)
    assert registry.is_user_online(freelancer.user_id)
    assert alice.events("user:offline") == []


@pytest.mark.asyncio
async def test_failed_connect_leaves_no_registration(db, freelancer, monkeypatch):
    freelancer_id = freelancer.user_id
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)

    async def failing_set_presence(self, user_id, is_online):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    monkeypatch.setattr(UserRepository, "set_presence", failing_set_presence)
    with pytest.raises(OperationalError):
        await realtime.on_connect(freelancer, FakeConnection())

    assert registry.is_user_online(freelancer_id) is False
    user = (await db.execute(select(User).where(User.user_id == freelancer_id))).scalars().one()
    assert user.is_online is False


@pytest.mark.asyncio
async def test_storage_error_on_a_frame_keeps_the_socket_usable(db, client_user, freelancer, monkeypatch):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    chat_id = (await ChatService(db).start_chat(client_user, freelancer.user_id)).chat_id
    alice, bob = FakeConnection(), FakeConnection()
    await realtime.on_connect(client_user, alice)
    await realtime.on_connect(freelancer, bob)

    async def failing_save_message(self, chat_id, sender_id, content, message_type):
        raise OperationalError("INSERT INTO messages", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ChatRepository, "save_message", failing_save_message)
    await realtime.handle_event(client_user, {"event": "message:send", "data": {"chat_id": chat_id, "content": "hi"}})

    assert alice.events("error")[-1]["data"] == {"error": "InternalError", "message": "Something went wrong"}
    assert bob.events("message:received") == []
    assert await count(db, Message) == 0

    monkeypatch.undo()
    await realtime.handle_event(client_user, {"event": "typing:start", "data": {"chat_id": chat_id}})
    assert bob.events("typing:update")[0]["data"]["user_name"] == "alice"
    await realtime.handle_event(client_user, {"event": "message:send", "data": {"chat_id": chat_id, "content": "hi"}})
    assert bob.events("message:received")[0]["data"]["message"]["content"] == "hi"


@pytest.mark.asyncio
async def test_typing_is_not_echoed_to_sender(db, client_user, freelancer):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    chat = await ChatService(db).start_chat(client_user, freelancer.user_id)
    alice, bob = FakeConnection(), FakeConnection()
    await realtime.on_connect(client_user, alice)
    await realtime.on_connect(freelancer, bob)

    await realtime.handle_event(client_user, {"event": "typing:start", "data": {"chat_id": chat.chat_id}})

    assert alice.events("typing:update") == []
    [typing] = bob.events("typing:update")
    assert typing["data"]["is_typing"] is True
    assert typing["data"]["user_id"] == client_user.user_id


@pytest.mark.asyncio
async def test_message_send_event_and_error_frames(db, client_user, freelancer, other_freelancer):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    chat = await ChatService(db).start_chat(client_user, freelancer.user_id)
    alice, carol = FakeConnection(), FakeConnection()
    await realtime.on_connect(client_user, alice)
    await realtime.on_connect(other_freelancer, carol)

    await realtime.handle_event(
        client_user, {"event": "message:send", "data": {"chat_id": chat.chat_id, "content": "hey"}}
    )
    assert alice.events("message:received")[0]["data"]["message"]["content"] == "hey"
    # bob is offline
    assert await count(db, Notification, Notification.user_id == freelancer.user_id) == 1

    await realtime.handle_event(
        other_freelancer, {"event": "message:send", "data": {"chat_id": chat.chat_id, "content": "intrude"}}
    )
    assert carol.events("error")[-1]["data"]["error"] == "NotAParticipant"

    await realtime.handle_event(client_user, {"event": "message:send", "data": {"chat_id": chat.chat_id}})
    assert alice.events("error")[-1]["data"]["error"] == "ValidationError"

    await realtime.handle_event(client_user, {"event": "dance", "data": {}})
    assert "Unknown event" in alice.events("error")[-1]["data"]["message"]

    await realtime.handle_event(client_user, ["not", "an", "object"])
    assert len(alice.events("error")) == 3


@pytest.mark.asyncio
async def test_notification_relay(db, client_user, freelancer):
    registry = ConnectionRegistry()
    realtime = RealtimeService(db, registry)
    alice = FakeConnection()
    await realtime.on_connect(client_user, alice)

    # offline: stored
    await realtime.handle_event(client_user, {
        "event": "notification:send",
        "data": {"recipient_id": freelancer.user_id, "notification": {"title": "Check the brief"}},
    })
    stored = (await db.execute(
        select(Notification).where(Notification.user_id == freelancer.user_id)
    )).scalars().one()
    assert stored.title == "Check the brief"

    # online: live
    bob = FakeConnection()
    await realtime.on_connect(freelancer, bob)
    await realtime.handle_event(client_user, {
        "event": "notification:send",
        "data": {"recipient_id": freelancer.user_id, "notification": {"title": "Ping"}},
    })
    [live] = bob.events("notification:received")
    assert live["data"] == {"title": "Ping", "from_user_id": client_user.user_id}
    assert await count(db, Notification, Notification.user_id == freelancer.user_id) == 1
