"""
End-to-end checks through the HTTP layer: routing, auth, response shapes and
the error envelope.
"""
import asyncio

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from app.core.database import Base, get_db
from app.core.security import create_access_token
from app.core.websocket_manager import ConnectionRegistry
from app.main import app
from app.models.message import Chat, ordered_pair
from app.models.user import UserRoleEnum
from conftest import get_questions, make_user, pass_skill


def auth(user):
    token = create_access_token({"user_id": user.user_id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def api(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.connections = ConnectionRegistry()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_root_and_auth_required(api):
    response = await api.get("/")
    assert response.json()["status"] == "success"

    response = await api.get("/payments/balance")
    assert response.status_code == 401
    response = await api.get("/payments/balance", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_role_guard_uses_error_envelope(api, client_user):
    response = await api.get("/payments/balance", headers=auth(client_user))
    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Forbidden"


@pytest.mark.asyncio
async def test_job_to_payout_flow(api, db, client_user, freelancer, admin, skill):
    # post
    response = await api.post("/jobs", headers=auth(client_user), json={
        "title": "Build an API", "description": "FastAPI service", "skill_id": skill.skill_id,
        "budget_min": "500.00", "budget_max": "500.00",
    })
    assert response.status_code == 201
    job_id = response.json()["job_id"]
    assert response.json()["status"] == "open"

    proposal = {"cover_letter": "Hire me", "proposed_budget": "500.00", "estimated_duration": "1 week"}

    # apply before the quiz
    response = await api.post(f"/jobs/{job_id}/apply", headers=auth(freelancer), json=proposal)
    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "error": "SkillNotVerified",
        "message": "You must pass the skill test before applying for this job",
        "skill_id": skill.skill_id,
    }

    # take the quiz, then apply
    questions = await get_questions(db, skill)
    response = await api.post(f"/skills/{skill.skill_id}/verify", headers=auth(freelancer), json={
        "answers": [{"question_id": q.question_id, "selected_option": 0} for q in questions],
        "time_taken": 300,
    })
    assert response.status_code == 200
    assert response.json()["passed"] is True

    response = await api.post(f"/jobs/{job_id}/apply", headers=auth(freelancer), json=proposal)
    assert response.status_code == 201
    application_id = response.json()["application_id"]

    response = await api.post(f"/jobs/{job_id}/apply", headers=auth(freelancer), json=proposal)
    assert response.status_code == 409
    assert response.json()["error"] == "DuplicateApplication"

    # hire
    response = await api.patch(
        f"/applications/{application_id}/status", headers=auth(client_user), json={"status": "accepted"}
    )
    assert response.status_code == 200
    decision = response.json()
    assert decision["application"]["status"] == "accepted"
    assert decision["chat_id"] is not None
    assert decision["warnings"] == []

    # deliver and get paid
    response = await api.post(f"/jobs/{job_id}/submit", headers=auth(freelancer), json={"description": "Done"})
    assert response.json()["submission_status"] == "pending"
    response = await api.post(f"/jobs/{job_id}/complete", headers=auth(client_user))
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["payment_status"] == "released"

    response = await api.get("/payments/balance", headers=auth(freelancer))
    assert response.json()["available_balance"] == "495.00"

    # withdraw
    response = await api.post("/payments/withdraw", headers=auth(freelancer), json={"amount": "1000.00"})
    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientBalance"
    assert response.json()["available_balance"] == "495.00"

    response = await api.post("/payments/withdraw", headers=auth(freelancer), json={"amount": "200.00"})
    assert response.status_code == 201
    withdrawal_id = response.json()["transaction_id"]
    assert response.json()["status"] == "pending"

    response = await api.get("/payments/balance", headers=auth(freelancer))
    assert response.json()["available_balance"] == "295.00"

    # admin
    response = await api.get("/admin/withdrawals", headers=auth(admin))
    assert response.json()["pending_count"] == 1
    assert response.json()["total"] == 1

    response = await api.post(f"/admin/withdrawals/{withdrawal_id}/approve", headers=auth(admin))
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await api.post(f"/admin/withdrawals/{withdrawal_id}/approve", headers=auth(admin))
    assert response.status_code == 409
    assert response.json()["error"] == "AlreadyResolved"

    response = await api.get("/admin/commissions", headers=auth(admin))
    assert response.json()["total_commission"] == "5.00"

    response = await api.get("/admin/transactions/stats", headers=auth(admin))
    assert response.json()["total_volume"] == "500.00"
    assert response.json()["platform_revenue"] == "5.00"
    # payment, commission and the approved withdrawal
    assert response.json()["total_transactions"] == 3

    response = await api.get("/admin/transactions", headers=auth(admin), params={"type": "withdrawal"})
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["status"] == "completed"
    response = await api.get("/admin/transactions/stats", headers=auth(freelancer))
    assert response.status_code == 403

    response = await api.get("/payments/transactions", headers=auth(freelancer), params={"type": "payment"})
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["net_amount"] == "495.00"


@pytest.mark.asyncio
async def test_admin_routes_reject_other_roles(api, client_user):
    response = await api.get("/admin/withdrawals", headers=auth(client_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_chat_rest_endpoints(api, client_user, freelancer, other_freelancer):
    response = await api.post("/chat", headers=auth(client_user), json={"user_id": freelancer.user_id})
    assert response.status_code == 201
    chat_id = response.json()["chat_id"]

    response = await api.post(
        f"/chat/{chat_id}/messages", headers=auth(client_user),
        json={"content": "hello"},
    )
    assert response.status_code == 201
    assert response.json()["chat_id"] == chat_id
    assert response.json()["content"] == "hello"

    response = await api.get("/chat", headers=auth(freelancer))
    [chat] = response.json()
    assert chat["chat_id"] == chat_id
    assert chat["unread_count"] == 1

    response = await api.get(f"/chat/{chat_id}/messages", headers=auth(other_freelancer))
    assert response.status_code == 403
    assert response.json()["error"] == "NotAParticipant"


@pytest.mark.asyncio
async def test_offline_message_shows_up_in_notifications(api, client_user, freelancer):
    response = await api.post("/chat", headers=auth(client_user), json={"user_id": freelancer.user_id})
    chat_id = response.json()["chat_id"]
    await api.post(f"/chat/{chat_id}/messages", headers=auth(client_user), json={"content": "are you there?"})

    response = await api.get("/notifications/my", headers=auth(freelancer))
    assert response.status_code == 200
    assert response.json()["unread_count"] == 1
    [note] = response.json()["items"]
    assert note["title"] == "New message"
    assert note["link_url"] == f"/chat/{chat_id}"

    response = await api.patch(f"/notifications/{note['notification_id']}/read", headers=auth(client_user))
    assert response.status_code == 403

    response = await api.post("/notifications/read-all", headers=auth(freelancer))
    assert response.json() == {"success": True, "marked": 1}
    response = await api.get("/notifications/my", headers=auth(freelancer), params={"unread_only": True})
    assert response.json() == {"items": [], "unread_count": 0}


@pytest.mark.asyncio
async def test_invalid_job_body_is_rejected(api, client_user, skill):
    response = await api.post("/jobs", headers=auth(client_user), json={
        "title": "x", "description": "y", "skill_id": skill.skill_id,
        "budget_min": "900.00", "budget_max": "100.00",
    })
    assert response.status_code == 422


def test_websocket_messages_and_errors(database_url):
    engine = create_async_engine(database_url, poolclass=NullPool)
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def seed():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with factory() as session:
            alice = await make_user(session, UserRoleEnum.client, "alice")
            bob = await make_user(session, UserRoleEnum.freelancer, "bob")
            low, high = ordered_pair(alice.user_id, bob.user_id)
            chat = Chat(participant_low_id=low, participant_high_id=high)
            session.add(chat)
            await session.commit()
            return alice, bob, chat.chat_id

    alice, bob, chat_id = asyncio.run(seed())

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app) as client:
            token = create_access_token({"user_id": alice.user_id, "role": "client"})
            with client.websocket_connect(f"/chat/ws?token={token}") as ws:
                ws.send_json({"event": "message:send", "data": {"chat_id": chat_id, "content": "hi bob"}})
                frame = ws.receive_json()
                assert frame["event"] == "message:received"
                assert frame["data"]["message"]["content"] == "hi bob"

                ws.send_text("not json")
                assert ws.receive_json() == {
                    "event": "error", "data": {"error": "ValidationError", "message": "Invalid JSON"}
                }

                ws.send_json({"event": "chat:join", "data": {}})
                assert ws.receive_json()["data"]["message"] == "chat_id is required"
    finally:
        app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_expired_token_is_rejected(api, freelancer):
    token = create_access_token({"user_id": freelancer.user_id, "role": "freelancer"}, expires_minutes=-1)
    response = await api.get("/payments/balance", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
