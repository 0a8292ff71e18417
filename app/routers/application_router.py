# app/routers/application_router.py

from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.core.security import get_current_user
from app.models.user import User
from app.routers.job_router import get_application_service
from app.schemas.application_schema import ApplicationOut, ApplicationStatusUpdate, ApplicationDecisionOut
from app.services.application_service import ApplicationService

router = APIRouter(
    prefix="/applications",
    tags=["Applications"]
)

@router.get("/my", response_model=List[ApplicationOut], summary="My applications")
async def api_get_my_applications(
    status: Optional[str] = Query(None),
    service: ApplicationService = Depends(get_application_service),
    current_user: User = Depends(get_current_user)
):
    return await service.list_my_applications(current_user, status)

@router.patch("/{application_id}/status", response_model=ApplicationDecisionOut, summary="Decide on an application")
async def api_update_application_status(
    application_id: str,
    status_data: ApplicationStatusUpdate,
    service: ApplicationService = Depends(get_application_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Client) Shortlist, reject or accept.

    Accepting hires the freelancer, rejects the other applications and opens
    a chat with them. If the chat could not be opened the hire still stands
    and `warnings` says so.
    """
    decision = await service.decide_application(
        current_user, application_id, status_data.status, status_data.notes
    )
    return ApplicationDecisionOut(
        application=ApplicationOut.model_validate(decision.application),
        chat_id=decision.chat.chat_id if decision.chat else None,
        warnings=decision.warnings,
    )

@router.post("/{application_id}/withdraw", response_model=ApplicationOut, summary="Withdraw my application")
async def api_withdraw_application(
    application_id: str,
    service: ApplicationService = Depends(get_application_service),
    current_user: User = Depends(get_current_user)
):
    return await service.withdraw_application(current_user, application_id)
