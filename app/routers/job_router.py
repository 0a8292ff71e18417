# app/routers/job_router.py

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.core.database import get_db
from app.core.security import get_current_user
from app.core.websocket_manager import ConnectionRegistry, get_connections
from app.models.user import User
from app.schemas.application_schema import ApplicationCreate, ApplicationOut
from app.schemas.job_schema import (
    JobCreate, JobOut, WorkSubmission, SubmissionReject, InviteCreate, InviteResponse, InviteOut,
)
from app.services.application_service import ApplicationService
from app.services.job_service import JobService

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"]
)

def get_job_service(db: AsyncSession = Depends(get_db)) -> JobService:
    return JobService(db)

def get_application_service(
    db: AsyncSession = Depends(get_db),
    connections: ConnectionRegistry = Depends(get_connections),
) -> ApplicationService:
    return ApplicationService(db, connections)

@router.post("", response_model=JobOut, status_code=status.HTTP_201_CREATED, summary="Post a job")
async def api_create_job(
    job_data: JobCreate,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Client) Post a new job. The required skill must exist.
    """
    return await service.create_job(current_user, job_data)

@router.get("/{job_id}", response_model=JobOut, summary="Job details")
async def api_get_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.get_job(job_id)

@router.post(
    "/{job_id}/apply",
    response_model=ApplicationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Apply for a job"
)
async def api_apply_for_job(
    job_id: str,
    application_data: ApplicationCreate,
    service: ApplicationService = Depends(get_application_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Freelancer) Apply for an open job. Requires a passed quiz for the job's skill;
    otherwise fails with SkillNotVerified and the skill_id to take the quiz for.
    """
    return await service.apply_for_job(current_user, job_id, application_data)

@router.get("/{job_id}/applications", response_model=List[ApplicationOut], summary="Applications of my job")
async def api_list_job_applications(
    job_id: str,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.list_job_applications(current_user, job_id)

@router.post("/{job_id}/submit", response_model=JobOut, summary="Submit work")
async def api_submit_work(
    job_id: str,
    submission: WorkSubmission,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Hired freelancer) Deliver work for review. Allowed again after a rejection.
    """
    return await service.submit_work(current_user, job_id, submission)

@router.post("/{job_id}/complete", response_model=JobOut, summary="Complete job and release payment")
async def api_complete_job(
    job_id: str,
    force: bool = Query(False, description="complete even without a pending submission"),
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Client) Approve the submission, complete the job and pay the freelancer
    (minus the platform commission).
    """
    return await service.complete_job(current_user, job_id, force=force)

@router.post("/{job_id}/reject-submission", response_model=JobOut, summary="Reject the submitted work")
async def api_reject_submission(
    job_id: str,
    body: SubmissionReject,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.reject_submission(current_user, job_id, body.reason)

@router.post(
    "/{job_id}/invite",
    response_model=InviteOut,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a freelancer"
)
async def api_invite_freelancer(
    job_id: str,
    invite_data: InviteCreate,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.invite_freelancer(current_user, job_id, invite_data.freelancer_id, invite_data.message)

@router.post("/{job_id}/invite/respond", response_model=InviteOut, summary="Accept or decline an invite")
async def api_respond_to_invite(
    job_id: str,
    response: InviteResponse,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.respond_to_invite(current_user, job_id, response.accept)

@router.post("/{job_id}/cancel", response_model=JobOut, summary="Cancel an open job")
async def api_cancel_job(
    job_id: str,
    service: JobService = Depends(get_job_service),
    current_user: User = Depends(get_current_user)
):
    return await service.cancel_job(current_user, job_id)
