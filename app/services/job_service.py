# app/services/job_service.py

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal
from typing import List, Optional
import logging

from app.core.exceptions import (
    AppError, NotFoundError, ForbiddenError, InvalidStateError, InvalidInputError,
    InvalidPaymentAmountError, JobNotOpenError, SuspendedError,
    AlreadyInvitedError, AlreadyAppliedError, NotPendingError,
)
from app.core.locks import job_locks
from app.models.application import Application
from app.models.job import Job, JobInvite
from app.models.user import User
from app.repositories.application_repo import ApplicationRepository
from app.repositories.job_repo import JobRepository
from app.repositories.skill_repo import SkillRepository
from app.repositories.user_repo import UserRepository
from app.schemas.job_schema import JobCreate, WorkSubmission
from app.services.ledger_service import LedgerService, to_money
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# 允許的職缺狀態轉換，其餘一律 InvalidState。
# completed / closed 為終止狀態。
VALID_JOB_TRANSITIONS = {
    "open": ["in-progress", "cancelled", "closed"],
    "in-progress": ["completed", "closed"],
    "cancelled": ["closed"],
    "completed": [],
    "closed": [],
}

def check_transition(job: Job, new_status: str) -> None:
    if new_status not in VALID_JOB_TRANSITIONS.get(job.status, []):
        raise InvalidStateError(f"Cannot move job from '{job.status}' to '{new_status}'")


class JobService:
    def __init__(self, db: AsyncSession, commission_rate: Optional[Decimal] = None):
        self.db = db
        self.job_repo = JobRepository(db)
        self.application_repo = ApplicationRepository(db)
        self.skill_repo = SkillRepository(db)
        self.user_repo = UserRepository(db)
        self.ledger = LedgerService(db, commission_rate=commission_rate)
        self.notification_service = NotificationService(db)

    # --- 共用 ---

    async def get_job(self, job_id: str) -> Job:
        job = await self.job_repo.get_job_by_id(job_id)
        if not job:
            raise NotFoundError("Job not found")
        return job

    async def _get_owned_job(self, client: User, job_id: str) -> Job:
        job = await self.get_job(job_id)
        if job.client_id != client.user_id:
            raise ForbiddenError("Not authorized to manage this job")
        return job

    async def _commit_or_rollback(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    # --- 刊登 ---

    async def create_job(self, client: User, data: JobCreate) -> Job:
        if client.role != "client":
            raise ForbiddenError("Only clients can post jobs")
        if client.is_suspended:
            raise SuspendedError()
        if data.budget_min > data.budget_max:
            raise InvalidInputError("budget_min cannot exceed budget_max")
        if not await self.skill_repo.skill_exists(data.skill_id):
            raise NotFoundError("Skill not found", skill_id=data.skill_id)

        job = Job(
            client_id=client.user_id,
            skill_id=data.skill_id,
            title=data.title,
            description=data.description,
            budget_min=data.budget_min,
            budget_max=data.budget_max,
            budget_type=data.budget_type,
            deadline=data.deadline,
            status="open",
            applications_count=0,
        )
        job = await self.job_repo.create_job(job)
        logger.info(f"Job {job.job_id} posted by {client.user_id}")
        return job

    async def list_job_applications(self, client: User, job_id: str) -> List[Application]:
        await self._get_owned_job(client, job_id)
        return await self.application_repo.list_by_job(job_id)

    # --- 交件 / 驗收 ---

    async def submit_work(self, freelancer: User, job_id: str, data: WorkSubmission) -> Job:
        job = await self.get_job(job_id)
        if job.hired_freelancer_id != freelancer.user_id:
            raise ForbiddenError("Only the hired freelancer can submit work")
        if job.status != "in-progress":
            raise InvalidStateError("Work can only be submitted while the job is in progress")
        if job.submission_status in ("pending", "approved"):
            raise InvalidStateError(f"A submission is already {job.submission_status}")

        attachments = [a.model_dump() for a in data.attachments]
        if not await self.job_repo.set_submission(job_id, data.description, attachments):
            await self.db.rollback()
            raise InvalidStateError("Job changed while submitting, please retry")

        await self.notification_service.create_notification(
            user_id=job.client_id,
            title=f"Work submitted for: {job.title}",
            link_url=f"/jobs/{job_id}",
            commit=False,
        )
        await self._commit_or_rollback()
        await self.job_repo.refresh(job)
        logger.info(f"Work submitted for job {job_id} by {freelancer.user_id}")
        return job

    async def _resolve_payment_amount(self, job: Job) -> Decimal:
        """
        The accepted application's proposed budget, else the fixed budget's maximum.
        Never zero.
        """
        accepted = await self.application_repo.get_accepted_application(job.job_id)
        if accepted and accepted.proposed_budget and to_money(accepted.proposed_budget) > 0:
            return to_money(accepted.proposed_budget)
        if job.budget_type == "fixed" and job.budget_max and to_money(job.budget_max) > 0:
            return to_money(job.budget_max)
        raise InvalidPaymentAmountError("Could not resolve a positive payment amount for this job")

    async def approve_submission(self, client: User, job_id: str, force: bool = False) -> Job:
        """
        驗收交件並結案，同時撥款。

        force=True 可在沒有待驗收交件時直接結案。
        狀態轉換、交件核准、兩筆帳務紀錄一起 commit。
        """
        job = await self._get_owned_job(client, job_id)
        check_transition(job, "completed")
        if not force and job.submission_status != "pending":
            raise InvalidStateError("There is no pending submission to approve")
        if not job.hired_freelancer_id:
            raise InvalidStateError("Job has no hired freelancer")

        amount = await self._resolve_payment_amount(job)
        has_submission = job.submission_status == "pending"

        async with job_locks.hold(job_id):
            try:
                # 步驟 1: in-progress -> completed，只有一個呼叫者會成功
                if not await self.job_repo.mark_completed(job_id, approve_submission=has_submission):
                    raise InvalidStateError("Job is no longer in progress")
                # 步驟 2: 付款 + 平台抽成，同一個交易
                await self.ledger.record_job_payment(job, job.hired_freelancer_id, amount, commit=False)
                await self.notification_service.create_notification(
                    user_id=job.hired_freelancer_id,
                    title=f"Payment released for: {job.title}",
                    link_url="/payments/earnings",
                    commit=False,
                )
                # 步驟 3: 一次 commit
                await self.db.commit()
            except AppError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Completing job {job_id} failed: {e}", exc_info=True)
                raise

        await self.job_repo.refresh(job)
        logger.info(f"Job {job_id} completed by {client.user_id}, paid {amount}")
        return job

    complete_job = approve_submission

    async def reject_submission(self, client: User, job_id: str, reason: Optional[str] = None) -> Job:
        job = await self._get_owned_job(client, job_id)
        if job.status != "in-progress" or job.submission_status != "pending":
            raise InvalidStateError("There is no pending submission to reject")
        if not await self.job_repo.reject_submission(job_id):
            await self.db.rollback()
            raise InvalidStateError("There is no pending submission to reject")

        await self.notification_service.create_notification(
            user_id=job.hired_freelancer_id,
            title=f"Submission rejected for: {job.title}",
            message=reason,
            link_url=f"/jobs/{job_id}",
            commit=False,
        )
        await self._commit_or_rollback()
        await self.job_repo.refresh(job)
        return job

    # --- 邀請 ---

    async def invite_freelancer(
        self, client: User, job_id: str, freelancer_id: str, message: Optional[str] = None
    ) -> JobInvite:
        job = await self._get_owned_job(client, job_id)
        if job.status != "open":
            raise JobNotOpenError()

        freelancer = await self.user_repo.get_user_by_id(freelancer_id)
        if not freelancer or freelancer.role != "freelancer":
            raise NotFoundError("Freelancer not found")
        if await self.application_repo.get_application(job_id, freelancer_id):
            raise AlreadyAppliedError()
        if await self.job_repo.get_invite(job_id, freelancer_id):
            raise AlreadyInvitedError()

        try:
            invite = await self.job_repo.add_invite(
                JobInvite(job_id=job_id, freelancer_id=freelancer_id, message=message, status="pending")
            )
            await self.notification_service.create_notification(
                user_id=freelancer_id,
                title=f"You've been invited to: {job.title}",
                message=message,
                link_url=f"/jobs/{job_id}",
                commit=False,
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyInvitedError()

        await self.db.refresh(invite)
        logger.info(f"Freelancer {freelancer_id} invited to job {job_id}")
        return invite

    async def respond_to_invite(self, freelancer: User, job_id: str, accept: bool) -> JobInvite:
        invite = await self.job_repo.get_invite(job_id, freelancer.user_id)
        if not invite:
            raise NotFoundError("Invite not found")
        if invite.status != "pending":
            raise NotPendingError()

        new_status = "accepted" if accept else "declined"
        if not await self.job_repo.respond_to_invite(invite.invite_id, new_status):
            await self.db.rollback()
            raise NotPendingError()
        await self._commit_or_rollback()
        await self.db.refresh(invite)
        return invite

    # --- 取消 / 關閉 ---

    async def cancel_job(self, client: User, job_id: str) -> Job:
        """
        open -> cancelled; still-open applications are rejected with it
        """
        job = await self._get_owned_job(client, job_id)
        check_transition(job, "cancelled")
        async with job_locks.hold(job_id):
            try:
                if not await self.job_repo.mark_status(job_id, ["open"], "cancelled"):
                    raise InvalidStateError("Only open jobs can be cancelled")
                rejected = await self.application_repo.reject_open_applications(job_id)
                await self.db.commit()
            except AppError:
                await self.db.rollback()
                raise
        await self.job_repo.refresh(job)
        logger.info(f"Job {job_id} cancelled, {rejected} application(s) rejected")
        return job

    async def close_job(self, admin: User, job_id: str) -> Job:
        if admin.role != "admin":
            raise ForbiddenError("Admin access required")
        job = await self.get_job(job_id)
        check_transition(job, "closed")
        if not await self.job_repo.mark_status(job_id, ["open", "in-progress", "cancelled"], "closed"):
            await self.db.rollback()
            raise InvalidStateError("Job can no longer be closed")
        await self._commit_or_rollback()
        await self.job_repo.refresh(job)
        logger.info(f"Job {job_id} closed by admin {admin.user_id}")
        return job
