# app/services/application_service.py
# 應徵職缺，以及雇主對應徵的處理 (含錄取 = 雇用)

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AppError, NotFoundError, ForbiddenError, InvalidStateError, InvalidInputError,
    JobNotOpenError, SuspendedError, SkillNotVerifiedError, DuplicateApplicationError,
)
from app.core.locks import job_locks
from app.core.websocket_manager import ConnectionRegistry
from app.models.application import Application
from app.models.message import Chat
from app.models.user import User
from app.repositories.application_repo import ApplicationRepository, OPEN_APPLICATION_STATUSES
from app.repositories.job_repo import JobRepository
from app.repositories.skill_repo import SkillRepository
from app.schemas.application_schema import ApplicationCreate
from app.services.chat_service import ChatService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

DECISIONS = ("shortlisted", "accepted", "rejected")


@dataclass
class ApplicationDecision:
    application: Application
    chat: Optional[Chat] = None
    # 次要步驟失敗 (決定本身已生效)
    warnings: List[str] = field(default_factory=list)


class ApplicationService:
    def __init__(self, db: AsyncSession, connections: Optional[ConnectionRegistry] = None):
        self.db = db
        self.connections = connections
        self.application_repo = ApplicationRepository(db)
        self.job_repo = JobRepository(db)
        self.skill_repo = SkillRepository(db)
        self.notification_service = NotificationService(db)

    async def _get_application(self, application_id: str) -> Application:
        application = await self.application_repo.get_application_by_id(application_id)
        if not application:
            raise NotFoundError("Application not found")
        return application

    async def apply_for_job(self, freelancer: User, job_id: str, data: ApplicationCreate) -> Application:
        """
        接案者應徵職缺。

        檢查順序：職缺存在且開放 -> 應徵者為有效的接案者 -> 已通過該職缺的技能測驗
        -> 尚未應徵過。新增應徵與 applications_count +1 在同一個交易。
        """
        if freelancer.role != "freelancer":
            raise ForbiddenError("Only freelancers can apply for jobs")

        job = await self.job_repo.get_job_by_id(job_id)
        if not job:
            raise NotFoundError("Job not found")
        if job.status != "open":
            raise JobNotOpenError()
        if freelancer.is_suspended:
            raise SuspendedError()
        if not await self.skill_repo.has_passed_skill(freelancer.user_id, job.skill_id):
            raise SkillNotVerifiedError(skill_id=job.skill_id)
        if await self.application_repo.get_application(job_id, freelancer.user_id):
            raise DuplicateApplicationError()

        async with job_locks.hold(job_id):
            try:
                application = await self.application_repo.add_application(
                    Application(
                        job_id=job_id,
                        freelancer_id=freelancer.user_id,
                        cover_letter=data.cover_letter,
                        proposed_budget=data.proposed_budget,
                        estimated_duration=data.estimated_duration,
                        status="pending",
                    )
                )
                if not await self.job_repo.increment_applications_if_open(job_id):
                    raise JobNotOpenError()

                # 有待回覆的邀請 -> 應徵即視為接受邀請
                invite = await self.job_repo.get_invite(job_id, freelancer.user_id)
                if invite and invite.status == "pending":
                    await self.job_repo.respond_to_invite(invite.invite_id, "accepted")

                await self.notification_service.create_notification(
                    user_id=job.client_id,
                    title=f"New application for: {job.title}",
                    link_url=f"/jobs/{job_id}/applications",
                    commit=False,
                )
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise DuplicateApplicationError()
            except AppError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Application for job {job_id} failed: {e}", exc_info=True)
                raise

        await self.db.refresh(application)
        logger.info(f"Freelancer {freelancer.user_id} applied for job {job_id}")
        return application

    async def decide_application(
        self,
        client: User,
        application_id: str,
        decision: str,
        notes: Optional[str] = None,
    ) -> ApplicationDecision:
        """
        雇主處理應徵：入選 / 婉拒 / 錄取。

        錄取 = 雇用：職缺 open -> in-progress (CAS，同一職缺只有一個錄取會成功)，
        其餘未決的應徵全部婉拒，一次 commit。之後才開聊天室；
        聊天室失敗不影響雇用，只記在 warnings。
        """
        if decision not in DECISIONS:
            raise InvalidInputError(f"Unknown decision: {decision}")

        application = await self._get_application(application_id)
        job = application.job
        if job.client_id != client.user_id:
            raise ForbiddenError("Not authorized to decide on this application")
        if application.status not in OPEN_APPLICATION_STATUSES:
            raise InvalidStateError(f"Application is already {application.status}")

        if decision != "accepted":
            if decision == "shortlisted" and job.status != "open":
                raise JobNotOpenError()
            if not await self.application_repo.set_status(
                application_id, OPEN_APPLICATION_STATUSES, decision, notes
            ):
                await self.db.rollback()
                raise InvalidStateError("Application changed while deciding, please retry")
            try:
                await self.db.commit()
            except SQLAlchemyError:
                await self.db.rollback()
                raise
            await self.db.refresh(application)
            return ApplicationDecision(application=application)

        return await self._hire(client, application, notes)

    async def _hire(self, client: User, application: Application, notes: Optional[str]) -> ApplicationDecision:
        job = application.job
        async with job_locks.hold(job.job_id):
            try:
                # 步驟 1: 搶下職缺 (CAS)，第二個錄取會在這裡失敗
                if not await self.job_repo.mark_hired(job.job_id, application.freelancer_id):
                    raise InvalidStateError("This job is no longer open for hiring")
                # 步驟 2: 錄取這份應徵
                if not await self.application_repo.set_status(
                    application.application_id, OPEN_APPLICATION_STATUSES, "accepted", notes
                ):
                    raise InvalidStateError("Application changed while deciding, please retry")
                # 步驟 3: 其餘應徵一律婉拒
                rejected = await self.application_repo.reject_open_applications(
                    job.job_id, except_application_id=application.application_id
                )
                await self.notification_service.create_notification(
                    user_id=application.freelancer_id,
                    title=f"You've been hired for: {job.title}",
                    link_url=f"/jobs/{job.job_id}",
                    commit=False,
                )
                await self.db.commit()
            except AppError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Hiring on job {job.job_id} failed: {e}", exc_info=True)
                raise

        await self.db.refresh(application)
        await self.job_repo.refresh(job)
        logger.info(
            f"Job {job.job_id}: hired {application.freelancer_id}, auto-rejected {rejected} application(s)"
        )

        # 先取出純值：聊天室步驟失敗會 rollback，ORM 物件隨之過期
        job_id, client_id, freelancer_id = job.job_id, client.user_id, application.freelancer_id
        result = ApplicationDecision(application=application)
        try:
            chat_service = ChatService(self.db, self.connections)
            result.chat = await chat_service.open_hire_chat(client_id, freelancer_id, job)
        except Exception as e:
            logger.warning(f"Hire on job {job_id} committed but opening the chat failed: {e}", exc_info=True)
            result.warnings.append("Freelancer hired, but the chat could not be opened")
            await self.job_repo.refresh(job)
        await self.db.refresh(application)
        return result

    async def withdraw_application(self, freelancer: User, application_id: str) -> Application:
        application = await self._get_application(application_id)
        if application.freelancer_id != freelancer.user_id:
            raise ForbiddenError("Not authorized to withdraw this application")
        if application.status == "accepted":
            raise InvalidStateError("An accepted application cannot be withdrawn")
        if application.status not in OPEN_APPLICATION_STATUSES:
            raise InvalidStateError(f"Application is already {application.status}")

        async with job_locks.hold(application.job_id):
            try:
                if not await self.application_repo.set_status(
                    application_id, OPEN_APPLICATION_STATUSES, "withdrawn"
                ):
                    raise InvalidStateError("Application changed while withdrawing, please retry")
                await self.job_repo.decrement_applications(application.job_id)
                await self.db.commit()
            except AppError:
                await self.db.rollback()
                raise

        await self.db.refresh(application)
        return application

    async def list_my_applications(self, freelancer: User, status: Optional[str] = None) -> List[Application]:
        return await self.application_repo.list_by_freelancer(freelancer.user_id, status)
