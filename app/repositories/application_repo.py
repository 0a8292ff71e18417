# app/repositories/application_repo.py

from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import update

from app.models.application import Application

# 雇主仍可處理的狀態
OPEN_APPLICATION_STATUSES = ("pending", "shortlisted")

class ApplicationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_application(self, application: Application) -> Application:
        """
        Adds and flushes; the unique (job, freelancer) constraint fires here.
        The caller owns the commit.
        """
        self.db.add(application)
        await self.db.flush()
        return application

    async def get_application_by_id(self, application_id: str) -> Optional[Application]:
        stmt = (
            select(Application)
            .where(Application.application_id == application_id)
            .options(selectinload(Application.job))
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_application(self, job_id: str, freelancer_id: str) -> Optional[Application]:
        stmt = select(Application).where(
            Application.job_id == job_id,
            Application.freelancer_id == freelancer_id,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_accepted_application(self, job_id: str) -> Optional[Application]:
        stmt = select(Application).where(
            Application.job_id == job_id,
            Application.status == "accepted",
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_by_job(self, job_id: str) -> List[Application]:
        stmt = (
            select(Application)
            .where(Application.job_id == job_id)
            .order_by(Application.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_by_freelancer(self, freelancer_id: str, status: Optional[str] = None) -> List[Application]:
        stmt = select(Application).where(Application.freelancer_id == freelancer_id)
        if status:
            stmt = stmt.where(Application.status == status)
        stmt = stmt.order_by(Application.created_at.desc())
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def set_status(self, application_id: str, from_statuses, new_status: str, notes: Optional[str] = None) -> bool:
        """
        Compare-and-swap on the application status. Stamps accepted_at / rejected_at.
        """
        values = {"status": new_status}
        if notes is not None:
            values["client_notes"] = notes
        if new_status == "accepted":
            values["accepted_at"] = datetime.now()
        elif new_status == "rejected":
            values["rejected_at"] = datetime.now()

        stmt = (
            update(Application)
            .where(
                Application.application_id == application_id,
                Application.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def reject_open_applications(self, job_id: str, except_application_id: Optional[str] = None) -> int:
        """
        Reject every still-open application of the job (bar one). Returns how many moved.
        """
        stmt = update(Application).where(
            Application.job_id == job_id,
            Application.status.in_(OPEN_APPLICATION_STATUSES),
        )
        if except_application_id:
            stmt = stmt.where(Application.application_id != except_application_id)
        stmt = stmt.values(status="rejected", rejected_at=datetime.now()).execution_options(
            synchronize_session=False
        )
        result = await self.db.execute(stmt)
        return result.rowcount
