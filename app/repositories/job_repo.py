# app/repositories/job_repo.py

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update

from app.models.job import Job, JobInvite

logger = logging.getLogger(__name__)

class JobRepository:
    """
    Persistence for jobs and their invites.

    Status changes go through compare-and-swap updates (UPDATE ... WHERE status = ?)
    and report whether the row was actually moved, so two concurrent callers can
    never both win the same transition.
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_job(self, job: Job) -> Job:
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def get_job_by_id(self, job_id: str) -> Optional[Job]:
        stmt = select(Job).where(Job.job_id == job_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def refresh(self, job: Job) -> Job:
        await self.db.refresh(job)
        return job

    async def _transition(self, job_id: str, from_statuses: List[str], **values) -> bool:
        stmt = (
            update(Job)
            .where(Job.job_id == job_id, Job.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        moved = result.rowcount == 1
        if not moved:
            logger.info(f"Job {job_id} transition from {from_statuses} to {values.get('status')} lost the race or is invalid")
        return moved

    async def increment_applications_if_open(self, job_id: str) -> bool:
        """
        applications_count += 1, only while the job is open
        """
        return await self._transition(
            job_id, ["open"], applications_count=Job.applications_count + 1
        )

    async def decrement_applications(self, job_id: str) -> None:
        stmt = (
            update(Job)
            .where(Job.job_id == job_id, Job.applications_count > 0)
            .values(applications_count=Job.applications_count - 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def mark_hired(self, job_id: str, freelancer_id: str) -> bool:
        """
        open -> in-progress with the hired freelancer. False if the job is no longer open.
        """
        return await self._transition(
            job_id, ["open"],
            status="in-progress",
            hired_freelancer_id=freelancer_id,
            hired_at=datetime.now(),
        )

    async def mark_completed(self, job_id: str, approve_submission: bool) -> bool:
        values = dict(status="completed", completed_at=datetime.now(), payment_status="released")
        if approve_submission:
            values["submission_status"] = "approved"
        return await self._transition(job_id, ["in-progress"], **values)

    async def mark_status(self, job_id: str, from_statuses: List[str], new_status: str) -> bool:
        return await self._transition(job_id, from_statuses, status=new_status)

    async def set_submission(self, job_id: str, description: str, attachments: list) -> bool:
        """
        Record a (re)submission. Only while in progress and nothing is pending or approved.
        """
        stmt = (
            update(Job)
            .where(
                Job.job_id == job_id,
                Job.status == "in-progress",
                (Job.submission_status.is_(None)) | (Job.submission_status == "rejected"),
            )
            .values(
                submission_description=description,
                submission_attachments=attachments,
                submission_status="pending",
                submitted_at=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def reject_submission(self, job_id: str) -> bool:
        stmt = (
            update(Job)
            .where(Job.job_id == job_id, Job.status == "in-progress", Job.submission_status == "pending")
            .values(submission_status="rejected")
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    # --- Invites ---

    async def get_invite(self, job_id: str, freelancer_id: str) -> Optional[JobInvite]:
        stmt = select(JobInvite).where(
            JobInvite.job_id == job_id,
            JobInvite.freelancer_id == freelancer_id,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def add_invite(self, invite: JobInvite) -> JobInvite:
        """
        Adds and flushes; the unique (job, freelancer) constraint fires here.
        """
        self.db.add(invite)
        await self.db.flush()
        return invite

    async def respond_to_invite(self, invite_id: str, new_status: str) -> bool:
        stmt = (
            update(JobInvite)
            .where(JobInvite.invite_id == invite_id, JobInvite.status == "pending")
            .values(status=new_status, responded_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
