# app/routers/admin_router.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.security import require_role
from app.models.user import User
from app.schemas.job_schema import JobOut
from app.schemas.transaction_schema import (
    CommissionReportOut, PaginatedTransactionsOut, TransactionOut, TransactionStatsOut,
    WithdrawalListOut, WithdrawalReject,
)
from app.services.job_service import JobService
from app.services.ledger_service import LedgerService
from app.services.withdrawal_service import WithdrawalService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"]
)

def get_withdrawal_service(db: AsyncSession = Depends(get_db)) -> WithdrawalService:
    return WithdrawalService(db)

@router.get("/withdrawals", response_model=WithdrawalListOut, summary="List withdrawals")
async def api_list_withdrawals(
    status: str = Query("pending", description="pending | completed | failed | cancelled | all"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: WithdrawalService = Depends(get_withdrawal_service),
    admin: User = Depends(require_role("admin"))
):
    return await service.list_withdrawals(admin, status, page, limit)

@router.post("/withdrawals/{transaction_id}/approve", response_model=TransactionOut, summary="Approve a withdrawal")
async def api_approve_withdrawal(
    transaction_id: str,
    service: WithdrawalService = Depends(get_withdrawal_service),
    admin: User = Depends(require_role("admin"))
):
    """
    Pending -> completed. A second call fails with AlreadyResolved.
    """
    return await service.approve(admin, transaction_id)

@router.post("/withdrawals/{transaction_id}/reject", response_model=TransactionOut, summary="Reject a withdrawal")
async def api_reject_withdrawal(
    transaction_id: str,
    body: Optional[WithdrawalReject] = None,
    service: WithdrawalService = Depends(get_withdrawal_service),
    admin: User = Depends(require_role("admin"))
):
    """
    Pending -> failed. The amount becomes available to the freelancer again.
    """
    return await service.reject(admin, transaction_id, body.reason if body else None)

@router.get("/transactions", response_model=PaginatedTransactionsOut, summary="All transactions")
async def api_list_all_transactions(
    type: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role("admin"))
):
    return await LedgerService(db).list_all_transactions(type, status_filter, page, limit)

@router.get("/transactions/stats", response_model=TransactionStatsOut, summary="Transaction totals")
async def api_transaction_stats(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role("admin"))
):
    """
    Payment volume (all time and this month), commission revenue and the number of ledger entries.
    """
    return await LedgerService(db).transaction_stats()

@router.get("/commissions", response_model=CommissionReportOut, summary="Platform commission report")
async def api_commission_report(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role("admin"))
):
    return await LedgerService(db).commission_report(page, limit)

@router.post("/jobs/{job_id}/close", response_model=JobOut, summary="Close a job")
async def api_close_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_role("admin"))
):
    return await JobService(db).close_job(admin, job_id)
