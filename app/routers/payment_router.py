# app/routers/payment_router.py

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.core.database import get_db
from app.core.security import get_current_user, require_role
from app.models.user import User
from app.schemas.transaction_schema import (
    BalanceOut, EarningsSummaryOut, PaginatedTransactionsOut, TransactionOut, WithdrawalCreate,
)
from app.services.ledger_service import LedgerService

router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)

def get_ledger_service(db: AsyncSession = Depends(get_db)) -> LedgerService:
    return LedgerService(db)

@router.get("/balance", response_model=BalanceOut, summary="My available balance")
async def api_get_balance(
    service: LedgerService = Depends(get_ledger_service),
    current_user: User = Depends(require_role("freelancer"))
):
    """
    Lifetime net earnings minus pending and completed withdrawals.
    """
    balance = await service.compute_available_balance(current_user.user_id)
    return BalanceOut(freelancer_id=current_user.user_id, available_balance=balance)

@router.get("/earnings", response_model=EarningsSummaryOut, summary="My earnings summary")
async def api_get_earnings(
    service: LedgerService = Depends(get_ledger_service),
    current_user: User = Depends(require_role("freelancer"))
):
    return await service.get_earnings_summary(current_user.user_id)

@router.get("/transactions", response_model=PaginatedTransactionsOut, summary="My transactions")
async def api_list_transactions(
    type: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: LedgerService = Depends(get_ledger_service),
    current_user: User = Depends(get_current_user)
):
    return await service.list_transactions(current_user, type, status_filter, page, limit)

@router.post(
    "/withdraw",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request a withdrawal"
)
async def api_request_withdrawal(
    withdrawal: WithdrawalCreate,
    service: LedgerService = Depends(get_ledger_service),
    current_user: User = Depends(get_current_user)
):
    """
    (Freelancer) Reserve part of the available balance as a pending withdrawal
    until an admin approves or rejects it.
    """
    return await service.request_withdrawal(current_user, withdrawal.amount, withdrawal.payment_method)
