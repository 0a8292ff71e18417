# app/services/withdrawal_service.py
# 管理員審核提領 (包在 LedgerService 的提領操作外層)

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ForbiddenError, InvalidInputError
from app.models.transaction import Transaction
from app.models.user import User
from app.repositories.transaction_repo import TransactionRepository
from app.schemas.transaction_schema import TransactionOut, WithdrawalListOut
from app.services.ledger_service import LedgerService, page_count

logger = logging.getLogger(__name__)

WITHDRAWAL_STATUS_FILTERS = ("all", "pending", "completed", "failed", "cancelled")

class WithdrawalService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)
        self.transaction_repo = TransactionRepository(db)

    @staticmethod
    def _ensure_admin(user: User):
        if user.role != "admin":
            raise ForbiddenError("Admin access required")

    async def approve(self, admin: User, transaction_id: str) -> Transaction:
        self._ensure_admin(admin)
        transaction = await self.ledger.approve_withdrawal(transaction_id)
        logger.info(f"Admin {admin.user_id} approved withdrawal {transaction_id}")
        return transaction

    async def reject(self, admin: User, transaction_id: str, reason: Optional[str] = None) -> Transaction:
        self._ensure_admin(admin)
        transaction = await self.ledger.reject_withdrawal(transaction_id, reason)
        logger.info(f"Admin {admin.user_id} rejected withdrawal {transaction_id}")
        return transaction

    async def list_withdrawals(
        self,
        admin: User,
        status: str = "pending",
        page: int = 1,
        limit: Optional[int] = None,
    ) -> WithdrawalListOut:
        """
        Withdrawals filtered by status ("all" disables the filter). pending_count
        ignores the filter so the dashboard badge stays correct on every tab.
        """
        self._ensure_admin(admin)
        if status not in WITHDRAWAL_STATUS_FILTERS:
            raise InvalidInputError(f"Unknown status filter: {status}")
        limit = limit or settings.DEFAULT_PAGE_SIZE

        items, total = await self.transaction_repo.paginate(
            page, limit, type_="withdrawal", status=None if status == "all" else status
        )
        pending_count = await self.transaction_repo.count("withdrawal", "pending")
        return WithdrawalListOut(
            items=[TransactionOut.model_validate(t) for t in items],
            total=total,
            page=page,
            pages=page_count(total, limit),
            pending_count=pending_count,
        )
