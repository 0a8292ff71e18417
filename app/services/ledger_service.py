# app/services/ledger_service.py
# 平台抽成、職缺付款、餘額計算與提領。
# 可用餘額不落地，一律即時計算：
#   累計淨收入 (快取) - 提領總額 (pending + completed)

import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppError, NotFoundError, ForbiddenError, InvalidInputError, InvalidTypeError,
    InsufficientBalanceError, AlreadyResolvedError, InvalidPaymentAmountError, LedgerWriteError,
)
from app.core.locks import withdrawal_locks
from app.models.job import Job
from app.models.transaction import Transaction
from app.models.user import User
from app.repositories.transaction_repo import TransactionRepository
from app.repositories.user_repo import UserRepository
from app.schemas.transaction_schema import (
    TransactionOut, EarningsSummaryOut, MonthlyEarning, PaginatedTransactionsOut, CommissionReportOut,
    TransactionStatsOut,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
RESERVED_WITHDRAWAL_STATUSES = ("pending", "completed")


def to_money(value) -> Decimal:
    """Decimal rounded half-up to cents. Floats go through str() first."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class CommissionSplit(NamedTuple):
    commission: Decimal
    net_amount: Decimal


def apply_commission(amount, rate) -> CommissionSplit:
    """
    commission = amount x rate (half-up to cents), net = amount - commission.
    commission + net_amount == amount always holds exactly.
    """
    amount = to_money(amount)
    rate = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    if amount < 0:
        raise InvalidPaymentAmountError("Payment amount cannot be negative")
    if rate < 0 or rate > 1:
        raise InvalidInputError("Commission rate must be between 0 and 1")
    commission = (amount * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return CommissionSplit(commission=commission, net_amount=amount - commission)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


class LedgerService:
    def __init__(self, db: AsyncSession, commission_rate: Optional[Decimal] = None):
        self.db = db
        self.commission_rate = commission_rate if commission_rate is not None else settings.COMMISSION_RATE
        self.transaction_repo = TransactionRepository(db)
        self.user_repo = UserRepository(db)

    # --- 職缺付款 ---

    async def record_job_payment(
        self,
        job: Job,
        freelancer_id: str,
        amount,
        rate: Optional[Decimal] = None,
        commit: bool = True,
    ) -> Tuple[Transaction, Transaction]:
        """
        寫入付款 (雇主 -> 接案者) 與抽成 (接案者 -> 平台) 兩筆紀錄，並累加接案者的收入快取。

        全部成功或全部不寫。commit=False 時由呼叫端的交易負責 commit (驗收結案用)；
        寫入失敗時一律 rollback。
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidPaymentAmountError()
        rate = rate if rate is not None else self.commission_rate
        split = apply_commission(amount, rate)
        now = datetime.now()
        # rollback 會讓 job 過期，先取出純值
        job_id, title, client_id = job.job_id, job.title, job.client_id

        payment = Transaction(
            type="payment",
            amount=amount,
            status="completed",
            from_user_id=client_id,
            to_user_id=freelancer_id,
            job_id=job_id,
            description=f"Payment for job: {title}",
            commission_rate=rate,
            commission=split.commission,
            net_amount=split.net_amount,
            completed_at=now,
        )
        commission = Transaction(
            type="commission",
            amount=split.commission,
            status="completed",
            from_user_id=freelancer_id,
            to_user_id=None,
            job_id=job_id,
            description=f"Platform commission for job: {title}",
            commission_rate=rate,
            completed_at=now,
        )

        try:
            await self.transaction_repo.add_transactions(payment, commission)
            await self.user_repo.add_earnings(freelancer_id, split.net_amount)
            if commit:
                await self.db.commit()
        except (SQLAlchemyError, LookupError) as e:
            await self.db.rollback()
            logger.error(f"Ledger write failed for job {job_id}: {e}", exc_info=True)
            raise LedgerWriteError(job_id=job_id)

        logger.info(
            f"Recorded payment for job {job_id}: amount={amount} "
            f"commission={split.commission} net={split.net_amount} rate={rate}"
        )
        return payment, commission

    # --- 餘額 ---

    async def compute_available_balance(self, freelancer_id: str) -> Decimal:
        total_earnings = await self.user_repo.get_total_earnings(freelancer_id)
        if total_earnings is None:
            raise NotFoundError("User not found")
        reserved = await self.transaction_repo.sum_amount(
            "withdrawal", RESERVED_WITHDRAWAL_STATUSES, from_user_id=freelancer_id
        )
        balance = to_money(total_earnings) - to_money(reserved)
        if balance < 0:
            # 只有繞過本服務寫入的資料才會走到這裡
            logger.warning(f"Negative derived balance {balance} for user {freelancer_id}, reporting 0")
            return Decimal("0.00")
        return balance

    # --- 提領 ---

    async def request_withdrawal(self, freelancer: User, amount, payment_method: str = "bank") -> Transaction:
        """
        餘額足夠時建立一筆 pending 提領。

        同一位接案者的「檢查餘額 + 寫入」必須序列化：
        process 內靠 keyed asyncio lock，跨 process 靠使用者那一列的 row lock。
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidInputError("Withdrawal amount must be greater than zero")
        if freelancer.role != "freelancer":
            raise ForbiddenError("Only freelancers can request withdrawals")
        user_id = freelancer.user_id

        async with withdrawal_locks.hold(user_id):
            try:
                # 步驟 1: 鎖住使用者這一列直到 commit / rollback
                user = await self.user_repo.get_user_for_update(user_id)
                if not user:
                    raise NotFoundError("User not found")

                # 步驟 2: 在同一個交易內計算餘額
                available = await self.compute_available_balance(user.user_id)
                if amount > available:
                    raise InsufficientBalanceError(
                        f"Insufficient balance. Available: {available}",
                        available_balance=str(available),
                    )

                # 步驟 3: 以 pending 提領先保留金額
                withdrawal = Transaction(
                    type="withdrawal",
                    amount=amount,
                    status="pending",
                    from_user_id=user.user_id,
                    description=f"Withdrawal request via {payment_method}",
                    payment_method=payment_method,
                )
                await self.transaction_repo.add_transactions(withdrawal)
                await self.db.commit()
            except AppError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"Withdrawal request failed for user {user_id}: {e}", exc_info=True)
                raise

        await self.transaction_repo.refresh(withdrawal)
        logger.info(f"Withdrawal {withdrawal.transaction_id} requested by {user_id}: {amount}")
        return withdrawal

    async def _get_pending_withdrawal(self, transaction_id: str) -> Transaction:
        transaction = await self.transaction_repo.get_transaction_by_id(transaction_id)
        if not transaction:
            raise NotFoundError("Transaction not found")
        if transaction.type != "withdrawal":
            raise InvalidTypeError()
        if transaction.status != "pending":
            raise AlreadyResolvedError(f"Withdrawal has already been {transaction.status}")
        return transaction

    async def _resolve_withdrawal(self, transaction_id: str, new_status: str, **values) -> Transaction:
        transaction = await self._get_pending_withdrawal(transaction_id)
        moved = await self.transaction_repo.resolve_pending(transaction_id, new_status, **values)
        if not moved:
            # 讀取與更新之間已被另一位管理員處理
            await self.db.rollback()
            raise AlreadyResolvedError()
        await self.db.commit()
        await self.transaction_repo.refresh(transaction)
        logger.info(f"Withdrawal {transaction_id} -> {new_status}")
        return transaction

    async def approve_withdrawal(self, transaction_id: str) -> Transaction:
        return await self._resolve_withdrawal(transaction_id, "completed", completed_at=datetime.now())

    async def reject_withdrawal(self, transaction_id: str, reason: Optional[str] = None) -> Transaction:
        return await self._resolve_withdrawal(
            transaction_id,
            "failed",
            failed_at=datetime.now(),
            failure_reason=reason or "Rejected by admin",
        )

    # --- 報表 ---

    async def get_earnings_summary(self, freelancer_id: str) -> EarningsSummaryOut:
        user = await self.user_repo.get_user_by_id(freelancer_id)
        if not user:
            raise NotFoundError("User not found")

        repo = self.transaction_repo
        total_earned = await repo.sum_amount(
            "payment", ("completed",), to_user_id=freelancer_id, column=Transaction.net_amount
        )
        total_withdrawn = await repo.sum_amount("withdrawal", ("completed",), from_user_id=freelancer_id)
        pending_withdrawals = await repo.sum_amount("withdrawal", ("pending",), from_user_id=freelancer_id)
        pending_payments = await repo.sum_amount("payment", ("pending",), to_user_id=freelancer_id)

        # 本月與前五個月
        now = datetime.now()
        year, month = now.year, now.month - 5
        if month <= 0:
            month += 12
            year -= 1
        rows = await repo.monthly_net_earnings(freelancer_id, since=datetime(year, month, 1))

        return EarningsSummaryOut(
            total_earned=to_money(total_earned),
            completed_jobs=user.completed_jobs,
            total_withdrawn=to_money(total_withdrawn),
            pending_withdrawals=to_money(pending_withdrawals),
            pending_payments=to_money(pending_payments),
            available_balance=await self.compute_available_balance(freelancer_id),
            monthly_earnings=[
                MonthlyEarning(year=y, month=m, total=to_money(total), count=count)
                for y, m, total, count in rows
            ],
        )

    async def list_transactions(
        self,
        user: User,
        type_: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PaginatedTransactionsOut:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        items, total = await self.transaction_repo.paginate(
            page, limit, user_id=user.user_id, type_=type_, status=status
        )
        return PaginatedTransactionsOut(
            items=[TransactionOut.model_validate(t) for t in items],
            total=total,
            page=page,
            pages=page_count(total, limit),
        )

    async def commission_report(self, page: int = 1, limit: Optional[int] = None) -> CommissionReportOut:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        items, total = await self.transaction_repo.paginate(page, limit, type_="commission")
        total_commission = await self.transaction_repo.sum_amount("commission", ("completed",))
        return CommissionReportOut(
            items=[TransactionOut.model_validate(t) for t in items],
            total=total,
            page=page,
            pages=page_count(total, limit),
            total_commission=to_money(total_commission),
        )

    # --- 管理員 ---

    async def list_all_transactions(
        self,
        type_: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> PaginatedTransactionsOut:
        """Every ledger entry, newest first, optionally filtered by type and status."""
        limit = limit or settings.DEFAULT_PAGE_SIZE
        items, total = await self.transaction_repo.paginate(page, limit, type_=type_, status=status)
        return PaginatedTransactionsOut(
            items=[TransactionOut.model_validate(t) for t in items],
            total=total,
            page=page,
            pages=page_count(total, limit),
        )

    async def transaction_stats(self) -> TransactionStatsOut:
        """
        Platform totals for the admin dashboard. Volume counts completed job
        payments only, so commission and withdrawal rows are not counted twice.
        """
        repo = self.transaction_repo
        start_of_month = datetime.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        total_volume = await repo.sum_amount("payment", ("completed",))
        platform_revenue = await repo.sum_amount("commission", ("completed",))
        monthly_volume = await repo.sum_amount("payment", ("completed",), since=start_of_month)
        return TransactionStatsOut(
            total_volume=to_money(total_volume),
            platform_revenue=to_money(platform_revenue),
            monthly_volume=to_money(monthly_volume),
            total_transactions=await repo.count(),
        )
