# app/repositories/transaction_repo.py

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func, or_, extract

from app.models.transaction import Transaction

class TransactionRepository:
    """
    Ledger queries. Inserts are flushed only; the ledger service decides
    when the surrounding transaction commits.
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_transactions(self, *transactions: Transaction) -> None:
        self.db.add_all(transactions)
        await self.db.flush()

    async def get_transaction_by_id(self, transaction_id: str) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.transaction_id == transaction_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def refresh(self, transaction: Transaction) -> Transaction:
        await self.db.refresh(transaction)
        return transaction

    async def sum_amount(
        self,
        type_: str,
        statuses: Tuple[str, ...],
        from_user_id: Optional[str] = None,
        to_user_id: Optional[str] = None,
        column=Transaction.amount,
        since: Optional[datetime] = None,
    ) -> Decimal:
        stmt = select(func.coalesce(func.sum(column), 0)).where(
            Transaction.type == type_,
            Transaction.status.in_(statuses),
        )
        if from_user_id:
            stmt = stmt.where(Transaction.from_user_id == from_user_id)
        if to_user_id:
            stmt = stmt.where(Transaction.to_user_id == to_user_id)
        if since:
            stmt = stmt.where(Transaction.created_at >= since)
        result = await self.db.execute(stmt)
        return Decimal(str(result.scalar() or 0))

    async def count(self, type_: Optional[str] = None, status: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(Transaction)
        if type_:
            stmt = stmt.where(Transaction.type == type_)
        if status:
            stmt = stmt.where(Transaction.status == status)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def resolve_pending(self, transaction_id: str, new_status: str, **values) -> bool:
        """
        pending -> new_status as a compare-and-swap. False when someone else resolved it first.
        """
        stmt = (
            update(Transaction)
            .where(
                Transaction.transaction_id == transaction_id,
                Transaction.status == "pending",
            )
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def paginate(
        self,
        page: int,
        limit: int,
        user_id: Optional[str] = None,
        type_: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[List[Transaction], int]:
        """
        Newest-first page of transactions plus the total matching count.
        user_id matches either side of the transaction.
        """
        conditions = []
        if user_id:
            conditions.append(or_(Transaction.from_user_id == user_id, Transaction.to_user_id == user_id))
        if type_:
            conditions.append(Transaction.type == type_)
        if status:
            conditions.append(Transaction.status == status)

        count_stmt = select(func.count()).select_from(Transaction).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc(), Transaction.transaction_ref.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all(), total

    async def monthly_net_earnings(self, freelancer_id: str, since: datetime) -> List[Tuple[int, int, Decimal, int]]:
        """
        (year, month, net total, payment count) for completed payments received since `since`
        """
        year = extract("year", Transaction.created_at)
        month = extract("month", Transaction.created_at)
        stmt = (
            select(year, month, func.sum(Transaction.net_amount), func.count())
            .where(
                Transaction.to_user_id == freelancer_id,
                Transaction.type == "payment",
                Transaction.status == "completed",
                Transaction.created_at >= since,
            )
            .group_by(year, month)
            .order_by(year, month)
        )
        result = await self.db.execute(stmt)
        return [
            (int(y), int(m), Decimal(str(total or 0)), cnt)
            for y, m, total, cnt in result.all()
        ]
