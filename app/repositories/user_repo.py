# app/repositories/user_repo.py
# User lookups and the ledger counters cached on the user row
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update
from app.models.user import User

class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: str) -> User | None:
        """
        Look up a user by user_id
        """
        stmt = select(User).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_user_for_update(self, user_id: str) -> User | None:
        """
        Same as get_user_by_id but takes a row lock (SELECT ... FOR UPDATE)
        until the current transaction ends.
        """
        stmt = (
            select(User)
            .where(User.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def add_earnings(self, user_id: str, net_amount: Decimal) -> None:
        """
        Increment the cached lifetime earnings and completed job count in SQL,
        so concurrent completions never overwrite each other.
        """
        stmt = (
            update(User)
            .where(User.user_id == user_id)
            .values(
                total_earnings=User.total_earnings + net_amount,
                completed_jobs=User.completed_jobs + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            raise LookupError(f"User {user_id} not found while crediting earnings")

    async def set_presence(self, user_id: str, is_online: bool) -> None:
        stmt = (
            update(User)
            .where(User.user_id == user_id)
            .values(is_online=is_online, last_seen=datetime.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def get_total_earnings(self, user_id: str) -> Decimal | None:
        """
        Read the cached lifetime earnings straight from the row, bypassing
        whatever copy of the user the session already holds.
        """
        stmt = select(User.total_earnings).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        value = result.scalar()
        return None if value is None else Decimal(str(value))
