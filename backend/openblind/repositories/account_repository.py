"""
OpenBlind Backend — Account Repository
========================================

What:  Record store adapter for the `accounts` table.
Note:  Email values are stored and returned exactly as persisted (envelopes or
       legacy plaintext). Callers look accounts up by blind index, never by
       the email column.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from openblind.models.account import Account


class AccountRepository:
    """Async persistence operations for Account rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, account_id: int, active_only: bool = True) -> Optional[Account]:
        query = select(Account).where(Account.id == account_id)
        if active_only:
            query = query.where(Account.active.is_(True))
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def find_by_email_hash(self, email_hash: str) -> Optional[Account]:
        result = await self.session.execute(
            select(Account)
            .where(Account.email_hash == email_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_without_email_hash(self) -> List[Account]:
        """Legacy rows that predate the blind index."""
        result = await self.session.execute(
            select(Account)
            .where(Account.email_hash.is_(None))
            .order_by(Account.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def load(self, active_only: bool = True) -> List[Account]:
        query = select(Account).order_by(Account.id)
        if active_only:
            query = query.where(Account.active.is_(True))
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def save(self, account: Account) -> Account:
        self.session.add(account)
        await self.session.flush()
        return account

    async def update_fields(self, account_id: int, fields: Dict[str, Any]) -> bool:
        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
