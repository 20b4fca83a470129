"""
OpenBlind Backend — Profile Repository
========================================

What:  Record store adapter for the `user_profiles` table.
Who:   Used by ProfileService (request path) and EncryptionJobService (batch path).

Filters:
    Only equality / existence filters on `user_id` and `encryption_version`
    are supported. A filter value of None means IS NULL.

Concurrency:
    update_fields() is a compare-and-swap when `expected_revision` is given:
        UPDATE user_profiles
           SET ..., revision = revision + 1
         WHERE id = :id AND revision = :expected_revision
    A return value of False means another writer got there first; the
    session stays usable, so batch jobs can keep going.

    Reads use populate_existing so that a re-read after a conflict sees the
    row as stored, not the copy cached in the session identity map.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from openblind.models.profile import UserProfile

logger = logging.getLogger(__name__)

FILTERABLE_FIELDS = frozenset({"user_id", "encryption_version"})


class ProfileRepository:
    """Async persistence operations for UserProfile rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Reads ─────────────────────────────────────────────────────────────

    async def load(self, **filters: Any) -> List[UserProfile]:
        """All rows matching the equality filters, ordered by id."""
        query = self._apply_filters(select(UserProfile), filters).order_by(UserProfile.id)
        return await self._fetch_all(query)

    async def load_outdated(self, version: str) -> List[UserProfile]:
        """Rows whose encryption_version is NULL or differs from `version`."""
        query = (
            select(UserProfile)
            .where(
                or_(
                    UserProfile.encryption_version.is_(None),
                    UserProfile.encryption_version != version,
                )
            )
            .order_by(UserProfile.id)
        )
        return await self._fetch_all(query)

    async def sample(self, limit: int) -> List[UserProfile]:
        """The first `limit` rows by id."""
        query = select(UserProfile).order_by(UserProfile.id).limit(limit)
        return await self._fetch_all(query)

    async def get(self, profile_id: int) -> Optional[UserProfile]:
        query = (
            select(UserProfile)
            .where(UserProfile.id == profile_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_by_user_id(self, user_id: int) -> Optional[UserProfile]:
        query = (
            select(UserProfile)
            .where(UserProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def count(self, **filters: Any) -> int:
        query = self._apply_filters(select(func.count(UserProfile.id)), filters)
        result = await self.session.execute(query)
        return result.scalar() or 0

    # ── Writes ────────────────────────────────────────────────────────────

    async def save(self, profile: UserProfile) -> UserProfile:
        """Insert a new row; the id is assigned on flush."""
        self.session.add(profile)
        await self.session.flush()
        return profile

    async def update_fields(
        self,
        profile_id: int,
        fields: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> bool:
        """
        Write `fields` to one row in a single UPDATE and bump its revision.

        Returns:
            True if the row was written; False if it does not exist or, when
            expected_revision is given, its revision has moved on.
        """
        stmt = (
            update(UserProfile)
            .where(UserProfile.id == profile_id)
            .values(**fields, revision=UserProfile.revision + 1)
            .execution_options(synchronize_session=False)
        )
        if expected_revision is not None:
            stmt = stmt.where(UserProfile.revision == expected_revision)
        result = await self.session.execute(stmt)
        written = result.rowcount == 1
        if not written:
            logger.debug(
                "Conditional update skipped for profile %s (expected revision %s)",
                profile_id,
                expected_revision,
            )
        return written

    async def delete_by_user_id(self, user_id: int) -> bool:
        result = await self.session.execute(
            delete(UserProfile)
            .where(UserProfile.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _fetch_all(self, query: Select) -> List[UserProfile]:
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    @staticmethod
    def _apply_filters(query: Select, filters: Dict[str, Any]) -> Select:
        for name, value in filters.items():
            if name not in FILTERABLE_FIELDS:
                raise ValueError(
                    f"Unsupported profile filter '{name}'. Allowed: {sorted(FILTERABLE_FIELDS)}"
                )
            column = getattr(UserProfile, name)
            query = query.where(column.is_(None) if value is None else column == value)
        return query
