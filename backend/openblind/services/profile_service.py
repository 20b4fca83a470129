"""
OpenBlind Backend — Profile Service (Encrypted-Field Record)
==============================================================

What:  Business operations on user profiles whose sensitive fields are
       encrypted at rest.
How:   ProfileCodec encodes on the way in and decodes on the way out;
       ProfileRepository persists raw stored values. Every write after
       creation is a compare-and-swap on `revision`.
Who:   Route handlers (profiles, auth, admin) and AccountService.

Write path (update_safely):
    ┌────────────┐   ┌──────────────┐   ┌─────────────┐   ┌──────────────────┐
    │ allow-list │──▶│ encode patch │──▶│ UPDATE ...  │──▶│ rowcount == 1 ?  │
    │  filter    │   │ (ProfileCodec)│  │ WHERE rev=? │   │ yes → reload/done│
    └────────────┘   └──────────────┘   └─────────────┘   │ no  → reload,    │
                                                          │       re-apply   │
                                                          └──────────────────┘
    After RETRY_MAX_ATTEMPTS conflicting attempts → ConcurrentUpdateError (409).

Absence:
    Lookups return None for a missing profile; converting that into a 404 is
    the route's job.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from openblind.config import Settings, settings
from openblind.exceptions import ConcurrentUpdateError, NotFoundError, ValidationError
from openblind.models.profile import UserProfile, default_preferences, utcnow
from openblind.repositories.profile_repository import ProfileRepository
from openblind.schemas.profile import ProfileData
from openblind.services.cipher import CipherEngine
from openblind.services.profile_codec import ProfileCodec

logger = logging.getLogger(__name__)

# Keys update_safely() will write; anything else in a patch is dropped
UPDATABLE_FIELDS = frozenset(
    {"given_name", "family_name", "phone", "birth_date", "profile_image_url", "preferences"}
)
REQUIRED_FIELDS = ("given_name", "family_name")


def compare_and_swap_retrying(config: Settings) -> AsyncRetrying:
    """
    Retry controller for revision-guarded writes.

    Only ConcurrentUpdateError is retried; any other exception propagates on
    the first attempt. The last ConcurrentUpdateError is re-raised once the
    attempts run out.
    """
    return AsyncRetrying(
        retry=retry_if_exception_type(ConcurrentUpdateError),
        stop=stop_after_attempt(config.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=config.retry_min_wait_ms / 1000,
            max=config.retry_max_wait_ms / 1000,
            jitter=config.retry_min_wait_ms / 1000,
        ),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )


class ProfileService:
    """
    Profile operations bound to one session and one cipher engine.

    Constructed per request (or per batch run); holds no state beyond its
    collaborators.
    """

    def __init__(
        self,
        session: AsyncSession,
        cipher: CipherEngine,
        config: Settings = settings,
    ):
        self.session = session
        self.config = config
        self.codec = ProfileCodec(cipher)
        self.repository = ProfileRepository(session)

    # ── Create ────────────────────────────────────────────────────────────

    async def create_encrypted(self, user_id: int, data: Mapping[str, Any]) -> UserProfile:
        """
        Persist a new profile with every sensitive field encrypted.

        Args:
            user_id: Owning account id
            data: Plaintext values; given_name and family_name are required

        Raises:
            ValidationError: a required name is missing or blank
        """
        values = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
        encoded = self.codec.encode(values)
        self._check_required(encoded)

        preferences = default_preferences()
        preferences.update(values.get("preferences") or {})

        profile = UserProfile(
            user_id=user_id,
            given_name=encoded["given_name"],
            family_name=encoded["family_name"],
            phone=encoded.get("phone") or None,
            profile_image_url=encoded.get("profile_image_url") or None,
            birth_date=values.get("birth_date"),
            preferences=preferences,
            encryption_version=self.config.encryption_version,
            last_profile_update=utcnow(),
            revision=1,
        )
        await self.repository.save(profile)
        logger.info("Created encrypted profile %s for user %s", profile.id, user_id)
        return profile

    # ── Read ──────────────────────────────────────────────────────────────

    async def find_by_user_id(self, user_id: int) -> Optional[UserProfile]:
        return await self.repository.find_by_user_id(user_id)

    def get_decrypted_data(self, profile: UserProfile) -> ProfileData:
        """Plaintext view of every field; legacy plaintext passes through."""
        return ProfileData(**self.codec.decode(profile))

    async def search_by_name(self, term: str) -> List[UserProfile]:
        """
        Case-insensitive substring match over "given family".

        Loads and decrypts every profile in-process; O(n) in the number of
        profiles.
        """
        needle = (term or "").strip().lower()
        if not needle:
            return []
        matches = []
        for profile in await self.repository.load():
            given = self.codec.decode_field(profile.given_name) or ""
            family = self.codec.decode_field(profile.family_name) or ""
            if needle in f"{given} {family}".lower():
                matches.append(profile)
        logger.debug("Name search matched %d profiles", len(matches))
        return matches

    # ── Update ────────────────────────────────────────────────────────────

    async def update_safely(self, profile: UserProfile, patch: Mapping[str, Any]) -> UserProfile:
        """
        Apply an allow-listed patch with a revision compare-and-swap.

        Keys outside UPDATABLE_FIELDS (user_id, id, revision, ...) are ignored.
        Sensitive values are encrypted unless they already are envelopes;
        legacy plaintext left in fields outside the patch is encrypted in the
        same write.
        The write always bumps last_profile_update and sets the current
        encryption_version, even when the filtered patch is empty.

        Raises:
            ValidationError: the patch blanks a required name
            NotFoundError: the profile was deleted between attempts
            ConcurrentUpdateError: every attempt lost the race
        """
        allowed = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}
        ignored = sorted(set(patch) - UPDATABLE_FIELDS)
        if ignored:
            logger.debug("update_safely ignored keys %s for profile %s", ignored, profile.id)

        profile_id = profile.id
        current: Optional[UserProfile] = profile

        async for attempt in compare_and_swap_retrying(self.config):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    current = await self.repository.get(profile_id)
                if current is None:
                    raise NotFoundError("profile", str(profile_id))

                fields = self._build_update(current, allowed)
                written = await self.repository.update_fields(
                    profile_id, fields, expected_revision=current.revision
                )
                if not written:
                    logger.info(
                        "Revision conflict on profile %s (attempt %d)",
                        profile_id,
                        attempt.retry_state.attempt_number,
                    )
                    raise ConcurrentUpdateError(
                        resource_id=profile_id, expected_revision=current.revision
                    )

        updated = await self.repository.get(profile_id)
        if updated is None:
            raise NotFoundError("profile", str(profile_id))
        logger.info("Updated profile %s (revision %s)", profile_id, updated.revision)
        return updated

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_for_user(self, user_id: int) -> bool:
        """
        Best-effort removal of a user's profile.

        Store errors are logged and reported as False; they never propagate,
        so the account-level operation that triggered the delete still succeeds.
        The DELETE runs in a savepoint: a failed statement rolls back only the
        savepoint, not the caller's pending writes.
        """
        try:
            async with self.session.begin_nested():
                deleted = await self.repository.delete_by_user_id(user_id)
        except SQLAlchemyError as e:
            logger.error(
                "Could not delete profile for user %s: %s",
                user_id,
                type(e).__name__,
                exc_info=True,
            )
            return False
        if deleted:
            logger.info("Deleted profile for user %s", user_id)
        return deleted

    # ── Helpers ───────────────────────────────────────────────────────────

    def _build_update(self, current: UserProfile, allowed: Dict[str, Any]) -> Dict[str, Any]:
        encoded = self.codec.encode(allowed)
        self._check_required(encoded, partial=True)
        # The version tag is only true if no legacy plaintext survives the write
        fields = self.codec.unencrypted_fields(current)
        fields.update(encoded)

        if "preferences" in fields:
            merged = default_preferences()
            merged.update(current.preferences or {})
            merged.update(fields["preferences"] or {})
            fields["preferences"] = merged
        for name in ("phone", "profile_image_url"):
            if name in fields and not fields[name]:
                fields[name] = None

        fields["encryption_version"] = self.config.encryption_version
        fields["last_profile_update"] = utcnow()
        return fields

    @staticmethod
    def _check_required(values: Mapping[str, Any], partial: bool = False) -> None:
        for name in REQUIRED_FIELDS:
            if partial and name not in values:
                continue
            if not values.get(name):
                raise ValidationError(f"{name} is required", field=name)
