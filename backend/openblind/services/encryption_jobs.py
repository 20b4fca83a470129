"""
OpenBlind Backend — Encryption Batch Jobs
===========================================

What:  Operator jobs that bring legacy plaintext rows up to the current
       encryption scheme and report on coverage.
Who:   Admin endpoints (/api/admin/encryption/*) and scripts/migrate_encryption.py.

Jobs:
    migrate_encryption()      profiles with encryption_version NULL or stale
    migrate_account_emails()  accounts with a plaintext email or no blind index
    verify_encryption()       shape + decrypt check over a bounded sample
    get_encryption_stats()    counts by version tag only (no decryption)

Batch semantics:
    Each record is written and committed on its own; nothing is transactional
    across records. A failing record is rolled back, counted, logged and
    skipped. A crash mid-batch leaves every committed record migrated, so the
    job is safe to re-run: already-tagged records are not selected again.

Concurrency:
    Profile writes are conditional on the revision that was read. On conflict
    the record is re-read; if a concurrent writer already migrated it, it is
    skipped, otherwise the migration is re-applied to the fresh copy.
"""

import logging
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openblind.config import Settings, settings
from openblind.exceptions import BatchItemFailure, ConcurrentUpdateError, TransformFailure
from openblind.models.account import Account
from openblind.models.profile import UserProfile, utcnow
from openblind.repositories.account_repository import AccountRepository
from openblind.repositories.profile_repository import ProfileRepository
from openblind.schemas.encryption import (
    EncryptionStats,
    MigrationResult,
    VerificationDetail,
    VerificationResult,
)
from openblind.services.cipher import CipherEngine
from openblind.services.profile_codec import SENSITIVE_FIELDS, ProfileCodec
from openblind.services.profile_service import compare_and_swap_retrying

logger = logging.getLogger(__name__)


class EncryptionJobService:
    """Migration, verification and stats over the whole store."""

    def __init__(
        self,
        session: AsyncSession,
        cipher: CipherEngine,
        config: Settings = settings,
    ):
        self.session = session
        self.cipher = cipher
        self.config = config
        self.codec = ProfileCodec(cipher)
        self.profiles = ProfileRepository(session)
        self.accounts = AccountRepository(session)

    # ══════════════════════════════════════════════════════════════════════
    # Profile migration
    # ══════════════════════════════════════════════════════════════════════

    async def migrate_encryption(self) -> MigrationResult:
        """
        Encrypt every plaintext sensitive value and tag the record.

        Every selected record is written back, including records whose fields
        were already envelopes and only need the version tag.
        """
        version = self.config.encryption_version
        # Ids only: a rollback expires every loaded instance
        pending_ids = [p.id for p in await self.profiles.load_outdated(version)]
        logger.info("Profile migration started: %d record(s) to %s", len(pending_ids), version)

        result = MigrationResult()
        for profile_id in pending_ids:
            try:
                profile = await self.profiles.get(profile_id)
                if profile is not None and await self._migrate_profile(profile, version):
                    await self.session.commit()
                    result.migrated_count += 1
            except (BatchItemFailure, TransformFailure, SQLAlchemyError) as e:
                await self.session.rollback()
                result.error_count += 1
                logger.error(
                    "Profile %s migration failed: %s",
                    profile_id,
                    getattr(e, "message", type(e).__name__),
                    extra={"record_id": profile_id},
                )

        logger.info(
            "Profile migration finished: %d migrated, %d error(s)",
            result.migrated_count,
            result.error_count,
        )
        return result

    async def _migrate_profile(self, profile: UserProfile, version: str) -> bool:
        """
        Write one record back. Returns False if it no longer needs migrating.

        Raises:
            BatchItemFailure: encryption fell back to plaintext, or every
            attempt lost the revision race
        """
        profile_id = profile.id
        current: Optional[UserProfile] = profile
        try:
            async for attempt in compare_and_swap_retrying(self.config):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        current = await self.profiles.get(profile_id)
                    if current is None or current.encryption_version == version:
                        logger.info("Profile %s no longer needs migration; skipping", profile_id)
                        return False

                    fields = self.codec.unencrypted_fields(current)
                    still_plain = sorted(
                        name for name, value in fields.items()
                        if not self.cipher.is_encrypted(value)
                    )
                    if still_plain:
                        raise BatchItemFailure(
                            profile_id, reason=f"encryption failed for {', '.join(still_plain)}"
                        )
                    fields["encryption_version"] = version
                    fields["last_profile_update"] = utcnow()

                    written = await self.profiles.update_fields(
                        profile_id, fields, expected_revision=current.revision
                    )
                    if not written:
                        raise ConcurrentUpdateError(
                            resource_id=profile_id, expected_revision=current.revision
                        )
        except ConcurrentUpdateError as e:
            raise BatchItemFailure(profile_id, reason="revision kept changing") from e
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Account email migration
    # ══════════════════════════════════════════════════════════════════════

    async def migrate_account_emails(self) -> MigrationResult:
        """Encrypt legacy plaintext emails and backfill the blind index."""
        result = MigrationResult()
        account_ids = [a.id for a in await self.accounts.load(active_only=False)]
        for account_id in account_ids:
            try:
                account = await self.accounts.get(account_id, active_only=False)
                if account is None:
                    continue
                changes = self._email_changes(account)
                if not changes:
                    continue
                await self.accounts.update_fields(account_id, changes)
                await self.session.commit()
                result.migrated_count += 1
            except (BatchItemFailure, SQLAlchemyError) as e:
                await self.session.rollback()
                result.error_count += 1
                logger.error(
                    "Account %s email migration failed: %s",
                    account_id,
                    getattr(e, "message", type(e).__name__),
                    extra={"record_id": account_id},
                )

        logger.info(
            "Account email migration finished: %d migrated, %d error(s)",
            result.migrated_count,
            result.error_count,
        )
        return result

    def _email_changes(self, account: Account) -> Dict[str, str]:
        decrypted = self.cipher.try_decrypt(account.email)
        if not decrypted.ok:
            raise BatchItemFailure(account.id, reason=decrypted.error.reason)
        plain_email = (decrypted.value or "").strip().lower()
        if not plain_email:
            raise BatchItemFailure(account.id, reason="empty email")

        changes: Dict[str, str] = {}
        if not self.cipher.is_encrypted(account.email):
            envelope = self.cipher.encrypt(plain_email)
            if not self.cipher.is_encrypted(envelope):
                raise BatchItemFailure(account.id, reason="encryption failed for email")
            changes["email"] = envelope
        expected_hash = self.cipher.blind_index(plain_email)
        if account.email_hash != expected_hash:
            changes["email_hash"] = expected_hash
        return changes

    # ══════════════════════════════════════════════════════════════════════
    # Verification and stats
    # ══════════════════════════════════════════════════════════════════════

    async def verify_encryption(self) -> VerificationResult:
        """
        Check a bounded sample of profiles.

        A record is invalid when any present sensitive value fails to decrypt
        or when the decrypted given or family name is empty. Unmigrated
        plaintext that reads back fine still counts as valid; its state says
        "unencrypted".
        """
        sample = await self.profiles.sample(self.config.encryption_verify_sample_size)
        result = VerificationResult()
        for profile in sample:
            detail = self._verify_profile(profile)
            result.details.append(detail)
            if detail.valid:
                result.valid_count += 1
            else:
                result.invalid_count += 1
                logger.warning(
                    "Profile %s failed verification: %s",
                    profile.id,
                    detail.error,
                    extra={"record_id": profile.id},
                )
        logger.info(
            "Verification finished: %d valid, %d invalid (sample of %d)",
            result.valid_count,
            result.invalid_count,
            len(sample),
        )
        return result

    def _verify_profile(self, profile: UserProfile) -> VerificationDetail:
        state = self.codec.classify(profile)
        error = None
        decoded = {}
        for name in SENSITIVE_FIELDS:
            outcome = self.cipher.try_decrypt(getattr(profile, name))
            if not outcome.ok:
                error = f"{name}: {outcome.error.reason}"
                break
            decoded[name] = outcome.value
        if error is None:
            missing = [n for n in ("given_name", "family_name") if not decoded.get(n)]
            if missing:
                error = f"empty {', '.join(missing)}"
        return VerificationDetail(
            id=profile.id,
            user_id=profile.user_id,
            state=state,
            valid=error is None,
            error=error,
        )

    async def get_encryption_stats(self) -> EncryptionStats:
        """Counts by version tag; a record tagged with the current version is encrypted."""
        total = await self.profiles.count()
        encrypted = await self.profiles.count(encryption_version=self.config.encryption_version)
        coverage = round(encrypted / total * 100, 2) if total else 0.0
        return EncryptionStats(
            total=total,
            encrypted=encrypted,
            unencrypted=total - encrypted,
            coverage_percent=coverage,
        )
