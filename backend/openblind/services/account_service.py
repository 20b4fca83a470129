"""
OpenBlind Backend — Account Service
=====================================

What:  Registration, credential check, password change and admin account
       management.
How:   Emails are stored as envelopes from the same CipherEngine as profile
       fields and looked up through a keyed blind index (`email_hash`).
       Passwords are bcrypt hashes; hashing runs in a worker thread so it does
       not block the event loop.
Who:   Auth, profile and admin route handlers.

Lookup by email:
    1. blind_index(email) → WHERE email_hash = ?             (indexed, O(1))
    2. no hit → decrypt-and-compare over rows without a hash  (legacy, O(n))
       A legacy hit gets its hash backfilled on the spot.
"""

import asyncio
import hmac
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from openblind.config import Settings, settings
from openblind.exceptions import (
    AuthenticationError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from openblind.models.account import ROLE_USER, Account
from openblind.models.profile import UserProfile
from openblind.repositories.account_repository import AccountRepository
from openblind.schemas.account import AccountResponse, AdminUserUpdate, RegisterRequest
from openblind.schemas.profile import ProfileSearchResult
from openblind.services.cipher import CipherEngine, hash_password, verify_password
from openblind.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2
PROFILE_KEYS = ("given_name", "family_name", "phone", "birth_date", "preferences")


class AccountService:
    """Account operations bound to one session and one cipher engine."""

    def __init__(
        self,
        session: AsyncSession,
        cipher: CipherEngine,
        config: Settings = settings,
    ):
        self.session = session
        self.cipher = cipher
        self.config = config
        self.repository = AccountRepository(session)
        self.profiles = ProfileService(session, cipher, config)

    # ── Registration and login ────────────────────────────────────────────

    async def register(self, request: RegisterRequest) -> Tuple[Account, UserProfile]:
        """
        Create an account and its encrypted profile.

        Raises:
            ConflictError: an account with this email already exists
            DatabaseError: the account row could not be stored
        """
        email = request.email.strip().lower()
        if await self.find_by_email(email) is not None:
            raise ConflictError("An account with this email already exists")

        password_hash = await asyncio.to_thread(
            hash_password, request.password, self.config.password_hash_rounds
        )
        account = Account(
            email=self.cipher.encrypt(email),
            email_hash=self.cipher.blind_index(email),
            password_hash=password_hash,
            role=ROLE_USER,
            active=True,
        )
        try:
            await self.repository.save(account)
        except IntegrityError:
            # Lost a race with a concurrent registration on the unique email_hash
            logger.info("Registration rejected: email_hash already taken")
            raise ConflictError("An account with this email already exists")
        except SQLAlchemyError as e:
            logger.error("Could not store new account: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Registration could not be completed. Please try again.",
                context={"original_error": type(e).__name__},
            )

        profile = await self.profiles.create_encrypted(
            account.id, request.model_dump(include=set(PROFILE_KEYS), exclude_none=True)
        )
        logger.info("Registered account %s", account.id)
        return account, profile

    async def authenticate(self, email: str, password: str) -> Account:
        """
        Check credentials. Token issuance happens outside this service.

        Raises:
            AuthenticationError: unknown email, inactive account or wrong password
        """
        account = await self.find_by_email(email)
        if account is None or not account.active:
            logger.info("Login rejected: unknown or inactive account")
            raise AuthenticationError()
        matches = await asyncio.to_thread(verify_password, password, account.password_hash)
        if not matches:
            logger.info("Login rejected for account %s: wrong password", account.id)
            raise AuthenticationError()
        logger.info("Login accepted for account %s", account.id)
        return account

    async def find_by_email(self, email: str) -> Optional[Account]:
        normalized = (email or "").strip().lower()
        if not normalized:
            return None
        email_hash = self.cipher.blind_index(normalized)
        account = await self.repository.find_by_email_hash(email_hash)
        if account is not None:
            return account

        for legacy in await self.repository.load_without_email_hash():
            if (self._readable_email(legacy) or "").strip().lower() == normalized:
                await self.repository.update_fields(legacy.id, {"email_hash": email_hash})
                legacy.email_hash = email_hash
                logger.info("Backfilled blind index for legacy account %s", legacy.id)
                return legacy
        return None

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_account(self, account_id: int) -> Optional[Account]:
        return await self.repository.get(account_id)

    def decrypt_email(self, account: Account) -> Optional[str]:
        return self.cipher.decrypt(account.email)

    def _readable_email(self, account: Account) -> Optional[str]:
        """Decrypt for a scan over many rows; an undecryptable email is skipped."""
        result = self.cipher.try_decrypt(account.email)
        if not result.ok:
            logger.warning(
                "Skipping account %s: email could not be decrypted (%s)",
                account.id,
                result.error.reason,
            )
            return None
        return result.value

    def to_response(self, account: Account) -> AccountResponse:
        return AccountResponse(
            id=account.id,
            email=self.decrypt_email(account) or "",
            role=account.role,
            active=account.active,
            created_at=account.created_at,
        )

    # ── Password ──────────────────────────────────────────────────────────

    async def change_password(
        self, account_id: int, current_password: str, new_password: str
    ) -> None:
        """
        Raises:
            NotFoundError: no active account with this id
            AuthenticationError: current password does not match
        """
        account = await self.repository.get(account_id)
        if account is None:
            raise NotFoundError("account", str(account_id))
        if not await asyncio.to_thread(verify_password, current_password, account.password_hash):
            raise AuthenticationError("Current password is incorrect")
        if hmac.compare_digest(current_password, new_password):
            raise ValidationError(
                "New password must differ from the current one", field="new_password"
            )
        new_hash = await asyncio.to_thread(
            hash_password, new_password, self.config.password_hash_rounds
        )
        await self.repository.update_fields(account_id, {"password_hash": new_hash})
        logger.info("Password changed for account %s", account_id)

    # ── Admin ─────────────────────────────────────────────────────────────

    async def admin_update(
        self, account_id: int, update: AdminUserUpdate
    ) -> Tuple[Account, Optional[UserProfile]]:
        """Update role/active on the account and names/phone on the profile."""
        account = await self.repository.get(account_id, active_only=False)
        if account is None:
            raise NotFoundError("account", str(account_id))

        account_fields = update.model_dump(include={"role", "active"}, exclude_none=True)
        if account_fields:
            await self.repository.update_fields(account_id, account_fields)
            account = await self.repository.get(account_id, active_only=False)

        profile_patch = update.model_dump(
            include={"given_name", "family_name", "phone"}, exclude_none=True
        )
        profile = await self.profiles.find_by_user_id(account_id)
        if profile_patch:
            if profile is not None:
                profile = await self.profiles.update_safely(profile, profile_patch)
            else:
                profile = await self.profiles.create_encrypted(account_id, profile_patch)
        logger.info("Admin updated account %s (fields=%s)", account_id, sorted(account_fields))
        return account, profile

    async def delete_account(self, account_id: int) -> bool:
        """
        Soft-delete the account, then remove its profile best-effort.

        Returns:
            Whether the profile was removed. A failed profile delete is logged
            by ProfileService and does not fail the account delete.
        """
        account = await self.repository.get(account_id)
        if account is None:
            raise NotFoundError("account", str(account_id))
        await self.repository.update_fields(account_id, {"active": False})
        profile_deleted = await self.profiles.delete_for_user(account_id)
        logger.info("Deactivated account %s (profile_deleted=%s)", account_id, profile_deleted)
        return profile_deleted

    async def search_users(self, query: str) -> List[ProfileSearchResult]:
        """
        Match by decrypted name or email (case-insensitive substring).

        Raises:
            ValidationError: query shorter than 2 characters
        """
        needle = (query or "").strip().lower()
        if len(needle) < MIN_SEARCH_LENGTH:
            raise ValidationError(
                f"Search query must be at least {MIN_SEARCH_LENGTH} characters", field="query"
            )

        emails: Dict[int, str] = {}
        email_hits = set()
        for account in await self.repository.load():
            email = self._readable_email(account) or ""
            emails[account.id] = email
            if needle in email.lower():
                email_hits.add(account.id)

        results: Dict[int, ProfileSearchResult] = {}
        for profile in await self.profiles.search_by_name(needle):
            if profile.user_id in emails:
                results[profile.user_id] = self._search_result(profile, emails)
        for user_id in email_hits - set(results):
            profile = await self.profiles.find_by_user_id(user_id)
            if profile is not None:
                results[user_id] = self._search_result(profile, emails)

        logger.info("User search returned %d result(s)", len(results))
        return [results[user_id] for user_id in sorted(results)]

    def _search_result(self, profile: UserProfile, emails: Dict[int, str]) -> ProfileSearchResult:
        data = self.profiles.get_decrypted_data(profile)
        return ProfileSearchResult(
            user_id=profile.user_id,
            given_name=data.given_name,
            family_name=data.family_name,
            email=emails.get(profile.user_id),
        )
