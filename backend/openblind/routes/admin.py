"""
OpenBlind Backend — Admin Route Handlers
==========================================

What:  Operator endpoints: user search and management, plus the encryption
       batch jobs.
Auth:  Every route depends on require_admin (X-Admin-Key header).

Route Inventory:
    GET    /api/admin/users/search?query=      decrypted name/email search
    PUT    /api/admin/users/{user_id}          role, active, names, phone
    DELETE /api/admin/users/{user_id}          soft delete + profile removal
    POST   /api/admin/encryption/migrate        encrypt legacy profiles
    POST   /api/admin/encryption/migrate-emails encrypt legacy account emails
    GET    /api/admin/encryption/verify         sample verification
    GET    /api/admin/encryption/stats          coverage by version tag
"""

import logging

from fastapi import APIRouter, Depends, Query

from openblind.schemas.account import MessageResponse, AdminUserUpdate, UserDetailResponse
from openblind.schemas.common import ErrorResponse
from openblind.schemas.encryption import EncryptionStats, MigrationResult, VerificationResult
from openblind.schemas.profile import ProfileSearchResponse
from openblind.routes.dependencies import (
    get_account_service,
    get_encryption_jobs,
    require_admin,
)
from openblind.services.account_service import AccountService
from openblind.services.encryption_jobs import EncryptionJobService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
    responses={
        401: {"description": "Missing admin key", "model": ErrorResponse},
        403: {"description": "Invalid admin key", "model": ErrorResponse},
    },
)


# ── Users ─────────────────────────────────────────────────────────────────

@router.get(
    "/users/search",
    response_model=ProfileSearchResponse,
    responses={400: {"description": "Query too short", "model": ErrorResponse}},
    summary="Search users by decrypted name or email",
    description="Linear scan over every profile; intended for small populations.",
)
async def search_users(
    query: str = Query(description="At least 2 characters"),
    accounts: AccountService = Depends(get_account_service),
) -> ProfileSearchResponse:
    results = await accounts.search_users(query)
    return ProfileSearchResponse(query=query, count=len(results), results=results)


@router.put(
    "/users/{user_id}",
    response_model=UserDetailResponse,
    responses={404: {"description": "Unknown account", "model": ErrorResponse}},
    summary="Update a user's role, status or profile names",
)
async def update_user(
    user_id: int,
    body: AdminUserUpdate,
    accounts: AccountService = Depends(get_account_service),
) -> UserDetailResponse:
    account, profile = await accounts.admin_update(user_id, body)
    return UserDetailResponse(
        account=accounts.to_response(account),
        profile=accounts.profiles.get_decrypted_data(profile) if profile else None,
    )


@router.delete(
    "/users/{user_id}",
    response_model=MessageResponse,
    responses={404: {"description": "Unknown account", "model": ErrorResponse}},
    summary="Deactivate a user and remove their profile",
)
async def delete_user(
    user_id: int,
    accounts: AccountService = Depends(get_account_service),
) -> MessageResponse:
    profile_deleted = await accounts.delete_account(user_id)
    if profile_deleted:
        return MessageResponse(message="User deactivated and profile removed")
    return MessageResponse(message="User deactivated")


# ── Encryption jobs ───────────────────────────────────────────────────────

@router.post(
    "/encryption/migrate",
    response_model=MigrationResult,
    summary="Encrypt legacy plaintext profile fields",
)
async def migrate_encryption(
    jobs: EncryptionJobService = Depends(get_encryption_jobs),
) -> MigrationResult:
    return await jobs.migrate_encryption()


@router.post(
    "/encryption/migrate-emails",
    response_model=MigrationResult,
    summary="Encrypt legacy account emails and backfill the blind index",
)
async def migrate_account_emails(
    jobs: EncryptionJobService = Depends(get_encryption_jobs),
) -> MigrationResult:
    return await jobs.migrate_account_emails()


@router.get(
    "/encryption/verify",
    response_model=VerificationResult,
    summary="Verify a sample of stored profiles",
)
async def verify_encryption(
    jobs: EncryptionJobService = Depends(get_encryption_jobs),
) -> VerificationResult:
    return await jobs.verify_encryption()


@router.get(
    "/encryption/stats",
    response_model=EncryptionStats,
    summary="Encryption coverage by version tag",
)
async def encryption_stats(
    jobs: EncryptionJobService = Depends(get_encryption_jobs),
) -> EncryptionStats:
    return await jobs.get_encryption_stats()
