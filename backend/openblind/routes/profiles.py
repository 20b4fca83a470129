"""
OpenBlind Backend — Profile Route Handlers
============================================

What:  GET/PUT /api/users/{user_id}/profile and PUT /api/users/{user_id}/password.
How:   Thin handlers; ProfileService and AccountService do the work and the
       responses always carry DECRYPTED values.

Update semantics:
    Only fields present in the body are written. Unknown keys (user_id, id,
    revision, ...) are ignored. A user with an account but no profile yet
    gets one created on the first PUT, which then needs both names.
"""

import logging

from fastapi import APIRouter, Depends

from openblind.exceptions import NotFoundError
from openblind.schemas.account import MessageResponse, PasswordChangeRequest
from openblind.schemas.common import ErrorResponse
from openblind.schemas.profile import ProfileData, ProfileUpdateRequest
from openblind.routes.dependencies import get_account_service, get_profile_service
from openblind.services.account_service import AccountService
from openblind.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Profiles"])


@router.get(
    "/{user_id}/profile",
    response_model=ProfileData,
    responses={404: {"description": "No profile for this user", "model": ErrorResponse}},
    summary="Get a user's decrypted profile",
)
async def get_profile(
    user_id: int,
    profiles: ProfileService = Depends(get_profile_service),
) -> ProfileData:
    profile = await profiles.find_by_user_id(user_id)
    if profile is None:
        raise NotFoundError("profile", str(user_id))
    return profiles.get_decrypted_data(profile)


@router.put(
    "/{user_id}/profile",
    response_model=ProfileData,
    responses={
        400: {"description": "Invalid profile data", "model": ErrorResponse},
        404: {"description": "Unknown account", "model": ErrorResponse},
        409: {"description": "Concurrent update, retry", "model": ErrorResponse},
    },
    summary="Update a user's profile",
    description=(
        "Writes only the fields sent. Sensitive fields are encrypted before "
        "storage; the response contains the decrypted result."
    ),
)
async def update_profile(
    user_id: int,
    body: ProfileUpdateRequest,
    profiles: ProfileService = Depends(get_profile_service),
    accounts: AccountService = Depends(get_account_service),
) -> ProfileData:
    patch = body.to_patch()
    profile = await profiles.find_by_user_id(user_id)
    if profile is None:
        if await accounts.get_account(user_id) is None:
            raise NotFoundError("account", str(user_id))
        profile = await profiles.create_encrypted(user_id, patch)
    else:
        profile = await profiles.update_safely(profile, patch)
    return profiles.get_decrypted_data(profile)


@router.put(
    "/{user_id}/password",
    response_model=MessageResponse,
    responses={
        401: {"description": "Current password is incorrect", "model": ErrorResponse},
        404: {"description": "Unknown account", "model": ErrorResponse},
    },
    summary="Change a user's password",
)
async def change_password(
    user_id: int,
    body: PasswordChangeRequest,
    accounts: AccountService = Depends(get_account_service),
) -> MessageResponse:
    await accounts.change_password(user_id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated")
