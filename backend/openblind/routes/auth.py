"""
OpenBlind Backend — Auth Route Handlers
=========================================

What:  POST /api/auth/register and POST /api/auth/login.
Note:  Login only verifies credentials and returns the account with its
       decrypted profile; issuing session tokens is handled elsewhere.
"""

import logging

from fastapi import APIRouter, Depends, status

from openblind.schemas.account import AuthResponse, LoginRequest, RegisterRequest
from openblind.schemas.common import ErrorResponse
from openblind.routes.dependencies import get_account_service
from openblind.services.account_service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Email already registered", "model": ErrorResponse}},
    summary="Register an account with an encrypted profile",
)
async def register(
    body: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResponse:
    account, profile = await accounts.register(body)
    return AuthResponse(
        message="Account created",
        account=accounts.to_response(account),
        profile=accounts.profiles.get_decrypted_data(profile),
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"description": "Invalid credentials", "model": ErrorResponse}},
    summary="Check credentials",
)
async def login(
    body: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResponse:
    account = await accounts.authenticate(body.email, body.password)
    profile = await accounts.profiles.find_by_user_id(account.id)
    return AuthResponse(
        message="Login successful",
        account=accounts.to_response(account),
        profile=accounts.profiles.get_decrypted_data(profile) if profile else None,
    )
