"""
OpenBlind Backend — Route Dependencies
========================================

What:  FastAPI dependencies shared by the routers: the cipher engine built at
       startup, per-request service instances and the admin key guard.
How:   The lifespan handler stores the engine on app.state; get_cipher_engine
       reads it from there. Tests replace it through app.dependency_overrides.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from openblind.config import settings
from openblind.database import get_db_session
from openblind.exceptions import (
    AuthenticationError,
    CipherConfigurationError,
    PermissionDeniedError,
)
from openblind.services.account_service import AccountService
from openblind.services.cipher import CipherEngine
from openblind.services.encryption_jobs import EncryptionJobService
from openblind.services.profile_service import ProfileService

logger = logging.getLogger(__name__)


def get_cipher_engine(request: Request) -> CipherEngine:
    engine = getattr(request.app.state, "cipher_engine", None)
    if engine is None:
        raise CipherConfigurationError("Cipher engine was not initialised at startup")
    return engine


def get_profile_service(
    db: AsyncSession = Depends(get_db_session),
    cipher: CipherEngine = Depends(get_cipher_engine),
) -> ProfileService:
    return ProfileService(db, cipher)


def get_account_service(
    db: AsyncSession = Depends(get_db_session),
    cipher: CipherEngine = Depends(get_cipher_engine),
) -> AccountService:
    return AccountService(db, cipher)


def get_encryption_jobs(
    db: AsyncSession = Depends(get_db_session),
    cipher: CipherEngine = Depends(get_cipher_engine),
) -> EncryptionJobService:
    return EncryptionJobService(db, cipher)


async def require_admin(
    x_admin_key: Optional[str] = Header(default=None, description="Operator admin key"),
) -> None:
    """
    Guard for /api/admin/*.

    Missing header → 401. Wrong key, or no ADMIN_API_KEY configured → 403.
    """
    if not x_admin_key:
        raise AuthenticationError("X-Admin-Key header is required")
    expected = settings.admin_api_key
    if not expected or not hmac.compare_digest(x_admin_key, expected):
        logger.warning("Rejected admin request with invalid key")
        raise PermissionDeniedError("Invalid admin key")
