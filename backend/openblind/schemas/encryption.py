"""
OpenBlind Backend — Encryption Job Schemas
============================================

What:  Result models of the migration, verification and stats jobs. Returned
       as-is by the admin endpoints and printed by scripts/migrate_encryption.py.
Note:  Verification details carry ids, shape states and error reasons only,
       never field values.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class MigrationResult(BaseModel):
    migrated_count: int = Field(default=0, description="Records written back by this run")
    error_count: int = Field(default=0, description="Records that failed and were skipped")


class VerificationDetail(BaseModel):
    id: int
    user_id: int
    state: str = Field(description="encrypted, unencrypted, mixed or empty")
    valid: bool
    error: Optional[str] = Field(default=None, description="Why the record is invalid")


class VerificationResult(BaseModel):
    valid_count: int = 0
    invalid_count: int = 0
    details: List[VerificationDetail] = Field(default_factory=list)


class EncryptionStats(BaseModel):
    total: int
    encrypted: int
    unencrypted: int
    coverage_percent: float = Field(description="encrypted / total * 100, rounded to 2 places")
