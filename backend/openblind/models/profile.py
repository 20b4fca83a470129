"""
OpenBlind Backend — UserProfile SQLAlchemy Model
==================================================

What:  ORM model for the `user_profiles` table.
How:   Inherits from the shared DeclarativeBase; Alembic reads it for migrations.
Who:   Read and written only through ProfileRepository.

Storage contract:
    The four sensitive columns hold RAW stored values: envelopes for anything
    written since encryption shipped, legacy plaintext for rows that have not
    been migrated yet. This model performs no transformation; the profile codec
    (services/profile_codec.py) encrypts on the way in and decrypts on the way
    out, and the migration job reads these columns directly.

    | column              | sensitive | format                     |
    |---------------------|-----------|----------------------------|
    | given_name          | yes       | envelope (or legacy text)  |
    | family_name         | yes       | envelope (or legacy text)  |
    | phone               | yes       | envelope, nullable         |
    | profile_image_url   | yes       | envelope, nullable         |
    | birth_date          | no        | DATE                       |
    | preferences         | no        | JSON                       |

    `revision` is the optimistic-concurrency token: every write increments it
    and every write path is conditional on the value it read.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from openblind.database import Base


def default_preferences() -> Dict[str, Any]:
    """Preferences stored for a profile created without any."""
    return {
        "language": "es",
        "voice_speed": 1.0,
        "notifications": True,
        "theme": "light",
    }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserProfile(Base):
    """
    Personal data attached to one account (1:1 on user_id).

    Lifecycle:
        1. Created at registration or on the first profile edit
        2. Mutated through ProfileService.update_safely or the migration job
        3. Deleted only when the owning account is deleted (best-effort)
    """

    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # ── Owner ─────────────────────────────────────────────────────────────
    # Immutable after creation; update paths never write it
    user_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        comment="Owning account id (accounts.id)",
    )

    # ── Sensitive fields (raw stored values) ──────────────────────────────
    given_name: Mapped[str] = mapped_column(Text, nullable=False)
    family_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)
    profile_image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True, default=None)

    # ── Plaintext fields ──────────────────────────────────────────────────
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, default=None)
    preferences: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=default_preferences,
    )

    # ── Encryption bookkeeping ────────────────────────────────────────────
    # NULL = never migrated; "v1" = all present sensitive fields are envelopes
    encryption_version: Mapped[Optional[str]] = mapped_column(
        String(16),
        nullable=True,
        default=None,
        comment="Scheme that produced the stored ciphertext; NULL if never migrated",
    )
    last_profile_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
        comment="Optimistic concurrency token, incremented on every write",
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_user_profiles_encryption_version", "encryption_version"),
    )

    def __repr__(self) -> str:
        # Sensitive columns are deliberately left out of the repr
        return (
            f"<UserProfile(id={self.id}, user_id={self.user_id}, "
            f"encryption_version='{self.encryption_version}', revision={self.revision})>"
        )
