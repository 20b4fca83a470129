"""
OpenBlind Backend — Account SQLAlchemy Model
==============================================

What:  ORM model for the `accounts` table (login identity, role, status).

Email storage:
    `email` holds an envelope produced by the same cipher engine as the profile
    fields. Randomized ciphertext cannot be matched with WHERE email = ?, so
    `email_hash` stores a keyed blind index of the normalized address and all
    lookups go through it. Rows written before the blind index existed have
    email_hash = NULL until migrate_account_emails() backfills them.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from openblind.database import Base
from openblind.models.profile import utcnow

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class Account(Base):
    """A login identity. Soft-deleted by setting active = False."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    email: Mapped[str] = mapped_column(Text, nullable=False, comment="Envelope-encrypted email")
    email_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
        index=True,
        comment="HMAC-SHA256 blind index of the normalized email",
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ROLE_USER,
        server_default=text("'user'"),
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

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

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, role='{self.role}', active={self.active})>"
