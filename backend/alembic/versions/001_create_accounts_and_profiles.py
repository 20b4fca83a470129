"""Create accounts and user_profiles tables

Revision ID: 001
Revises: None
Create Date: 2026-10-17 00:00:00.000000+00:00

What:  Initial schema: login accounts and the encrypted profile attached to
       each one.
Note:  Sensitive columns are TEXT because they hold hex envelopes
       (iv:ciphertext), roughly 2x the plaintext length plus 33 characters.

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=False, comment="Envelope-encrypted email"),
        sa.Column(
            "email_hash",
            sa.String(64),
            nullable=True,
            comment="HMAC-SHA256 blind index of the normalized email",
        ),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_email_hash", "accounts", ["email_hash"], unique=True)

    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            nullable=False,
            comment="Owning account id (accounts.id)",
        ),
        sa.Column("given_name", sa.Text(), nullable=False),
        sa.Column("family_name", sa.Text(), nullable=False),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("profile_image_url", sa.Text(), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("preferences", sa.JSON(), nullable=False),
        sa.Column(
            "encryption_version",
            sa.String(16),
            nullable=True,
            comment="Scheme that produced the stored ciphertext; NULL if never migrated",
        ),
        sa.Column("last_profile_update", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revision",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("1"),
            comment="Optimistic concurrency token, incremented on every write",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    # The migration job selects by version tag
    op.create_index(
        "idx_user_profiles_encryption_version",
        "user_profiles",
        ["encryption_version"],
    )


def downgrade() -> None:
    op.drop_index("idx_user_profiles_encryption_version", table_name="user_profiles")
    op.drop_table("user_profiles")
    op.drop_index("ix_accounts_email_hash", table_name="accounts")
    op.drop_table("accounts")
