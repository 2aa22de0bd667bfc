"""Create cards table

Revision ID: 001
Revises: None
Create Date: 2024-06-10 00:00:00.000000+00:00

What:  Creates the `cards` table: one row per greeting card, pending, active or
       (soft) deleted.
How:   Unique index on card_id (never reused, deleted rows included) and a
       created_at DESC index for the list endpoint.

Rollback: downgrade() drops the table and every card with it.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "cards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "card_id",
            sa.String(64),
            nullable=False,
            comment="Upper-cased public card identifier",
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
            comment="pending, active or deleted",
        ),

        # Content
        sa.Column(
            "message_type",
            sa.String(50),
            nullable=False,
            comment="text, a media kind, or 'pending' before first content save",
        ),
        sa.Column("message_text", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("file_type", sa.String(100), nullable=True),
        sa.Column("scan_count", sa.Integer(), nullable=False, server_default=sa.text("0")),

        # Audit
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("created_by_ip", sa.String(64), nullable=True),
        sa.Column("updated_by_ip", sa.String(64), nullable=True),

        # Activation audit
        sa.Column("activated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("activated_by_ip", sa.String(64), nullable=True),
        sa.Column("terms_accepted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("terms_accepted_ip", sa.String(64), nullable=True),

        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_cards_card_id", "cards", ["card_id"], unique=True)
    op.create_index("idx_cards_created_at", "cards", [sa.text("created_at DESC")])


def downgrade() -> None:
    op.drop_index("idx_cards_created_at", table_name="cards")
    op.drop_index("ix_cards_card_id", table_name="cards")
    op.drop_table("cards")
