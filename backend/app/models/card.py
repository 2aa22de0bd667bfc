"""
Papir Backend — Card SQLAlchemy Model
======================================

What:  ORM model representing the `cards` table.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Used by CardService and CardBatchGenerator.

Table Design:
    - id: surrogate UUID primary key
    - card_id: natural key printed on the physical card / encoded in the QR link.
      Unique across every row, deleted ones included, so an ID is never reused.
    - status: pending → active → deleted (see CardStatus)
    - content: message_type, message_text and at most one media object
    - audit: server-set timestamps and best-effort client IPs
    - activation audit: only written by the pending → active transition

    Types are portable (no PostgreSQL-only column types) so the same model runs
    against PostgreSQL in production and SQLite in the test suite.
"""

import enum
import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class CardStatus(str, enum.Enum):
    """
    Lifecycle states of a card.

    PENDING:  printed by the batch generator, not yet claimed by a customer
    ACTIVE:   claimed and able to carry content
    DELETED:  soft-removed, excluded from every read
    """

    PENDING = "pending"
    ACTIVE = "active"
    DELETED = "deleted"


# message_type stored on generated and placeholder cards until content is saved
PENDING_MESSAGE_TYPE = "pending"

# Normalized card IDs; the ID doubles as the media storage prefix, so it must
# map to exactly one directory name
CARD_ID_PATTERN = re.compile(r"[A-Z0-9_-]{1,64}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Card(Base):
    """
    A greeting card record.

    Lifecycle:
        1. Created pending by the batch generator (or by Save in physical mode),
           or created active by Save in direct mode
        2. Activated once by the customer (pending → active, terms stamped)
        3. Content saved / updated any number of times while active
        4. Soft-deleted (status = deleted); the row and its ID stay reserved

    Query Patterns:
        - Lookup by card_id: unique index on card_id
        - List newest first: idx_cards_created_at
    """

    __tablename__ = "cards"

    # ── Keys ──────────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    card_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="Upper-cased public card identifier",
    )

    # ── Lifecycle ─────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CardStatus.PENDING.value,
        server_default=text("'pending'"),
        comment="pending, active or deleted",
    )

    # ── Content ───────────────────────────────────────────────────────────
    message_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PENDING_MESSAGE_TYPE,
        comment="text, a media kind, or 'pending' before first content save",
    )
    message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    media_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    file_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Advisory counter; increments are read-modify-write and can be lost
    # under concurrent scans.
    scan_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    # ── Audit ─────────────────────────────────────────────────────────────
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
        server_default=text("CURRENT_TIMESTAMP"),
    )
    created_by_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_by_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # ── Activation Audit ──────────────────────────────────────────────────
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_by_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    terms_accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    terms_accepted_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_cards_created_at", created_at.desc()),
    )

    @property
    def is_deleted(self) -> bool:
        return self.status == CardStatus.DELETED.value

    def __repr__(self) -> str:
        return f"<Card(card_id='{self.card_id}', status='{self.status}', scan_count={self.scan_count})>"
