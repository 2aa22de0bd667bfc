"""
Papir Backend — Card Service (Lifecycle Manager)
=================================================

What:  Create, read, update, activate, soft-delete and scan-count rules for cards.
How:   Bound to one AsyncSession per request; every operation reads the row by
       card_id and then performs exactly one of {insert, update, reject}.
       Changes are flushed here and committed by get_db_session().
Who:   Built per request by app.dependencies.get_card_service(); called by the
       card, media and activation routes.

State Machine:
    ┌─────────┐  activate()   ┌────────┐  delete()   ┌─────────┐
    │ pending │──────────────▶│ active │────────────▶│ deleted │
    └─────────┘               └────────┘             └─────────┘
         │                      ▲    │ save() updates
         └──── delete() ────────┼────┼──────────────────▶ deleted
                                └────┘

    - save() on an unknown ID creates the card: active in "direct" mode,
      a pending placeholder in "physical" mode
    - save() and upload_media() are refused while a card is pending
    - deleted rows are invisible to every read, and their IDs stay reserved

Concurrency:
    save() is check-then-insert. Two requests creating the same new ID both
    see "absent"; the unique index on card_id rejects the second flush and it
    surfaces as DuplicateKeyError (409). increment_scan_count() is a
    read-modify-write and can lose increments under concurrent scans.
"""

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import is_unique_violation, translate_db_error
from app.exceptions import (
    AlreadyActivatedError,
    DuplicateKeyError,
    NotActivatedError,
    NotFoundError,
    ValidationError,
)
from app.models.card import CARD_ID_PATTERN, PENDING_MESSAGE_TYPE, Card, CardStatus, utcnow
from app.schemas.card import CardSaveRequest, MediaUploadRequest
from app.services.media_service import MediaCleanup, MediaService, StoredMedia

logger = logging.getLogger(__name__)

# Content columns a client may write through save()
CONTENT_FIELDS = ("message_type", "message_text", "media_url", "file_name", "file_size", "file_type")


class CreationMode(str, enum.Enum):
    DIRECT = "direct"
    PHYSICAL = "physical"


@dataclass(frozen=True)
class DeletionResult:
    card_id: str
    record_deleted: bool
    media: MediaCleanup


def normalize_card_id(card_id: Optional[str]) -> str:
    """Card IDs are case-insensitive: trimmed and stored upper-cased."""
    return (card_id or "").strip().upper()


def validate_card_id(card_id: str) -> str:
    """Reject normalized IDs outside [A-Z0-9_-], or longer than 64 characters."""
    if not CARD_ID_PATTERN.fullmatch(card_id):
        raise ValidationError(
            message="Invalid card ID: use letters, digits, '_' or '-' (max 64 characters)",
            field="card_id",
            context={"card_id": card_id[:80]},
        )
    return card_id


def _clean(value):
    return value.strip() if isinstance(value, str) else value


class CardService:
    """
    Business logic for the card lifecycle.

    Error Handling Strategy:
        Lifecycle violations raise the matching PapirError subclass.
        SQLAlchemy errors are translated by translate_db_error(): connection
        failures become StoreUnavailableError (503), the rest UpstreamError (500).
    """

    def __init__(
        self,
        session: AsyncSession,
        media: MediaService,
        creation_mode: Optional[str] = None,
    ):
        self.session = session
        self.media = media
        self.creation_mode = CreationMode(creation_mode or settings.card_creation_mode)

    # ── Save (insert-or-update) ───────────────────────────────────────────

    async def save(self, payload: CardSaveRequest, client_ip: str = "unknown") -> Tuple[Card, bool]:
        """
        Insert the card if absent, otherwise update its content.

        Only fields present in the request body are written on update; a field
        the client omitted keeps its stored value, a field sent as null is cleared.

        Returns:
            (card, created) where created is True for an insert

        Raises:
            ValidationError: blank card_id or message_type, or a card_id
                outside [A-Z0-9_-]{1,64} after normalization
            NotActivatedError: the card is still pending
            NotFoundError: the card was deleted
            DuplicateKeyError: a concurrent request inserted the same ID first
        """
        card_id = normalize_card_id(payload.card_id)
        message_type = _clean(payload.message_type)
        if not card_id or not message_type:
            raise ValidationError(
                message="Missing required fields",
                field="card_id" if not card_id else "message_type",
                context={"required": ["card_id", "message_type"]},
            )
        validate_card_id(card_id)

        card = await self._find(card_id, include_deleted=True)

        if card is None:
            card = self._new_card(card_id, payload, client_ip)
            self.session.add(card)
            await self._flush("insert card", card_id)
            logger.info("Card %s created (status=%s, ip=%s)", card_id, card.status, client_ip)
            return card, True

        if card.is_deleted:
            raise NotFoundError(resource_id=card_id)
        if card.status == CardStatus.PENDING.value:
            raise NotActivatedError(card_id, card.status)

        changes = payload.model_dump(exclude_unset=True, include=set(CONTENT_FIELDS))
        for field, value in changes.items():
            setattr(card, field, _clean(value))
        card.updated_at = utcnow()
        card.updated_by_ip = client_ip

        await self._flush("update card", card_id)
        logger.info("Card %s updated (%s)", card_id, ", ".join(sorted(changes)))
        return card, False

    def _new_card(self, card_id: str, payload: CardSaveRequest, client_ip: str) -> Card:
        now = utcnow()
        card = Card(
            card_id=card_id,
            scan_count=0,
            created_at=now,
            updated_at=now,
            created_by_ip=client_ip,
            updated_by_ip=client_ip,
        )
        if self.creation_mode is CreationMode.PHYSICAL:
            card.status = CardStatus.PENDING.value
            card.message_type = PENDING_MESSAGE_TYPE
            return card

        card.status = CardStatus.ACTIVE.value
        for field in CONTENT_FIELDS:
            setattr(card, field, _clean(getattr(payload, field)))
        return card

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get(self, card_id: str) -> Card:
        """Return a pending or active card; deleted and unknown IDs are 404."""
        key = normalize_card_id(card_id)
        card = await self._find(key)
        if card is None:
            raise NotFoundError(resource_id=key or None)
        return card

    async def list_cards(self) -> List[Card]:
        """Every non-deleted card, newest first. Not paginated."""
        query = (
            select(Card)
            .where(Card.status != CardStatus.DELETED.value)
            .order_by(Card.created_at.desc())
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Database error listing cards: %s", str(e))
            raise translate_db_error(e, "list cards") from e
        return list(result.scalars().all())

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete(self, card_id: str, client_ip: str = "unknown") -> DeletionResult:
        """
        Soft-delete a card and remove its media.

        The row is marked deleted first; media removal is best-effort and its
        outcome is reported in the result rather than raised.
        """
        key = normalize_card_id(card_id)
        card = await self._find(key)
        if card is None:
            raise NotFoundError(resource_id=key or None)

        card.status = CardStatus.DELETED.value
        card.updated_at = utcnow()
        card.updated_by_ip = client_ip
        await self._flush("delete card", key)

        media = await self.media.remove_card_media(key)
        if media in (MediaCleanup.PARTIAL, MediaCleanup.FAILED):
            logger.warning("Card %s deleted but media cleanup was %s", key, media.value)
        else:
            logger.info("Card %s deleted (media: %s)", key, media.value)

        return DeletionResult(card_id=key, record_deleted=True, media=media)

    # ── Activation ────────────────────────────────────────────────────────

    async def activate(self, card_id: str, client_ip: str = "unknown") -> Card:
        """
        pending → active, stamping activation and terms acceptance.

        Raises:
            NotFoundError: unknown or deleted card
            AlreadyActivatedError: the card is not pending (row left unchanged)
        """
        key = normalize_card_id(card_id)
        if not key:
            raise ValidationError(message="Card ID is required", field="card_id")

        card = await self._find(key)
        if card is None:
            raise NotFoundError(resource_id=key)
        if card.status != CardStatus.PENDING.value:
            raise AlreadyActivatedError(key, card.status)

        now = utcnow()
        card.status = CardStatus.ACTIVE.value
        card.activated_at = now
        card.activated_by_ip = client_ip
        card.terms_accepted_at = now
        card.terms_accepted_ip = client_ip
        card.updated_at = now
        card.updated_by_ip = client_ip

        await self._flush("activate card", key)
        logger.info("Card %s activated (ip=%s)", key, client_ip)
        return card

    # ── Scan Counter ──────────────────────────────────────────────────────

    async def increment_scan_count(self, card_id: str) -> int:
        key = normalize_card_id(card_id)
        card = await self._find(key)
        if card is None:
            raise NotFoundError(resource_id=key or None)

        card.scan_count = (card.scan_count or 0) + 1
        card.updated_at = utcnow()
        await self._flush("increment scan count", key)
        return card.scan_count

    # ── Media ─────────────────────────────────────────────────────────────

    async def upload_media(self, payload: MediaUploadRequest) -> StoredMedia:
        """
        Store media for a card that is active or not created yet.

        Raises:
            NotActivatedError: the card exists and is still pending
            NotFoundError: the card was deleted
        """
        key = normalize_card_id(payload.card_id)
        if not key or not payload.file_data:
            raise ValidationError(
                message="Missing required fields: fileData, fileName, cardId",
                field="cardId" if not key else "fileData",
            )
        validate_card_id(key)

        card = await self._find(key, include_deleted=True)
        if card is not None:
            if card.is_deleted:
                raise NotFoundError(resource_id=key)
            if card.status != CardStatus.ACTIVE.value:
                raise NotActivatedError(key, card.status)

        return await self.media.store_card_media(
            card_id=key,
            file_data=payload.file_data,
            file_name=payload.file_name,
            file_type=payload.file_type,
        )

    # ── Store Access ──────────────────────────────────────────────────────

    async def _find(self, card_id: str, include_deleted: bool = False) -> Optional[Card]:
        if not card_id:
            return None
        query = select(Card).where(Card.card_id == card_id)
        if not include_deleted:
            query = query.where(Card.status != CardStatus.DELETED.value)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Database error fetching card %s: %s", card_id, str(e))
            raise translate_db_error(e, "fetch card") from e
        return result.scalar_one_or_none()

    async def _flush(self, operation: str, card_id: str) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            if is_unique_violation(e):
                logger.warning("Concurrent insert lost the race for %s", card_id)
                raise DuplicateKeyError(card_id) from e
            raise translate_db_error(e, operation) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Database error during %s for %s: %s", operation, card_id, str(e))
            raise translate_db_error(e, operation) from e
