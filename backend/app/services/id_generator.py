"""
Papir Backend — Unique ID Batch Generator
==========================================

What:  Generates a batch of globally unique card IDs, stores them as pending
       cards and writes the manufacturing manifest (CSV of ID + viewer URL).
How:   Loads every existing card_id into a set, draws random IDs until the
       batch is full or the attempt budget (10 × count) runs out, inserts the
       whole batch in one transaction, then writes the manifest.
Who:   The `papir generate-cards` CLI command (app/cli.py). Runs out-of-band;
       shares only the card_id namespace with the HTTP service.

Ordering Guarantees:
    - Budget exhausted → ExhaustedAttemptsError, nothing inserted, no manifest
    - Insert rejected  → rollback, BatchInsertError, no manifest
    - Manifest is written only after the commit succeeded, so every printed
      ID exists in the store

    A concurrent Save or a second generator run can claim an ID between the
    snapshot and the insert; the unique index turns that into BatchInsertError
    and the whole batch is discarded.
"""

import csv
import io
import logging
import random
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

import aiofiles
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import translate_db_error
from app.exceptions import BatchInsertError, ExhaustedAttemptsError, ValidationError
from app.models.card import CARD_ID_PATTERN, PENDING_MESSAGE_TYPE, Card, CardStatus, utcnow
from app.services.links import viewer_url

logger = logging.getLogger(__name__)

MANIFEST_HEADER = ("Card ID", "QR URL")

# Attempts allowed per requested ID before giving up
ATTEMPTS_PER_ID = 10


@dataclass
class GeneratedBatch:
    """Outcome of a successful generator run."""

    card_ids: List[str]
    manifest_rows: List[Tuple[str, str]]
    attempts: int
    manifest_path: Optional[str] = None
    duplicates: int = 0

    @property
    def efficiency(self) -> float:
        """Share of draws that produced a new ID (1.0 means no collisions)."""
        return len(self.card_ids) / self.attempts if self.attempts else 0.0


class CardBatchGenerator:
    """
    Collision-free batch ID generation against the card store.

    The RNG is injectable so tests can force collisions; production uses
    secrets.SystemRandom().
    """

    def __init__(
        self,
        session: AsyncSession,
        rng: Optional[random.Random] = None,
        prefix: Optional[str] = None,
        alphabet: Optional[str] = None,
        length: Optional[int] = None,
        public_base_url: Optional[str] = None,
    ):
        self.session = session
        self.rng = rng or secrets.SystemRandom()
        self.prefix = (prefix if prefix is not None else settings.card_id_prefix).upper()
        self.alphabet = alphabet or settings.card_id_alphabet
        self.length = length or settings.card_id_length
        self.public_base_url = public_base_url or settings.public_base_url

    def new_id(self) -> str:
        suffix = "".join(self.rng.choice(self.alphabet) for _ in range(self.length))
        return f"{self.prefix}{suffix}".upper()

    def _check_id_format(self) -> None:
        chars = set(self.prefix + self.alphabet.upper())
        if len(self.prefix) + self.length > 64 or not all(CARD_ID_PATTERN.fullmatch(c) for c in chars):
            raise ValidationError(
                message="Card ID prefix and alphabet must use A-Z, 0-9, '_' or '-' (max 64 characters)",
                field="alphabet",
                context={"prefix": self.prefix, "alphabet": self.alphabet, "length": self.length},
            )

    async def generate(self, count: int, manifest_path: Optional[str] = None) -> GeneratedBatch:
        """
        Generate, persist and export `count` new pending cards.

        Args:
            count: Number of cards (>= 1)
            manifest_path: CSV destination; None skips the manifest

        Raises:
            ValidationError: count < 1, or prefix / alphabet / length that would
                produce IDs outside [A-Z0-9_-]{1,64}
            ExhaustedAttemptsError: not enough unique IDs within 10 × count draws
            BatchInsertError: the store rejected the batch
            StoreUnavailableError / UpstreamError: the store could not be read
        """
        if count < 1:
            raise ValidationError(message="Batch size must be at least 1", field="count")
        self._check_id_format()

        logger.info("Generating %d cards...", count)
        existing = await self._existing_ids()
        logger.info("Found %d existing cards in database", len(existing))

        batch = self._draw(count, existing)

        await self._insert(batch.card_ids)
        logger.info("Inserted %d cards with status 'pending'", len(batch.card_ids))

        if manifest_path:
            await write_manifest(manifest_path, batch.manifest_rows)
            batch.manifest_path = manifest_path
            logger.info("Manifest saved: %s", manifest_path)

        logger.info(
            "Generation efficiency: %d%% (%d attempts)",
            round(batch.efficiency * 100),
            batch.attempts,
        )
        return batch

    def _draw(self, count: int, taken: Set[str]) -> GeneratedBatch:
        max_attempts = count * ATTEMPTS_PER_ID
        card_ids: List[str] = []
        rows: List[Tuple[str, str]] = []
        attempts = 0

        while len(card_ids) < count and attempts < max_attempts:
            attempts += 1
            card_id = self.new_id()
            if card_id in taken:
                continue
            taken.add(card_id)
            card_ids.append(card_id)
            rows.append((card_id, viewer_url(card_id, self.public_base_url)))

            generated = len(card_ids)
            if generated % 10 == 0 or generated == count:
                logger.info("Generated %d/%d (after %d attempts)", generated, count, attempts)

        if len(card_ids) < count:
            logger.error("Reached maximum attempts without generating enough unique IDs")
            raise ExhaustedAttemptsError(requested=count, generated=len(card_ids), attempts=attempts)

        return GeneratedBatch(
            card_ids=card_ids,
            manifest_rows=rows,
            attempts=attempts,
            duplicates=attempts - len(card_ids),
        )

    async def _existing_ids(self) -> Set[str]:
        try:
            result = await self.session.execute(select(Card.card_id))
        except SQLAlchemyError as e:
            logger.error("Failed to fetch existing cards: %s", str(e))
            raise translate_db_error(e, "fetch existing card ids") from e
        return {card_id.upper() for card_id in result.scalars().all()}

    async def _insert(self, card_ids: Sequence[str]) -> None:
        now = utcnow()
        rows = [
            {
                "card_id": card_id,
                "status": CardStatus.PENDING.value,
                "message_type": PENDING_MESSAGE_TYPE,
                "scan_count": 0,
                "created_at": now,
                "updated_at": now,
            }
            for card_id in card_ids
        ]
        try:
            await self.session.execute(insert(Card), rows)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error("Batch insert rejected, rolled back %d cards: %s", len(rows), str(e.orig))
            raise BatchInsertError(
                context={"count": len(rows), "error": str(e.orig)},
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise translate_db_error(e, "insert card batch") from e


def render_manifest(rows: Sequence[Tuple[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(MANIFEST_HEADER)
    writer.writerows(rows)
    return buffer.getvalue()


async def write_manifest(path: str, rows: Sequence[Tuple[str, str]]) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(target, "w", encoding="utf-8", newline="") as f:
        await f.write(render_manifest(rows))
