"""
Papir Backend — Route Dependencies
===================================

What:  Wires services to a request: the per-request database session, the
       process-wide media store and the payment client.
Who:   Route handlers, via Depends(). Tests replace get_db_session,
       get_media_storage and get_payment_service through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.services.card_service import CardService
from app.services.media_service import MediaService
from app.services.payment_service import PaymentService
from app.services.storage import LocalMediaStorage, MediaStorage


@lru_cache
def get_media_storage() -> MediaStorage:
    """One store per process; created on first use so imports stay side-effect free."""
    return LocalMediaStorage()


def get_card_service(
    session: AsyncSession = Depends(get_db_session),
    storage: MediaStorage = Depends(get_media_storage),
) -> CardService:
    return CardService(session, MediaService(storage))


@lru_cache
def get_payment_service() -> PaymentService:
    return PaymentService()
