"""
Papir Backend — Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any `app` import; every test
       gets a fresh in-memory SQLite database (aiosqlite) and a media store
       on tmp_path.

Fixture Hierarchy (all function-scoped):
    db_engine ─┬─ db_session ── card_service
               └─ test_client (dependency overrides)
    storage ───┬─ media_service ── card_service
               └─ test_client
    stripe_stub ── payment_service ── test_client
"""

import base64
import os
import tempfile
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup (before any app import)
# ══════════════════════════════════════════════════════════════════════════

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="papir_test_")
os.environ["PUBLIC_BASE_URL"] = "https://papir.test"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["CARD_CREATION_MODE"] = "direct"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from app.models.card import PENDING_MESSAGE_TYPE, Card, CardStatus  # noqa: E402
from app.services.card_service import CardService  # noqa: E402
from app.services.media_service import MediaService  # noqa: E402
from app.services.payment_service import PaymentService  # noqa: E402
from app.services.storage import LocalMediaStorage  # noqa: E402

BASE_URL = "https://papir.test"


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite shared by every connection of one test (StaticPool)."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_card(db_session):
    """
    Insert a card row directly, bypassing CardService.

    Usage:
        card = await make_card("CARD_PENDING1", status="pending")
    """

    async def _make(card_id: str, status: str = CardStatus.ACTIVE.value, age_minutes: int = 0, **fields):
        created = datetime.now(timezone.utc) - timedelta(minutes=age_minutes)
        card = Card(
            card_id=card_id,
            status=status,
            message_type=fields.pop(
                "message_type",
                PENDING_MESSAGE_TYPE if status == CardStatus.PENDING.value else "text",
            ),
            scan_count=fields.pop("scan_count", 0),
            created_at=created,
            updated_at=created,
            **fields,
        )
        db_session.add(card)
        await db_session.commit()
        return card

    return _make


# ══════════════════════════════════════════════════════════════════════════
# Media
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def storage(tmp_path):
    return LocalMediaStorage(storage_root=str(tmp_path / "media"), public_base_url=BASE_URL)


@pytest.fixture
def media_service(storage):
    return MediaService(storage)


@pytest.fixture
def media_bytes():
    """256 bytes of fake media content (above the 100 byte minimum)."""
    return bytes(range(256))


@pytest.fixture
def media_payload(media_bytes):
    """The same content as the web client sends it: a base64 data URL."""
    return "data:video/mp4;base64," + base64.b64encode(media_bytes).decode("ascii")


# ══════════════════════════════════════════════════════════════════════════
# Services
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def card_service(db_session, media_service):
    return CardService(db_session, media_service, creation_mode="direct")


@pytest.fixture
def stripe_stub():
    """Stand-in for the stripe module; Session.create returns a fixed session."""
    stub = MagicMock()
    stub.checkout.Session.create.return_value = SimpleNamespace(
        id="cs_test_123",
        url="https://checkout.stripe.test/c/cs_test_123",
    )
    return stub


@pytest.fixture
def payment_service(stripe_stub):
    return PaymentService(
        api_key="sk_test_dummy",
        currency="usd",
        template_prices={"birthday": 6.5},
        default_price=4.99,
        public_base_url=BASE_URL,
        stripe_module=stripe_stub,
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, storage, payment_service):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    The database session, media store and payment service are replaced
    through dependency_overrides; they are restored after the test.
    """
    from app.database import get_db_session
    from app.dependencies import get_media_storage, get_payment_service
    from app.main import app

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_media_storage] = lambda: storage
    app.dependency_overrides[get_payment_service] = lambda: payment_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
