"""
Papir Backend — Card Service Unit Tests
========================================

What:  Lifecycle rules of CardService against an in-memory SQLite store.

What we test:
    ✅ Save inserts (direct and physical mode) and updates
    ✅ Partial update leaves omitted fields untouched
    ✅ Pending and deleted cards reject Save
    ✅ Lost insert race surfaces as DuplicateKeyError
    ✅ Get / list exclude deleted cards; list is newest first
    ✅ Activation happens once and stamps the audit columns
    ✅ Soft delete reports the media cleanup outcome
    ✅ Scan counter increments sequentially
    ✅ Media upload is refused for pending cards
    ✅ Store failures are translated
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions import (
    AlreadyActivatedError,
    DuplicateKeyError,
    NotActivatedError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from app.models.card import PENDING_MESSAGE_TYPE, CardStatus
from app.schemas.card import CardSaveRequest, MediaUploadRequest
from app.services.card_service import CardService, normalize_card_id, validate_card_id
from app.services.media_service import MediaCleanup, MediaService
from app.services.storage import LocalMediaStorage


class TestNormalizeCardId:

    def test_trims_and_uppercases(self):
        assert normalize_card_id("  card_ab12cd34 ") == "CARD_AB12CD34"

    def test_none_becomes_empty(self):
        assert normalize_card_id(None) == ""

    @pytest.mark.parametrize("card_id", ["CARD_AB12CD34", "ABC-123", "X" * 64])
    def test_accepts_storage_safe_ids(self, card_id):
        assert validate_card_id(card_id) == card_id

    @pytest.mark.parametrize("card_id", ["A B", "A/B", "..", ".", "CAFÉ1", "X" * 65])
    def test_rejects_ids_that_are_not_storage_safe(self, card_id):
        with pytest.raises(ValidationError):
            validate_card_id(card_id)


class TestCardServiceSave:
    """Insert-or-update keyed on card_id."""

    @pytest.mark.asyncio
    async def test_creates_active_card_in_direct_mode(self, card_service):
        card, created = await card_service.save(
            CardSaveRequest(card_id="abc123", message_type="text", message_text=" Happy birthday! "),
            client_ip="10.0.0.1",
        )

        assert created is True
        assert card.card_id == "ABC123"
        assert card.status == CardStatus.ACTIVE.value
        assert card.message_text == "Happy birthday!"
        assert card.scan_count == 0
        assert card.created_by_ip == "10.0.0.1"
        assert card.updated_by_ip == "10.0.0.1"
        assert card.created_at is not None

    @pytest.mark.asyncio
    async def test_creates_pending_placeholder_in_physical_mode(self, db_session, media_service):
        service = CardService(db_session, media_service, creation_mode="physical")

        card, created = await service.save(
            CardSaveRequest(card_id="PHYS0001", message_type="text", message_text="ignored"),
        )

        assert created is True
        assert card.status == CardStatus.PENDING.value
        assert card.message_type == PENDING_MESSAGE_TYPE
        assert card.message_text is None

    @pytest.mark.asyncio
    async def test_updates_existing_active_card(self, card_service, make_card):
        await make_card("CARD_EDIT0001", message_text="old")

        card, created = await card_service.save(
            CardSaveRequest(card_id="card_edit0001", message_type="video", message_text="new"),
            client_ip="10.0.0.9",
        )

        assert created is False
        assert card.message_type == "video"
        assert card.message_text == "new"
        assert card.updated_by_ip == "10.0.0.9"

    @pytest.mark.asyncio
    async def test_partial_update_keeps_omitted_fields(self, card_service, make_card):
        await make_card(
            "CARD_MEDIA001",
            message_text="keep me",
            media_url="https://papir.test/api/files/CARD_MEDIA001/1_a.mp4",
            file_name="a.mp4",
        )

        card, _ = await card_service.save(CardSaveRequest(card_id="CARD_MEDIA001", message_type="video"))

        assert card.message_text == "keep me"
        assert card.media_url.endswith("1_a.mp4")
        assert card.file_name == "a.mp4"

    @pytest.mark.asyncio
    async def test_explicit_null_clears_field(self, card_service, make_card):
        await make_card("CARD_CLEAR001", message_text="remove me")

        card, _ = await card_service.save(
            CardSaveRequest(card_id="CARD_CLEAR001", message_type="text", message_text=None)
        )

        assert card.message_text is None

    @pytest.mark.asyncio
    async def test_update_refreshes_updated_at(self, card_service, make_card):
        original = await make_card("CARD_TIME0001", age_minutes=30)
        before = original.updated_at

        card, _ = await card_service.save(CardSaveRequest(card_id="CARD_TIME0001", message_type="text"))

        assert card.updated_at > before

    @pytest.mark.asyncio
    async def test_pending_card_rejects_save(self, card_service, make_card):
        await make_card("CARD_PEND0001", status="pending")

        with pytest.raises(NotActivatedError) as exc_info:
            await card_service.save(CardSaveRequest(card_id="CARD_PEND0001", message_type="text"))

        assert exc_info.value.message == "Card not activated. Please scan QR code first."

    @pytest.mark.asyncio
    async def test_deleted_card_id_is_not_reused(self, card_service, make_card):
        await make_card("CARD_GONE0001", status="deleted")

        with pytest.raises(NotFoundError):
            await card_service.save(CardSaveRequest(card_id="CARD_GONE0001", message_type="text"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("card_id,message_type", [("", "text"), ("   ", "text"), ("CARD_X", "  ")])
    async def test_blank_required_fields_rejected(self, card_service, card_id, message_type):
        with pytest.raises(ValidationError):
            await card_service.save(CardSaveRequest(card_id=card_id, message_type=message_type))

    @pytest.mark.asyncio
    async def test_lost_insert_race_raises_duplicate_key(self, card_service, make_card):
        await make_card("CARD_RACE0001")

        # Simulate the check running before the competing insert landed
        with patch.object(card_service, "_find", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateKeyError) as exc_info:
                await card_service.save(CardSaveRequest(card_id="CARD_RACE0001", message_type="text"))

        assert exc_info.value.card_id == "CARD_RACE0001"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("card_id", ["A B", "a/b", "..", "card.1"])
    async def test_ids_outside_charset_rejected(self, card_service, card_id):
        with pytest.raises(ValidationError):
            await card_service.save(CardSaveRequest(card_id=card_id, message_type="text"))

        assert await card_service.list_cards() == []

    @pytest.mark.asyncio
    async def test_lookalike_id_cannot_reach_another_cards_media(
        self, card_service, make_card, storage, media_payload
    ):
        await make_card("A_B")
        stored = await card_service.upload_media(
            MediaUploadRequest(fileData=media_payload, fileName="x.mp4", cardId="A_B")
        )

        with pytest.raises(ValidationError):
            await card_service.save(CardSaveRequest(card_id="A B", message_type="text"))
        with pytest.raises(NotFoundError):
            await card_service.delete("A B")

        assert await storage.list_objects("A_B") == [stored.path]


class TestCardServiceReads:

    @pytest.mark.asyncio
    async def test_get_returns_active_and_pending(self, card_service, make_card):
        await make_card("CARD_ACT00001")
        await make_card("CARD_PND00001", status="pending")

        assert (await card_service.get("card_act00001")).status == "active"
        assert (await card_service.get("CARD_PND00001")).status == "pending"

    @pytest.mark.asyncio
    async def test_get_deleted_or_unknown_raises(self, card_service, make_card):
        await make_card("CARD_DEL00001", status="deleted")

        with pytest.raises(NotFoundError):
            await card_service.get("CARD_DEL00001")
        with pytest.raises(NotFoundError):
            await card_service.get("CARD_NOPE0001")

    @pytest.mark.asyncio
    async def test_list_is_newest_first_without_deleted(self, card_service, make_card):
        await make_card("CARD_OLD00001", age_minutes=60)
        await make_card("CARD_NEW00001", age_minutes=1)
        await make_card("CARD_MID00001", status="pending", age_minutes=30)
        await make_card("CARD_DEL00002", status="deleted", age_minutes=10)

        cards = await card_service.list_cards()

        assert [c.card_id for c in cards] == ["CARD_NEW00001", "CARD_MID00001", "CARD_OLD00001"]

    @pytest.mark.asyncio
    async def test_store_outage_becomes_store_unavailable(self, card_service):
        outage = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch.object(card_service.session, "execute", AsyncMock(side_effect=outage)):
            with pytest.raises(StoreUnavailableError):
                await card_service.get("CARD_ANY00001")


class TestCardServiceActivate:

    @pytest.mark.asyncio
    async def test_activates_pending_card(self, card_service, make_card):
        await make_card("CARD_ACTV0001", status="pending")

        card = await card_service.activate("card_actv0001", client_ip="203.0.113.7")

        assert card.status == CardStatus.ACTIVE.value
        assert card.activated_by_ip == "203.0.113.7"
        assert card.terms_accepted_ip == "203.0.113.7"
        assert card.activated_at is not None
        assert card.terms_accepted_at == card.activated_at

    @pytest.mark.asyncio
    async def test_second_activation_fails_and_leaves_row(self, card_service, make_card):
        await make_card("CARD_ACTV0002", status="pending")
        first = await card_service.activate("CARD_ACTV0002", client_ip="1.1.1.1")
        activated_at = first.activated_at

        with pytest.raises(AlreadyActivatedError):
            await card_service.activate("CARD_ACTV0002", client_ip="2.2.2.2")

        card = await card_service.get("CARD_ACTV0002")
        assert card.activated_by_ip == "1.1.1.1"
        assert card.activated_at == activated_at

    @pytest.mark.asyncio
    async def test_unknown_card_raises_not_found(self, card_service):
        with pytest.raises(NotFoundError):
            await card_service.activate("CARD_MISSING1")

    @pytest.mark.asyncio
    async def test_deleted_card_raises_not_found(self, card_service, make_card):
        await make_card("CARD_ACTV0003", status="deleted")

        with pytest.raises(NotFoundError):
            await card_service.activate("CARD_ACTV0003")

    @pytest.mark.asyncio
    async def test_activated_card_accepts_save(self, card_service, make_card):
        await make_card("CARD_ACTV0004", status="pending")
        await card_service.activate("CARD_ACTV0004")

        card, created = await card_service.save(
            CardSaveRequest(card_id="CARD_ACTV0004", message_type="text", message_text="hi")
        )

        assert created is False
        assert card.message_text == "hi"


class TestCardServiceDelete:

    @pytest.mark.asyncio
    async def test_soft_delete_without_media(self, card_service, make_card):
        await make_card("CARD_RMV00001")

        result = await card_service.delete("card_rmv00001", client_ip="10.1.1.1")

        assert result.card_id == "CARD_RMV00001"
        assert result.record_deleted is True
        assert result.media is MediaCleanup.NONE
        with pytest.raises(NotFoundError):
            await card_service.get("CARD_RMV00001")

    @pytest.mark.asyncio
    async def test_delete_removes_stored_media(self, card_service, make_card, storage, media_bytes):
        await make_card("CARD_RMV00002")
        await storage.upload("CARD_RMV00002/1_clip.mp4", media_bytes)

        result = await card_service.delete("CARD_RMV00002")

        assert result.media is MediaCleanup.DELETED
        assert await storage.list_objects("CARD_RMV00002") == []

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_block_delete(self, db_session, make_card, tmp_path, media_bytes):
        class BrokenRemoveStorage(LocalMediaStorage):
            async def remove(self, paths):
                raise OSError("read-only file system")

        storage = BrokenRemoveStorage(storage_root=str(tmp_path / "broken"), public_base_url="https://papir.test")
        await storage.upload("CARD_RMV00003/1_clip.mp4", media_bytes)
        service = CardService(db_session, MediaService(storage), creation_mode="direct")
        await make_card("CARD_RMV00003")

        result = await service.delete("CARD_RMV00003")

        assert result.record_deleted is True
        assert result.media is MediaCleanup.FAILED
        with pytest.raises(NotFoundError):
            await service.get("CARD_RMV00003")

    @pytest.mark.asyncio
    async def test_listing_failure_does_not_block_delete(self, db_session, make_card, tmp_path):
        class BrokenListStorage(LocalMediaStorage):
            async def list_objects(self, prefix):
                raise ValidationError(message="Invalid file path", field="path")

        storage = BrokenListStorage(storage_root=str(tmp_path / "broken"), public_base_url="https://papir.test")
        service = CardService(db_session, MediaService(storage), creation_mode="direct")
        await make_card("CARD_RMV00005")

        result = await service.delete("CARD_RMV00005")

        assert result.record_deleted is True
        assert result.media is MediaCleanup.FAILED
        with pytest.raises(NotFoundError):
            await service.get("CARD_RMV00005")

    @pytest.mark.asyncio
    async def test_legacy_id_without_storage_prefix_is_still_deleted(self, card_service, make_card):
        # Rows written before IDs were restricted may not map to a storage prefix
        await make_card("..")

        result = await card_service.delete("..")

        assert result.record_deleted is True
        assert result.media is MediaCleanup.FAILED
        with pytest.raises(NotFoundError):
            await card_service.get("..")

    @pytest.mark.asyncio
    async def test_delete_twice_raises_not_found(self, card_service, make_card):
        await make_card("CARD_RMV00004")
        await card_service.delete("CARD_RMV00004")

        with pytest.raises(NotFoundError):
            await card_service.delete("CARD_RMV00004")


class TestCardServiceScanCount:

    @pytest.mark.asyncio
    async def test_sequential_increments(self, card_service, make_card):
        await make_card("CARD_SCAN0001", scan_count=3)

        assert await card_service.increment_scan_count("card_scan0001") == 4
        assert await card_service.increment_scan_count("CARD_SCAN0001") == 5

    @pytest.mark.asyncio
    async def test_unknown_card_raises_not_found(self, card_service):
        with pytest.raises(NotFoundError):
            await card_service.increment_scan_count("CARD_NOSCAN01")


class TestCardServiceUploadMedia:

    @pytest.mark.asyncio
    async def test_upload_for_active_card(self, card_service, make_card, media_payload):
        await make_card("CARD_UPL00001")

        stored = await card_service.upload_media(
            MediaUploadRequest(fileData=media_payload, fileName="clip.mp4", fileType="video/mp4", cardId="card_upl00001")
        )

        assert stored.path.startswith("CARD_UPL00001/")
        assert stored.file_size == 256

    @pytest.mark.asyncio
    async def test_upload_before_first_save_is_allowed(self, card_service, media_payload):
        stored = await card_service.upload_media(
            MediaUploadRequest(fileData=media_payload, fileName="clip.mp4", cardId="CARD_NEW00002")
        )

        assert stored.path.startswith("CARD_NEW00002/")

    @pytest.mark.asyncio
    async def test_upload_for_pending_card_rejected(self, card_service, make_card, media_payload, storage):
        await make_card("CARD_UPL00002", status="pending")

        with pytest.raises(NotActivatedError):
            await card_service.upload_media(
                MediaUploadRequest(fileData=media_payload, fileName="clip.mp4", cardId="CARD_UPL00002")
            )

        assert await storage.list_objects("CARD_UPL00002") == []

    @pytest.mark.asyncio
    async def test_upload_for_invalid_id_rejected(self, card_service, media_payload, storage):
        with pytest.raises(ValidationError):
            await card_service.upload_media(
                MediaUploadRequest(fileData=media_payload, fileName="clip.mp4", cardId="..")
            )

        assert list(storage.storage_root.iterdir()) == []
