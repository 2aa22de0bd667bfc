"""
Papir Backend — Media Route Handlers
=====================================

What:  Base64 media upload for a card and serving of locally stored objects.
Who:   The maker page uploads; viewer pages load the returned URL.

Routes:
    POST /api/upload-media         {fileData, fileName, fileType, cardId}
    GET  /api/files/{path}         stored object (LocalMediaStorage only)

    Upload only stores the object. The client then calls POST /api/cards with
    media_url / file_* to attach it to the card.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from app.dependencies import get_card_service, get_media_storage
from app.exceptions import NotFoundError
from app.schemas.card import ErrorResponse, MediaUploadRequest, MediaUploadResponse
from app.services.card_service import CardService
from app.services.storage import LocalMediaStorage, MediaStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Media"])


@router.post(
    "/upload-media",
    response_model=MediaUploadResponse,
    responses={
        400: {"description": "Malformed or undersized upload", "model": ErrorResponse},
        403: {"description": "Card not activated", "model": ErrorResponse},
        500: {"description": "Storage upload failed", "model": ErrorResponse},
    },
    summary="Upload media for a card",
)
async def upload_media(
    payload: MediaUploadRequest,
    service: CardService = Depends(get_card_service),
) -> MediaUploadResponse:
    stored = await service.upload_media(payload)
    return MediaUploadResponse(
        url=stored.url,
        path=stored.path,
        file_name=stored.file_name,
        file_size=stored.file_size,
        file_type=stored.file_type,
    )


@router.get(
    "/files/{file_path:path}",
    response_class=FileResponse,
    responses={404: {"description": "File not found", "model": ErrorResponse}},
    summary="Serve stored media",
)
async def serve_file(
    file_path: str,
    storage: MediaStorage = Depends(get_media_storage),
) -> FileResponse:
    """
    Serve an object written by LocalMediaStorage.

    resolve() rejects paths escaping the storage root (400). The media type
    is guessed from the file extension.
    """
    if not isinstance(storage, LocalMediaStorage):
        raise NotFoundError(resource="file", resource_id=file_path)

    full_path = storage.resolve(file_path)
    if not full_path.is_file():
        raise NotFoundError(resource="file", resource_id=file_path)

    return FileResponse(
        path=str(full_path),
        headers={"Cache-Control": "public, max-age=86400"},
    )
