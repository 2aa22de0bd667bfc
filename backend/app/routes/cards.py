"""
Papir Backend — Card Route Handlers
====================================

What:  Card CRUD, activation and scan counting.
How:   Thin handlers: resolve the client IP, call CardService, wrap the result
       in a response model. Errors propagate to the global handlers in main.py.
Who:   The maker, viewer and activation pages of the web client.

Routes:
    GET    /api/cards                list non-deleted cards (newest first)
    GET    /api/cards/{card_id}      single card
    POST   /api/cards                insert-or-update (201 created / 200 updated)
    DELETE /api/cards/{card_id}      soft delete + media cleanup
    POST   /api/activate-card        pending → active
    POST   /api/increment-scan       scan_count += 1
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status

from app.dependencies import get_card_service
from app.middleware.client_ip import get_client_ip
from app.schemas.card import (
    CardDeleteResponse,
    CardDetailResponse,
    CardKeyRequest,
    CardListResponse,
    CardResponse,
    CardSaveRequest,
    CardSaveResponse,
    ErrorResponse,
    ScanCountResponse,
)
from app.services.card_service import CardService
from app.services.links import build_card_urls

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Cards"])

_errors = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    404: {"description": "Card not found or deleted", "model": ErrorResponse},
    503: {"description": "Store unavailable", "model": ErrorResponse},
}


@router.get(
    "/cards",
    response_model=CardListResponse,
    summary="List cards",
)
async def list_cards(service: CardService = Depends(get_card_service)) -> CardListResponse:
    cards = await service.list_cards()
    return CardListResponse(
        cards=[CardResponse.model_validate(card) for card in cards],
        count=len(cards),
    )


@router.get(
    "/cards/{card_id}",
    response_model=CardDetailResponse,
    responses=_errors,
    summary="Get a single card",
)
async def get_card(
    card_id: str,
    service: CardService = Depends(get_card_service),
) -> CardDetailResponse:
    card = await service.get(card_id)
    return CardDetailResponse(card=CardResponse.model_validate(card))


@router.post(
    "/cards",
    response_model=CardSaveResponse,
    status_code=status.HTTP_200_OK,
    responses={
        201: {"description": "Card created", "model": CardSaveResponse},
        403: {"description": "Card not activated", "model": ErrorResponse},
        409: {"description": "Card ID taken by a concurrent request", "model": ErrorResponse},
        **_errors,
    },
    summary="Create or update a card",
    description=(
        "Creates the card when the ID is unknown, otherwise updates its content. "
        "Fields omitted from the body keep their stored values."
    ),
)
async def save_card(
    payload: CardSaveRequest,
    request: Request,
    response: Response,
    service: CardService = Depends(get_card_service),
) -> CardSaveResponse:
    card, created = await service.save(payload, client_ip=get_client_ip(request))
    if created:
        response.status_code = status.HTTP_201_CREATED
    return CardSaveResponse(
        card=CardResponse.model_validate(card),
        urls=build_card_urls(card.card_id),
    )


@router.delete(
    "/cards/{card_id}",
    response_model=CardDeleteResponse,
    responses=_errors,
    summary="Delete a card",
)
async def delete_card(
    card_id: str,
    request: Request,
    service: CardService = Depends(get_card_service),
) -> CardDeleteResponse:
    result = await service.delete(card_id, client_ip=get_client_ip(request))
    return CardDeleteResponse(
        message="Card deleted successfully",
        media=result.media.value,
    )


@router.post(
    "/activate-card",
    response_model=CardDetailResponse,
    responses=_errors,
    summary="Activate a printed card",
    description="Moves a pending card to active and records terms acceptance.",
)
async def activate_card(
    payload: CardKeyRequest,
    request: Request,
    service: CardService = Depends(get_card_service),
) -> CardDetailResponse:
    card = await service.activate(payload.card_id, client_ip=get_client_ip(request))
    return CardDetailResponse(
        message="Card activated successfully",
        card=CardResponse.model_validate(card),
    )


@router.post(
    "/increment-scan",
    response_model=ScanCountResponse,
    responses=_errors,
    summary="Count a viewer scan",
)
async def increment_scan(
    payload: CardKeyRequest,
    service: CardService = Depends(get_card_service),
) -> ScanCountResponse:
    count = await service.increment_scan_count(payload.card_id)
    return ScanCountResponse(count=count)
