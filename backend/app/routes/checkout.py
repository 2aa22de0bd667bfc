"""
Papir Backend — Checkout Route
===============================

What:  POST /api/create-checkout → Stripe Checkout session for an e-card.
Who:   The customize page; the browser is redirected to the returned `url`.
"""

from fastapi import APIRouter, Depends

from app.dependencies import get_payment_service
from app.schemas.card import CheckoutRequest, CheckoutResponse, ErrorResponse
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/api", tags=["Payments"])


@router.post(
    "/create-checkout",
    response_model=CheckoutResponse,
    responses={
        400: {"description": "Missing card ID or template", "model": ErrorResponse},
        500: {"description": "Payment processor error", "model": ErrorResponse},
        503: {"description": "Payments not configured", "model": ErrorResponse},
    },
    summary="Create a checkout session",
    description="The charged amount is looked up server-side; a client-sent price is ignored.",
)
async def create_checkout(
    payload: CheckoutRequest,
    payments: PaymentService = Depends(get_payment_service),
) -> CheckoutResponse:
    session = await payments.create_checkout(
        card_id=payload.card_id,
        template_name=payload.template_name,
        price=payload.price,
        customization=payload.customization,
    )
    return CheckoutResponse(session_id=session.session_id, url=session.url)
