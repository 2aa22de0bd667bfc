"""
Papir Backend — Payment Service (Stripe Checkout)
==================================================

What:  Creates a hosted Stripe Checkout session for purchasing an e-card.
How:   Looks the price up server-side, builds a single line item and calls
       stripe.checkout.Session.create() in a worker thread (the Stripe SDK is
       synchronous).
Who:   POST /api/create-checkout.

Pricing:
    The amount charged comes from TEMPLATE_PRICES[template] or
    CARD_DEFAULT_PRICE. A price sent by the client is only compared and
    logged; it never reaches Stripe.

Redirects:
    success → {PUBLIC_BASE_URL}/maker.html?card=<id>&session_id={CHECKOUT_SESSION_ID}
    cancel  → {PUBLIC_BASE_URL}/customize.html?template=<template>
    ({CHECKOUT_SESSION_ID} is a literal placeholder filled in by Stripe.)
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Dict, Optional
from urllib.parse import quote

import stripe

from app.config import settings
from app.exceptions import StoreUnavailableError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

PRODUCT_DESCRIPTION = "Personalized augmented reality greeting card"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class PaymentService:
    """Stripe Checkout wrapper with server-authoritative pricing."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        currency: Optional[str] = None,
        template_prices: Optional[Dict[str, float]] = None,
        default_price: Optional[float] = None,
        public_base_url: Optional[str] = None,
        stripe_module: Optional[ModuleType] = None,
    ):
        self.api_key = settings.stripe_secret_key if api_key is None else api_key
        self.currency = currency or settings.checkout_currency
        self.template_prices = settings.template_prices if template_prices is None else template_prices
        self.default_price = settings.card_default_price if default_price is None else default_price
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self._stripe = stripe_module or stripe

    def price_for(self, template_name: str) -> float:
        return float(self.template_prices.get(template_name, self.default_price))

    async def create_checkout(
        self,
        card_id: str,
        template_name: str,
        price: Optional[float] = None,
        customization: Optional[Dict[str, Any]] = None,
    ) -> CheckoutSession:
        """
        Create a checkout session for one e-card.

        Raises:
            ValidationError: blank card ID or template name
            StoreUnavailableError: STRIPE_SECRET_KEY is not configured (503)
            UpstreamError: Stripe rejected or failed the request (500)
        """
        card_id = (card_id or "").strip().upper()
        template_name = (template_name or "").strip()
        if not card_id or not template_name:
            raise ValidationError(
                message="Missing required fields: cardId, templateName",
                field="cardId" if not card_id else "templateName",
            )

        if not self.api_key:
            raise StoreUnavailableError(
                message="Payments are not configured",
                service="payments",
            )

        amount = self.price_for(template_name)
        if price is not None and round(price * 100) != round(amount * 100):
            logger.warning(
                "Ignoring client price %.2f for template %s; charging %.2f",
                price, template_name, amount,
            )

        params = self._session_params(card_id, template_name, amount, customization)
        logger.info("Creating checkout session for %s (%s, %.2f %s)", card_id, template_name, amount, self.currency)

        try:
            session = await asyncio.to_thread(self._stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error("Stripe error for %s: %s", card_id, str(e))
            raise UpstreamError(
                message="Could not create checkout session",
                service="payments",
                context={"card_id": card_id, "error_type": type(e).__name__},
            ) from e

        logger.info("Checkout session created: %s", session.id)
        return CheckoutSession(session_id=session.id, url=session.url)

    def _session_params(
        self,
        card_id: str,
        template_name: str,
        amount: float,
        customization: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        card_q = quote(card_id, safe="")
        template_q = quote(template_name, safe="")
        return {
            "api_key": self.api_key,
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": f"Papir E-Card: {template_name}",
                            "description": PRODUCT_DESCRIPTION,
                            "metadata": {"card_id": card_id, "template": template_name},
                        },
                        "unit_amount": round(amount * 100),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": (
                f"{self.public_base_url}/maker.html?card={card_q}"
                "&session_id={CHECKOUT_SESSION_ID}"
            ),
            "cancel_url": f"{self.public_base_url}/customize.html?template={template_q}",
            "metadata": {
                "card_id": card_id,
                "template": template_name,
                "customization": json.dumps(customization),
            },
        }
