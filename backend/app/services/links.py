"""
Papir Backend — Card Links
===========================

What:  Builds the viewer URL printed on / shared for a card and the QR image URL
       that encodes it.
Who:   CardService responses (POST /api/cards) and the batch generator manifest.

    viewer:  {PUBLIC_BASE_URL}/viewer.html?card=CARD_AB12CD34
    qr:      {QR_SERVICE_URL}?size=300x300&data=<urlencoded viewer>&format=png&margin=10
"""

from typing import Optional
from urllib.parse import quote

from app.config import settings
from app.schemas.card import CardUrls

QR_SIZE = "300x300"
QR_MARGIN = 10


def viewer_url(card_id: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/viewer.html?card={quote(card_id, safe='')}"


def qr_code_url(target: str, service_url: Optional[str] = None) -> str:
    # The whole viewer URL travels as one query value, "/" and "?" included
    data = quote(target, safe="")
    return (
        f"{service_url or settings.qr_service_url}"
        f"?size={QR_SIZE}&data={data}&format=png&margin={QR_MARGIN}"
    )


def build_card_urls(card_id: str) -> CardUrls:
    viewer = viewer_url(card_id)
    return CardUrls(viewer=viewer, qr_code=qr_code_url(viewer))
