"""
Papir Backend — Pydantic Request/Response Schemas
==================================================

What:  Pydantic models defining the API contract between the web client and backend.
How:   FastAPI validates request bodies against the request models and serializes
       responses through the response models (by alias, so camelCase keys such as
       `qrCode` and `sessionId` appear on the wire).
Who:   Used by route handlers and services.

Conventions:
    - Every response carries `success`.
    - Request models list required fields without defaults; optional fields
      default to None. Services call `model_dump(exclude_unset=True)` to tell
      "omitted" apart from "sent as null".
    - Bodies that the web client sends in camelCase (`fileData`, `cardId`, ...)
      use aliases with populate_by_name, so Python code uses snake_case.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Request Models — What the client sends
# ══════════════════════════════════════════════════════════════════════════


class CardSaveRequest(BaseModel):
    """
    Body of POST /api/cards.

    Required: card_id, message_type (blank values are rejected by CardService).
    Optional: message text and the media fields returned by /api/upload-media.
    """
    card_id: str = Field(description="Card identifier (case-insensitive)")
    message_type: str = Field(description="Content kind, e.g. 'text', 'image', 'video'")
    message_text: Optional[str] = Field(default=None, description="Message body")
    media_url: Optional[str] = Field(default=None, description="Public URL of uploaded media")
    file_name: Optional[str] = Field(default=None)
    file_size: Optional[int] = Field(default=None, ge=0)
    file_type: Optional[str] = Field(default=None)


class CardKeyRequest(BaseModel):
    """Body of POST /api/activate-card and POST /api/increment-scan."""
    card_id: str = Field(description="Card identifier (case-insensitive)")


class MediaUploadRequest(BaseModel):
    """
    Body of POST /api/upload-media.

    fileData is base64, optionally prefixed with a data URL header
    (`data:image/png;base64,`).
    """
    file_data: str = Field(alias="fileData", description="Base64 file content")
    file_name: str = Field(alias="fileName")
    file_type: Optional[str] = Field(default=None, alias="fileType")
    card_id: str = Field(alias="cardId")

    model_config = {"populate_by_name": True}


class CheckoutRequest(BaseModel):
    """
    Body of POST /api/create-checkout.

    `price` is accepted for compatibility with the web client but is never
    charged; PaymentService looks the price up server-side.
    """
    card_id: str = Field(alias="cardId")
    template_name: str = Field(alias="templateName")
    price: Optional[float] = Field(default=None, description="Client-displayed price (ignored)")
    customization: Optional[Dict[str, Any]] = Field(default=None)

    model_config = {"populate_by_name": True}


# ══════════════════════════════════════════════════════════════════════════
# Response Models — What the API returns to clients
# ══════════════════════════════════════════════════════════════════════════


class CardResponse(BaseModel):
    """Full representation of a card row."""
    card_id: str
    status: str
    message_type: str
    message_text: Optional[str] = None
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    scan_count: int = 0
    created_at: datetime
    updated_at: datetime
    created_by_ip: Optional[str] = None
    updated_by_ip: Optional[str] = None
    activated_at: Optional[datetime] = None
    activated_by_ip: Optional[str] = None
    terms_accepted_at: Optional[datetime] = None
    terms_accepted_ip: Optional[str] = None

    model_config = {"from_attributes": True}


class CardUrls(BaseModel):
    """Links printed on / shared with a card."""
    viewer: str = Field(description="Viewer page URL for this card")
    qr_code: str = Field(alias="qrCode", description="QR code image URL encoding the viewer URL")

    model_config = {"populate_by_name": True}


class CardSaveResponse(BaseModel):
    """Returned by POST /api/cards (201 on create, 200 on update)."""
    success: bool = True
    message: str = "Card saved successfully!"
    card: CardResponse
    urls: CardUrls


class CardDetailResponse(BaseModel):
    """Returned by GET /api/cards/{card_id} and POST /api/activate-card."""
    success: bool = True
    message: Optional[str] = None
    card: CardResponse


class CardListResponse(BaseModel):
    """Returned by GET /api/cards. Not paginated."""
    success: bool = True
    cards: List[CardResponse]
    count: int


class CardDeleteResponse(BaseModel):
    """
    Returned by DELETE /api/cards/{card_id}.

    media: none (nothing stored) | deleted | partial | failed
    """
    success: bool = True
    message: str
    media: str


class ScanCountResponse(BaseModel):
    """Returned by POST /api/increment-scan."""
    success: bool = True
    count: int


class MediaUploadResponse(BaseModel):
    """Returned by POST /api/upload-media."""
    success: bool = True
    url: str
    path: str
    file_name: str
    file_size: int
    file_type: Optional[str] = None
    message: str = "File uploaded successfully"


class CheckoutResponse(BaseModel):
    """Returned by POST /api/create-checkout."""
    success: bool = True
    session_id: str = Field(alias="sessionId")
    url: str

    model_config = {"populate_by_name": True}


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error envelope for all API errors.

    Example:
        {
            "success": false,
            "error": "Card not found",
            "message": "Card 'CARD_AB12CD34' was not found",
            "details": {"resource": "card", "resource_id": "CARD_AB12CD34"},
            "request_id": "1f2e3d4c"
        }
    """
    success: bool = False
    error: str = Field(description="Short error summary")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Returned by GET /api/health."""
    success: bool = True
    timestamp: datetime
    status: str = Field(description="healthy or unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    uptime_seconds: float
