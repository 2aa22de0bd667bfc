"""
Papir Backend — Custom Exception Hierarchy
===========================================

What:  Application-specific exceptions for the card lifecycle, media storage,
       payments and batch ID generation.
How:   Each exception carries a user-facing message and an optional context dict.
       Global exception handlers (registered in main.py) turn them into the
       `{success: false, error, message, details, request_id}` envelope with the
       matching HTTP status. The CLI catches them and exits non-zero.
Who:   Raised by services and middleware; caught by global handlers / the CLI.

Exception Hierarchy:
    PapirError (base)
    ├── ValidationError           → 400 Bad Request (client can fix)
    ├── NotFoundError             → 404 Not Found
    ├── DuplicateKeyError         → 409 Conflict
    ├── NotActivatedError         → 403 Forbidden
    ├── AlreadyActivatedError     → 400 Bad Request
    ├── RateLimitExceededError    → 429 Too Many Requests
    ├── StoreUnavailableError     → 503 Service Unavailable
    ├── UpstreamError             → 500 Internal Server Error
    │   └── MediaStorageError     → 500 Internal Server Error
    ├── ExhaustedAttemptsError    (batch generator, CLI only)
    └── BatchInsertError          (batch generator, CLI only)
"""

from typing import Any, Dict, Optional


class PapirError(Exception):
    """
    Base exception for all Papir application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; only returned for 4xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PapirError):
    """
    Raised when client input fails validation.

    When:    Missing card_id / message_type, malformed base64 media,
             undersized or oversized uploads, invalid batch size.
    HTTP:    400 Bad Request

    Example response:
        {
            "success": false,
            "error": "Missing required fields",
            "message": "card_id is required",
            "details": {"field": "card_id", "required": ["card_id", "message_type"]}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(PapirError):
    """
    Raised when a requested card does not exist or has been deleted.

    HTTP:    404 Not Found

    Soft-deleted cards are reported as missing: they are excluded from every
    read and their IDs are never handed out again.
    """

    def __init__(
        self,
        resource: str = "card",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource.capitalize()} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DuplicateKeyError(PapirError):
    """
    Raised when an insert loses a race on the unique card_id constraint.

    When:    Two Save calls for the same new card_id both observed "absent"
             and both inserted; the database rejected the second one.
    HTTP:    409 Conflict
    """

    def __init__(self, card_id: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["card_id"] = card_id
        super().__init__(
            message=f'Card "{card_id}" already exists. Please use a different ID.',
            context=ctx,
        )
        self.card_id = card_id


class NotActivatedError(PapirError):
    """
    Raised when content is saved or uploaded for a card that is still pending.

    HTTP:    403 Forbidden
    """

    def __init__(self, card_id: str, status: str = "pending"):
        super().__init__(
            message="Card not activated. Please scan QR code first.",
            context={"card_id": card_id, "status": status},
        )
        self.card_id = card_id


class AlreadyActivatedError(PapirError):
    """
    Raised when activation is attempted on a card that is not pending.

    HTTP:    400 Bad Request
    """

    def __init__(self, card_id: str, status: str):
        super().__init__(
            message=f"Card '{card_id}' has already been activated",
            context={"card_id": card_id, "status": status},
        )
        self.card_id = card_id
        self.status = status


class RateLimitExceededError(PapirError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests (with Retry-After header)
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Too many requests from this IP. Please wait {retry_after} seconds "
            f"before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class StoreUnavailableError(PapirError):
    """
    Raised when an external dependency cannot be reached or is not configured.

    When:    Database connection refused/lost, payment processor key missing.
    HTTP:    503 Service Unavailable
    """

    def __init__(
        self,
        message: str = "Database service temporarily unavailable",
        service: str = "database",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class UpstreamError(PapirError):
    """
    Raised when the database, media store or payment processor fails a call.

    HTTP:    500 Internal Server Error

    The message returned to the client is generic; the upstream error text is
    kept in `context` and logged server-side only.
    """

    def __init__(
        self,
        message: str = "An upstream service failed. Please try again later.",
        service: str = "database",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["service"] = service
        super().__init__(message=message, context=ctx)
        self.service = service


class MediaStorageError(UpstreamError):
    """
    Raised when the media store cannot write, list or remove an object.

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "Storage upload failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, service="media_storage", context=context)


class ExhaustedAttemptsError(PapirError):
    """
    Raised by the batch generator when the collision-retry budget runs out.

    Nothing has been inserted when this is raised.
    """

    def __init__(self, requested: int, generated: int, attempts: int):
        super().__init__(
            message=(
                f"Reached maximum attempts ({attempts}) after generating only "
                f"{generated}/{requested} unique IDs"
            ),
            context={"requested": requested, "generated": generated, "attempts": attempts},
        )
        self.requested = requested
        self.generated = generated
        self.attempts = attempts


class BatchInsertError(PapirError):
    """
    Raised when the store rejects the generated batch (e.g. a concurrent
    generator run claimed one of the IDs). The whole batch is rolled back and
    no manifest is written.
    """

    def __init__(
        self,
        message: str = "Batch insert failed; no cards were created",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
