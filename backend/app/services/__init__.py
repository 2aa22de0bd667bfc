# Services package init
"""
Papir Backend — Services Layer
===============================

What:  Business logic between the routes (HTTP) and the stores (database, media).

Service Inventory:
    - CardService:         card lifecycle (save, get, list, delete, activate, scans)
    - CardBatchGenerator:  collision-free pending card batches + manifest CSV
    - MediaService:        base64 decoding, upload-then-prune, media removal
    - MediaStorage:        object store interface; LocalMediaStorage on disk
    - PaymentService:      Stripe Checkout with server-side pricing
    - links:               viewer and QR code URLs

Services never see a Request: the routes pass plain values (payload models,
client IP) and services raise PapirError subclasses.
"""
