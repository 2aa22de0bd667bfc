# Routes package init
"""
Papir Backend — API Routes Package
===================================

What:  HTTP route handlers that accept requests and return responses.

Route Inventory:
    - cards.py:     GET/POST /api/cards, GET/DELETE /api/cards/{card_id},
                    POST /api/activate-card, POST /api/increment-scan
    - media.py:     POST /api/upload-media, GET /api/files/{path}
    - checkout.py:  POST /api/create-checkout
    - health.py:    GET  /api/health

Routes stay thin: they extract request data, call a service obtained from
app.dependencies and pick the status code. Lifecycle rules live in services.
"""
