"""
Papir Backend — Application Package Initializer
================================================

What: Marks the `app` directory as a Python package.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest,
      uvicorn and the `papir` CLI.

Architecture Note:
    The backend is layered the same way for the HTTP service and the CLI:

    ┌─────────────────────────────────────┐
    │   Routes (API Layer) / CLI commands │  ← HTTP / terminal concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Card lifecycle, ID batches,
    │                                     │    media, payments
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database / Media Storage          │  ← Async SQLAlchemy sessions,
    │                                     │    MediaStorage implementations
    └─────────────────────────────────────┘

    Services receive their store handles (database session, media storage)
    when they are constructed, so tests can substitute in-memory versions.
"""

__version__ = "1.0.0"
