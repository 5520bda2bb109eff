"""
Specialist Marketplace Backend — Application Package Initializer
================================================================

What: Marks the `marketplace` directory as a Python package.
Why:  Enables module imports like `from marketplace.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, body resolution
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Slugs, pricing, lifecycle, storage
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Injected async SQLAlchemy handle
    └─────────────────────────────────────┘

    Routes never touch the ORM directly, and services never see a Request.
"""

__version__ = "1.0.0"
