"""
Specialist Marketplace Backend — Test Configuration (conftest.py)
==================================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Tests run against a real SQLite database (aiosqlite) in a temporary
       directory, so queries, constraints and the partial unique index are
       exercised for real. Images go to a temporary LocalDiskStorage.

Fixture Hierarchy (all function-scoped):
    ├── app_settings:    Settings pointed at the temp directory
    ├── database:        Connected Database with the schema created
    │   └── db_session:  One AsyncSession for service-level tests
    ├── storage:         LocalDiskStorage in the temp directory
    ├── app:             create_app() wired to the fixtures above
    │   └── test_client: HTTPX AsyncClient over ASGITransport
    ├── mock_db_session: AsyncMock session for pure unit tests
    └── png_bytes:       A tiny PNG payload for uploads
"""

import os
import tempfile

# Override settings for testing BEFORE any marketplace imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="marketplace_test_")
os.environ["LOG_LEVEL"] = "WARNING"
for _name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ.pop(_name, None)

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from marketplace.config import Settings  # noqa: E402
from marketplace.database import Database  # noqa: E402
from marketplace.main import create_app  # noqa: E402
from marketplace.services.file_service import LocalDiskStorage  # noqa: E402


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upload_dir=str(tmp_path / "uploads"),
        cloudinary_cloud_name="",
        cloudinary_api_key="",
        cloudinary_api_secret="",
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def database(app_settings):
    """A connected Database with every table created; disposed afterwards."""
    db = Database.from_settings(app_settings)
    await db.connect()
    await db.create_schema()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    """
    A session for calling services directly.

    Tests flush through the service; nothing is committed unless the test
    commits itself.
    """
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def storage(app_settings):
    return LocalDiskStorage(app_settings.upload_dir)


@pytest.fixture
def app(app_settings, database, storage):
    return create_app(app_settings=app_settings, database=database, media_storage=storage)


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient routed straight into the ASGI app.

    ASGITransport does not run the lifespan; create_app() already put the
    (connected) database and storage on app.state.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def mock_db_session():
    """
    An AsyncMock standing in for AsyncSession.

    Usage:
        mock_db_session.scalar.side_effect = [some_id, None]
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.scalar = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session


@pytest.fixture
def png_bytes():
    """Minimal PNG signature + IHDR chunk; enough for upload validation."""
    return (
        b"\x89PNG\r\n\x1a\n"
        b"\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00"
        b"\x90wS\xde"
    )


@pytest.fixture
def listing_payload():
    """A valid JSON create body."""
    return {
        "title": "Tax Advisor",
        "description": "Personal and small-business tax returns",
        "base_price": 100,
        "platform_fee": 15,
        "duration_days": 7,
    }
