import pytest
import asyncio
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator, List

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

TEST_JWT_SECRET = "gallery-test-secret-key-0123456789abcdef"

# Must be in place before the application modules read them at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET_KEY"] = TEST_JWT_SECRET
os.environ.pop("JWT_AUDIENCE", None)
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="gallery-tests-"), "gallery.db"
)

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from main import app
from core.auth import JWTManager, User
from core.database import create_db_and_tables, get_session
from core.models import GalleryItem
from core.performance import MetricsCollector

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_item(
    index: int,
    person_name: str = None,
    is_public: bool = True,
    user_id: str = None,
) -> GalleryItem:
    """Gallery row whose created_at grows with `index` (higher index = newer)"""
    return GalleryItem(
        id=f"item-{index:03d}",
        person_name=person_name if person_name is not None else f"Person {index}",
        generated_image=f"https://images.example.com/avatars/{index}.png",
        is_public=is_public,
        created_at=BASE_TIME + timedelta(minutes=index),
        user_id=user_id,
    )


async def insert_items(engine, items: List[GalleryItem]):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        session.add_all(items)
        await session.commit()


def new_engine(tmp_path):
    return create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}", poolclass=NullPool
    )


@pytest.fixture
async def async_engine(tmp_path):
    """Fresh database for async (service level) tests."""
    engine = new_engine(tmp_path)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine):
    async with AsyncSession(async_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def api_engine(tmp_path):
    """Fresh database for synchronous TestClient tests."""
    engine = new_engine(tmp_path)
    asyncio.run(create_db_and_tables(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def seed(api_engine):
    """Insert rows into the API test database."""

    def _seed(items: List[GalleryItem]):
        asyncio.run(insert_items(api_engine, items))

    return _seed


@pytest.fixture
def test_client(api_engine) -> Generator[TestClient, None, None]:
    """Create a test client backed by the per-test database."""
    factory = async_sessionmaker(api_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def jwt_manager() -> JWTManager:
    return JWTManager(secret_key=TEST_JWT_SECRET, algorithm="HS256", audience="")


@pytest.fixture
def test_user() -> User:
    return User(id="user-1", email="alice@example.com", name="Alice")


@pytest.fixture
def auth_headers(jwt_manager, test_user):
    token = jwt_manager.create_access_token(test_user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def mock_metrics_collector():
    """Create a metrics collector for testing."""
    return MetricsCollector()
