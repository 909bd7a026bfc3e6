import os
import tempfile

# Configure the service before any cafeteria module reads settings.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(), 'cafeteria.db')}",
)
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("OTLP_ENDPOINT", "")
os.environ.setdefault("SEED_MENU", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from cafeteria import models  # noqa: E402,F401
from cafeteria.database import Base, build_engine  # noqa: E402
from cafeteria.models.profile import Role  # noqa: E402
from tests.factories import RecordingPublisher, make_caller  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest_asyncio.fixture
async def student(session_factory):
    return await make_caller(session_factory, Role.STUDENT, "student@campus.edu")


@pytest_asyncio.fixture
async def other_student(session_factory):
    return await make_caller(session_factory, Role.STUDENT, "other@campus.edu")


@pytest_asyncio.fixture
async def admin(session_factory):
    return await make_caller(session_factory, Role.ADMIN, "staff@campus.edu")
