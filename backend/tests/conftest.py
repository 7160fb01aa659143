"""Shared test fixtures and configuration."""
import os

# Settings are read lazily from the environment on first use; every module
# under test must see an in-memory database and no Redis.
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-bytes")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = ""

from collections.abc import AsyncIterator, Awaitable, Callable

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.rbac_contract import ADMIN_ROLE, SUPER_ADMIN_ROLE, VOLUNTEER_ROLE
from app.models import Base, Role, User
from app.services.admin.role_service import RoleService
from app.services.admin.seeding import seed_rbac
from app.services.admin.user_service import UserService

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session: AsyncSession) -> dict[str, Role]:
    """Default permissions and the super-admin, admin and volunteer roles."""
    await seed_rbac(session)
    await session.commit()
    service = RoleService(session)
    return {
        name: await service.get_role_by_name(name)
        for name in (SUPER_ADMIN_ROLE, ADMIN_ROLE, VOLUNTEER_ROLE)
    }


@pytest.fixture
def make_user(session: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = 0

    async def factory(*roles: Role, name: str | None = None, email: str | None = None) -> User:
        nonlocal counter
        counter += 1
        user = await UserService(session).create_user(
            name=name or f"User {counter}",
            email=email or f"user{counter}@example.com",
            password=TEST_PASSWORD,
            role_ids=[role.id for role in roles],
            is_approved=True,
        )
        await session.commit()
        return user

    return factory


@pytest.fixture
async def super_admin(seeded, make_user) -> User:
    return await make_user(seeded[SUPER_ADMIN_ROLE], name="Root", email="root@example.com")


@pytest.fixture
async def admin(seeded, make_user) -> User:
    return await make_user(seeded[ADMIN_ROLE], name="Admin", email="admin@example.com")


@pytest.fixture
async def volunteer(seeded, make_user) -> User:
    return await make_user(seeded[VOLUNTEER_ROLE], name="Volunteer", email="volunteer@example.com")
