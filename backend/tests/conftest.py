# tests/conftest.py - Shared test fixtures
import os

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["ACTION_LEVEL"] = "3"

import models
from models import Base, GroupType, user_groups
from auth import AuthService
from cache import reset_caches
from challenge_dal import challenge_dal
from database import get_db_session, engine
from main import app
from project_dal import project_dal
from schemas import User, ProjectCreate, ChallengeCreate, TaskCreate
from task_dal import task_dal
from user_dal import user_dal


@pytest.fixture(autouse=True)
def clear_caches():
    reset_caches()
    yield
    reset_caches()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    # the application engine carries the SQLite foreign key pragma
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, osm_id: int, name: str, group_ids=()) -> User:
    """Insert a user row (and memberships) directly, returning its record"""
    row = models.User(
        osm_id=osm_id,
        name=name,
        description=f"{name} description",
        oauth_token=f"token-{osm_id}",
        oauth_secret=f"secret-{osm_id}",
    )
    db.add(row)
    await db.flush()
    for group_id in group_ids:
        await db.execute(insert(user_groups).values(osm_user_id=osm_id, group_id=group_id))
    await db.commit()
    return await user_dal.retrieve_by_id(row.id, db)


@pytest_asyncio.fixture
async def super_group(db_session):
    group = models.Group(name="Super Users", group_type=GroupType.SUPER_USER)
    db_session.add(group)
    await db_session.commit()
    return group


@pytest_asyncio.fixture
async def super_user(db_session, super_group):
    """A member of the super user group"""
    return await create_user(db_session, 1000, "Super Mapper", [super_group.id])


@pytest_asyncio.fixture
async def test_user(db_session):
    """A plain mapper with no groups"""
    return await create_user(db_session, 2000, "Mapper")


@pytest_asyncio.fixture
async def other_user(db_session):
    return await create_user(db_session, 3000, "Other Mapper")


@pytest_asyncio.fixture
async def project(db_session, super_user):
    return await project_dal.insert(
        ProjectCreate(name="Test Project", description="Roads and rivers"), super_user, db_session
    )


@pytest_asyncio.fixture
async def project_admin(db_session, super_user, project):
    """A user administering the test project but nothing else"""
    await create_user(db_session, 4000, "Project Admin")
    await user_dal.add_user_to_project(4000, project.id, super_user, db_session)
    return await user_dal.retrieve_by_osm_id(4000, db_session)


@pytest_asyncio.fixture
async def challenge(db_session, super_user, project):
    return await challenge_dal.insert(
        ChallengeCreate(
            name="Fix Roads",
            project_id=project.id,
            description="Disconnected roads",
            featured=True,
            tags="roads,Highway",
        ),
        super_user,
        db_session,
    )


@pytest_asyncio.fixture
async def tasks(db_session, super_user, challenge):
    created = []
    for i, tags in enumerate([["bridge"], ["tunnel"], []], start=1):
        created.append(await task_dal.insert(
            TaskCreate(name=f"road-{i}", challenge_id=challenge.id, instruction="Connect it", tags=tags),
            super_user,
            db_session,
        ))
    return created


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.token_for_user(user)
    return {"Authorization": f"Bearer {token}"}
