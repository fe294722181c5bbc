import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("METRICS_ENABLED", "true")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from app.domain.access.capabilities import Principal, Role
from app.domain.areas.db_models import CleaningArea
from app.domain.users.db_models import User
from app.infra.db import Base, get_db_session
from app.main import app
from app.settings import settings

AREA_KEYS = ("kitchen", "bathroom", "bedroom", "living_room")


async def seed_users(session) -> dict[str, User]:
    admin = User(name="Ada Admin", email="admin@example.com", role=Role.ADMIN.value)
    session.add(admin)
    await session.flush()
    users = {
        "admin": admin,
        "supervisor": User(name="Sam Supervisor", email="sup@example.com", role=Role.SUPERVISOR.value),
        "manager": User(name="Mia Manager", email="manager@example.com", role=Role.MANAGER.value),
        "other_manager": User(name="Oli Manager", email="manager2@example.com", role=Role.MANAGER.value),
    }
    session.add_all([users["supervisor"], users["manager"], users["other_manager"]])
    await session.flush()
    users["w1"] = User(
        name="Wes Worker", email="w1@example.com", role=Role.WORKER.value, created_by=users["manager"].id
    )
    users["w2"] = User(
        name="Val Worker", email="w2@example.com", role=Role.WORKER.value, created_by=users["manager"].id
    )
    users["w3"] = User(name="Kai Worker", email="w3@example.com", role=Role.WORKER.value)
    users["inactive_worker"] = User(
        name="Old Worker", email="old@example.com", role=Role.WORKER.value, is_active=False
    )
    session.add_all([users["w1"], users["w2"], users["w3"], users["inactive_worker"]])
    await session.flush()
    return users


async def seed_areas(session) -> dict[str, CleaningArea]:
    areas = {
        key: CleaningArea(key=key, name=key.replace("_", " ").title(), display_order=index)
        for index, key in enumerate(AREA_KEYS)
    }
    areas["retired"] = CleaningArea(key="retired", name="Retired", display_order=99, is_active=False)
    session.add_all(list(areas.values()))
    await session.flush()
    return areas


async def _seed(session_factory) -> dict[str, int]:
    async with session_factory() as session:
        users = await seed_users(session)
        areas = await seed_areas(session)
        await session.commit()
        ids = {name: user.id for name, user in users.items()}
        ids.update({f"area_{key}": area.id for key, area in areas.items()})
        return ids


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original = {
        "app_env": settings.app_env,
        "testing": settings.testing,
        "metrics_enabled": settings.metrics_enabled,
        "metrics_token": settings.metrics_token,
        "order_number_prefix": settings.order_number_prefix,
        "order_number_max_attempts": settings.order_number_max_attempts,
        "regular_order_photo_limit": settings.regular_order_photo_limit,
        "post_construction_photo_limit": settings.post_construction_photo_limit,
        "daily_report_min_chars": settings.daily_report_min_chars,
        "daily_report_max_chars": settings.daily_report_max_chars,
        "outbox_max_attempts": settings.outbox_max_attempts,
        "outbox_base_backoff_seconds": settings.outbox_base_backoff_seconds,
    }
    settings.testing = True
    settings.app_env = "dev"
    yield
    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture(autouse=True)
def restore_app_state():
    original_metrics = getattr(app.state, "metrics", None)
    original_app_settings = getattr(app.state, "app_settings", None)
    yield
    if original_metrics is not None:
        app.state.metrics = original_metrics
    elif hasattr(app.state, "metrics"):
        delattr(app.state, "metrics")

    if original_app_settings is not None:
        app.state.app_settings = original_app_settings
    elif hasattr(app.state, "app_settings"):
        delattr(app.state, "app_settings")


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def seeded(async_session_maker) -> dict[str, int]:
    """Ids of the seeded users (by nickname) and areas (``area_<key>``)."""
    return asyncio.run(_seed(async_session_maker))


@pytest.fixture()
def principals(seeded) -> dict[str, Principal]:
    roles = {
        "admin": Role.ADMIN,
        "supervisor": Role.SUPERVISOR,
        "manager": Role.MANAGER,
        "other_manager": Role.MANAGER,
        "w1": Role.WORKER,
        "w2": Role.WORKER,
        "w3": Role.WORKER,
    }
    return {name: Principal(id=seeded[name], role=role) for name, role in roles.items()}


@pytest.fixture()
def order_payload() -> dict:
    return {
        "order_type": "regular",
        "client_name": "Jane Client",
        "client_email": "Jane@Example.com",
        "client_phone": "+1 (555) 010-2000",
        "address": "12 Harbour Street",
        "city": "Halifax",
        "scheduled_date": datetime.now(timezone.utc) + timedelta(days=1),
    }


@pytest.fixture()
def concurrent_session_maker(tmp_path):
    """File-backed engine where every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield async_sessionmaker(engine, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


@pytest.fixture()
def client_no_raise(async_session_maker):
    """Test client that returns HTTP responses instead of raising server exceptions."""

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


def auth_headers(user_id: int) -> dict[str, str]:
    return {settings.principal_id_header: str(user_id)}


def count_rows(async_session_maker, model, *criteria) -> int:
    async def _count() -> int:
        async with async_session_maker() as session:
            result = await session.execute(sa.select(sa.func.count()).select_from(model).where(*criteria))
            return int(result.scalar_one())

    return asyncio.run(_count())
