import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_ENABLED", "false")

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import app.models  # noqa: F401
from app.services import category_store as store
from app.services.cache import CategoryCache
from app.services.categories import CategoryService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return CategoryCache(redis_client, point_ttl=3600, list_ttl=1800)


@pytest.fixture
def service(db, cache):
    return CategoryService(db, cache)


@pytest.fixture
def client(engine, cache):
    from app.main import app
    from app.api.deps import get_db, get_cache, admin_required

    def override_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[admin_required] = lambda: {"id": 1, "role": "admin"}
    yield TestClient(app)
    app.dependency_overrides.clear()


def display_orders(db, parent_id):
    return [c.display_order for c in store.children_of(db, parent_id)]


def assert_tree_invariants(db):
    """Лес без циклов, непрерывный display_order, уникальные slug"""
    categories = store.list_all(db)
    by_id = {c.id: c for c in categories}

    for category in categories:
        seen = set()
        current = category.parent_id
        while current is not None:
            assert current != category.id, f"cycle through {category.id}"
            assert current not in seen
            seen.add(current)
            current = by_id[current].parent_id

    parents = {c.parent_id for c in categories} | {None}
    for parent_id in parents:
        orders = sorted(display_orders(db, parent_id))
        assert orders == list(range(len(orders))), f"gap under parent {parent_id}: {orders}"

    slugs = [c.slug for c in categories]
    assert len(slugs) == len(set(slugs))
