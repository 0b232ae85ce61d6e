from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from models.listing import Listing
from models.store import Store
from models.user import User
from security import jwt as jwt_utils
from services.guard import redis_client
from services.wallet import WalletLedger

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.TESTING = True
    core_config.settings.PAYRIFF_MERCHANT_ID = "ES1090000"
    core_config.settings.PAYRIFF_SECRET_KEY = "test-secret-key"
    yield


@pytest.fixture(autouse=True)
def clear_redis():
    """Start each test without in-flight purchase keys."""
    redis_client.flushall()
    yield
    redis_client.flushall()


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(first_name="Test", balance=None, **kwargs):
        counter["n"] += 1
        user = User(
            first_name=first_name,
            last_name="User",
            email=f"user{counter['n']}@example.com",
            **kwargs,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        if balance is not None:
            WalletLedger(db).credit(user.id, Decimal(str(balance)), "Seed balance", reference=f"seed-{user.id}")
            db.commit()
        return user

    return _make


@pytest.fixture
def test_user(make_user):
    return make_user("Owner", balance=500)


@pytest.fixture
def make_store(db):
    def _make(owner, expires_at=None, name="Test Store", max_ads=200, ads_used=0, plan_id="basic"):
        store = Store(
            user_id=owner.id,
            name=name,
            plan_id=plan_id,
            plan_price=Decimal("100"),
            max_ads=max_ads,
            duration_days=30,
            ads_used=ads_used,
            deleted_listing_ids=[],
            expires_at=expires_at or datetime.utcnow() + timedelta(days=30),
        )
        db.add(store)
        db.commit()
        db.refresh(store)
        return store

    return _make


@pytest.fixture
def test_store(make_store, test_user):
    return make_store(test_user)


@pytest.fixture
def make_listing(db):
    def _make(owner, store=None, price="100", **kwargs):
        listing = Listing(
            user_id=owner.id,
            store_id=store.id if store is not None else None,
            title=kwargs.pop("title", "Test listing"),
            price=Decimal(price),
            currency="AZN",
            expires_at=kwargs.pop("expires_at", datetime.utcnow() + timedelta(days=30)),
            **kwargs,
        )
        db.add(listing)
        db.commit()
        db.refresh(listing)
        return listing

    return _make


@pytest.fixture
def auth_headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}

    return _headers


@pytest.fixture
def auth_headers(auth_headers_for, test_user):
    """Return authorization headers with valid token."""
    return auth_headers_for(test_user)
