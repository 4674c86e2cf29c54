"""
Shared fixtures: an in-memory SQLite database per test, seeded accounts
(customer, recipient, agent, admin) and a FastAPI TestClient wired to it.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("EXPOSE_DEV_OTP", "false")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cashpoint import crud, ledger
from cashpoint.database import get_db
from cashpoint.fees import FeeSettings
from cashpoint.main import app
from cashpoint.models import Base
from cashpoint.security import create_access_token


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fee_settings():
    return FeeSettings()


@pytest.fixture
def customer(db):
    user = crud.create_user(db, phone="0911111111", full_name="Sami Customer", password="secret-pass")
    fund(db, user.id, "USD", "500")
    db.commit()
    return user


@pytest.fixture
def recipient(db):
    user = crud.create_user(db, phone="0922222222", full_name="Rana Recipient", password="secret-pass")
    db.commit()
    return user


@pytest.fixture
def agent(db):
    profile = crud.create_agent(
        db,
        phone="0933333333",
        full_name="Omar Agent",
        password="secret-pass",
        business_name="Omar Exchange",
        agent_code="AG100001",
        credit=Decimal("1000"),
        credit_syp=Decimal("1000000"),
    )
    db.commit()
    return profile


@pytest.fixture
def second_agent(db):
    profile = crud.create_agent(
        db,
        phone="0944444444",
        full_name="Lina Agent",
        password="secret-pass",
        business_name="Lina Cash",
        agent_code="AG100002",
        credit=Decimal("500"),
    )
    profile.cash_collected = Decimal("800")
    db.commit()
    return profile


@pytest.fixture
def admin(db):
    user = crud.create_user(db, phone="0955555555", full_name="Admin", password="secret-pass", user_type="ADMIN")
    db.commit()
    return user


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # no context manager: startup would try to reach the production DATABASE_URL
    yield TestClient(app)
    app.dependency_overrides.clear()


def fund(db, user_id, currency, amount, wallet_type="PERSONAL"):
    wallet = crud.get_or_create_wallet(db, user_id, currency, wallet_type)
    ledger.credit_wallet(db, wallet, Decimal(amount), reason="test_funding")
    return wallet


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.user_type)}"}


def balance(db, user_id, currency="USD", wallet_type="PERSONAL"):
    db.expire_all()
    return crud.get_wallet(db, user_id, currency, wallet_type).balance
