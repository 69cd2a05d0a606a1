"""Fixtures pytest: base SQLite en mémoire avec clés étrangères actives."""

import datetime
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from app_config import MaintenanceSettings
from database import create_db_engine, create_session_factory, init_db
from enums import SubscriptionPlan, SubscriptionStatus
from models import Account, Apartment, Document, Subscription, SubscriptionPayment

FIXED_NOW = datetime.datetime(2025, 3, 1, 9, 30, 0)


@pytest.fixture
def engine():
    """Moteur en mémoire partagé par toutes les connexions du test."""
    engine = create_db_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = create_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def settings() -> MaintenanceSettings:
    return MaintenanceSettings(
        database_url="sqlite://",
        backend_url="http://localhost:3001",
        entitlement_days=30,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_account(db):
    """Insère un compte directement, sans passer par les services."""
    def _make(email: str, **fields) -> Account:
        fields.setdefault("password_hash", "not-a-real-hash")
        fields.setdefault("name", "Test")
        account = Account(email=email, **fields)
        db.add(account)
        db.commit()
        return account
    return _make


@pytest.fixture
def make_subscription(db):
    def _make(account: Account, status=SubscriptionStatus.pending, **fields) -> Subscription:
        fields.setdefault("plan", SubscriptionPlan.professional)
        fields.setdefault("amount", Decimal("15"))
        fields.setdefault("currency", "ARS")
        subscription = Subscription(user_id=account.id, status=status, **fields)
        db.add(subscription)
        db.commit()
        return subscription
    return _make


@pytest.fixture
def make_payment(db):
    def _make(subscription: Subscription, **fields) -> SubscriptionPayment:
        fields.setdefault("amount", Decimal("15"))
        fields.setdefault("currency", "ARS")
        payment = SubscriptionPayment(subscription_id=subscription.id, **fields)
        db.add(payment)
        db.commit()
        return payment
    return _make


@pytest.fixture
def make_apartment(db):
    def _make(unique_id, **fields) -> Apartment:
        apartment = Apartment(unique_id=unique_id, **fields)
        db.add(apartment)
        db.commit()
        return apartment
    return _make


@pytest.fixture
def make_document(db):
    def _make(file_url: str, **fields) -> Document:
        fields.setdefault("name", file_url.rsplit("/", 1)[-1])
        document = Document(file_url=file_url, **fields)
        db.add(document)
        db.commit()
        return document
    return _make
