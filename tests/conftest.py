import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYSTACK_VERIFY_WEBHOOK_SIGNATURE"] = "false"

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from src.api.routes.routes import get_db, get_optional_payment_gateway, get_payment_gateway
from src.domain.exceptions import GatewayError
from src.infrastructure.db.models import Property, RoomType, User
from src.infrastructure.db.session import Base, build_engine
from src.main import app


class FakeGateway:
    """In-memory stand-in for the Paystack client."""

    provider = "PAYSTACK"
    public_key = "pk_test_fake"
    test_mode = True

    def __init__(self):
        self.initialized: dict[str, dict] = {}
        self.statuses: dict[str, str] = {}
        self.phone: str | None = "+233241234567"
        self.initialize_error: GatewayError | None = None
        self.verify_error: GatewayError | None = None
        self.verify_calls = 0

    def initialize_transaction(
        self,
        email,
        amount,
        currency,
        reference,
        callback_url=None,
        metadata=None,
    ):
        if self.initialize_error:
            raise self.initialize_error
        self.initialized[reference] = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "callback_url": callback_url,
            "metadata": metadata,
        }
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference}",
            "access_code": f"access_{len(self.initialized)}",
            "reference": reference,
        }

    def verify_transaction(self, reference):
        self.verify_calls += 1
        if self.verify_error:
            raise self.verify_error
        transaction = self.initialized.get(reference, {})
        return {
            "reference": reference,
            "status": self.statuses.get(reference, "success"),
            "amount": transaction.get("amount"),
            "currency": transaction.get("currency", "GHS"),
            "paid_at": "2026-10-20T10:00:00.000Z",
            "customer": {"email": transaction.get("email"), "phone": self.phone},
            "authorization": {},
        }

    def verify_webhook_signature(self, raw_body, signature):
        return signature == "valid-signature"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def today():
    return date.today()


@pytest.fixture
def catalog(session_factory, today):
    """
    One user, one property with four room types:
    - standard: price 100.00, 3 of 5 available
    - sold_out: 0 of 2 available
    - closed: marked unavailable
    - last_unit: 1 of 1 available
    plus a second property to test ownership checks.
    """
    session = session_factory()
    user = User(full_name="Ama Mensah", email="ama@example.com")
    other_user = User(full_name="Kofi Boateng", email="kofi@example.com", phone_number="+233200000001")
    hostel = Property(name="Legon Heights Hostel", location="East Legon", city="Accra")
    other_property = Property(name="Kumasi Garden Homestay", location="Ahodwo", city="Kumasi")
    session.add_all([user, other_user, hostel, other_property])
    session.flush()

    standard = RoomType(
        property_id=hostel.id,
        name="Single Room",
        price=Decimal("100.00"),
        currency="GHS",
        total_rooms=5,
        available_rooms=3,
    )
    sold_out = RoomType(
        property_id=hostel.id,
        name="Shared Room",
        price=Decimal("80.00"),
        total_rooms=2,
        available_rooms=0,
    )
    closed = RoomType(
        property_id=hostel.id,
        name="Annex Room",
        price=Decimal("60.00"),
        total_rooms=4,
        available_rooms=4,
        is_available=False,
    )
    last_unit = RoomType(
        property_id=hostel.id,
        name="Penthouse",
        price=Decimal("499.99"),
        total_rooms=1,
        available_rooms=1,
    )
    elsewhere = RoomType(
        property_id=other_property.id,
        name="Deluxe Suite",
        price=Decimal("650.00"),
        total_rooms=6,
        available_rooms=6,
    )
    session.add_all([standard, sold_out, closed, last_unit, elsewhere])
    session.commit()

    ids = SimpleNamespace(
        user_id=user.id,
        other_user_id=other_user.id,
        property_id=hostel.id,
        other_property_id=other_property.id,
        standard_id=standard.id,
        sold_out_id=sold_out.id,
        closed_id=closed.id,
        last_unit_id=last_unit.id,
        elsewhere_id=elsewhere.id,
        tomorrow=today + timedelta(days=1),
        yesterday=today - timedelta(days=1),
    )
    session.close()
    return ids


@pytest.fixture
def client(session_factory, gateway):

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
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_optional_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def inventory_of(session_factory):
    """Returns (available_rooms, total_rooms) read through a fresh session."""

    def read(room_type_id):
        session = session_factory()
        try:
            room_type = session.get(RoomType, room_type_id)
            return room_type.available_rooms, room_type.total_rooms
        finally:
            session.close()

    return read
