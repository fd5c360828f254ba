from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from src.application.booking_service import BookingService
from src.domain.exceptions import (
    AlreadyCancelledError,
    InventoryUnavailableError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    PaymentReferenceConflictError,
    PersistenceError,
    TerminalStateError,
    ValidationError,
)
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking, OutboxEvent, RoomType


@pytest.fixture
def service(db):
    return BookingService(db)


def _create(service, catalog, room_type_id=None, check_in=None):
    return service.create_booking(
        user_id=catalog.user_id,
        property_id=catalog.property_id,
        room_type_id=room_type_id or catalog.standard_id,
        check_in_date=check_in or catalog.tomorrow,
    )


def _bookings(db):
    return list(db.execute(select(Booking)).scalars().all())


# ---------------------
# CREATE
# ---------------------

def test_create_booking_reserves_unit_and_prices_booking(db, service, catalog):
    booking = _create(service, catalog)

    assert booking.status is BookingStatus.PENDING
    assert booking.total_amount == Decimal("108.00")
    assert booking.currency == "GHS"
    assert booking.is_paid is False
    assert booking.payment_reference is None
    assert db.get(RoomType, catalog.standard_id).available_rooms == 2


def test_create_booking_today_is_allowed(db, service, catalog, today):
    booking = _create(service, catalog, check_in=today)

    assert booking.check_in_date == today


def test_create_booking_accepts_datetime_check_in(db, service, catalog):
    check_in = datetime.combine(catalog.tomorrow, datetime.min.time()).replace(hour=23)

    booking = _create(service, catalog, check_in=check_in)

    assert booking.check_in_date == catalog.tomorrow


def test_past_check_in_rejected_before_any_inventory_check(db, service, catalog):
    with pytest.raises(ValidationError, match="past"):
        _create(service, catalog, room_type_id=catalog.sold_out_id, check_in=catalog.yesterday)

    assert _bookings(db) == []


def test_sold_out_room_type_creates_nothing(db, service, catalog):
    with pytest.raises(InventoryUnavailableError):
        _create(service, catalog, room_type_id=catalog.sold_out_id)

    assert db.get(RoomType, catalog.sold_out_id).available_rooms == 0
    assert _bookings(db) == []


def test_unavailable_room_type_rejected(db, service, catalog):
    with pytest.raises(InventoryUnavailableError, match="not available"):
        _create(service, catalog, room_type_id=catalog.closed_id)

    assert db.get(RoomType, catalog.closed_id).available_rooms == 4


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"user_id": "nobody"}, "User not found"),
        ({"property_id": "nowhere"}, "Property not found"),
        ({"room_type_id": "missing"}, "Room type not found"),
    ],
)
def test_missing_references_are_not_found(db, service, catalog, overrides, message):
    kwargs = {
        "user_id": catalog.user_id,
        "property_id": catalog.property_id,
        "room_type_id": catalog.standard_id,
        "check_in_date": catalog.tomorrow,
    }
    kwargs.update(overrides)

    with pytest.raises(NotFoundError, match=message):
        service.create_booking(**kwargs)

    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_room_type_must_belong_to_property(db, service, catalog):
    with pytest.raises(NotFoundError, match="does not belong"):
        _create(service, catalog, room_type_id=catalog.elsewhere_id)

    assert db.get(RoomType, catalog.elsewhere_id).available_rooms == 6


def test_total_is_fixed_at_creation(db, service, catalog):
    booking = _create(service, catalog)
    db.get(RoomType, catalog.standard_id).price = Decimal("250.00")
    db.flush()

    db.refresh(booking)
    assert booking.total_amount == Decimal("108.00")


def test_persistence_failure_rolls_back_reservation(db, service, catalog, monkeypatch):
    def broken_flush(*args, **kwargs):
        raise IntegrityError("INSERT INTO bookings", {}, Exception("disk full"))

    monkeypatch.setattr(db, "flush", broken_flush)

    with pytest.raises(PersistenceError):
        _create(service, catalog)

    monkeypatch.undo()
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3
    assert _bookings(db) == []


def test_creation_writes_outbox_event(db, service, catalog):
    booking = _create(service, catalog)

    events = db.execute(
        select(OutboxEvent).where(OutboxEvent.aggregate_id == booking.id)
    ).scalars().all()
    assert [event.event_type for event in events] == ["BOOKING_CREATED"]


# ---------------------
# CONCURRENCY
# ---------------------

def test_stale_read_cannot_oversell_last_unit(session_factory, catalog):
    first = session_factory()
    second = session_factory()
    try:
        first_service = BookingService(first)
        second_service = BookingService(second)

        # Both requests have already seen one unit left.
        assert second.get(RoomType, catalog.last_unit_id).available_rooms == 1

        _create(first_service, catalog, room_type_id=catalog.last_unit_id)
        first.commit()

        with pytest.raises(InventoryUnavailableError):
            _create(second_service, catalog, room_type_id=catalog.last_unit_id)
        second.rollback()
    finally:
        first.close()
        second.close()

    check = session_factory()
    try:
        assert check.get(RoomType, catalog.last_unit_id).available_rooms == 0
        assert len(_bookings(check)) == 1
    finally:
        check.close()


# ---------------------
# CANCEL
# ---------------------

def test_cancel_pending_releases_unit(db, service, catalog):
    booking = _create(service, catalog)

    service.cancel_booking(booking.id)

    assert booking.status is BookingStatus.CANCELLED
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_cancel_confirmed_releases_unit(db, service, catalog):
    booking = _create(service, catalog)
    service.confirm_payment(booking)

    service.cancel_booking(booking.id)

    assert booking.status is BookingStatus.CANCELLED
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_cancel_twice_is_rejected_without_inventory_change(db, service, catalog):
    booking = _create(service, catalog)
    service.cancel_booking(booking.id)

    with pytest.raises(AlreadyCancelledError):
        service.cancel_booking(booking.id)

    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_cancel_completed_is_rejected(db, service, catalog):
    booking = _create(service, catalog)
    service.confirm_payment(booking)
    service.update_status(booking.id, "completed")
    available_after_completion = db.get(RoomType, catalog.standard_id).available_rooms

    with pytest.raises(TerminalStateError):
        service.cancel_booking(booking.id)

    assert booking.status is BookingStatus.COMPLETED
    assert db.get(RoomType, catalog.standard_id).available_rooms == available_after_completion


def test_cancel_unknown_booking(service, catalog):
    with pytest.raises(NotFoundError):
        service.cancel_booking("missing")


def test_holding_bookings_match_ledger(db, service, catalog):
    bookings = [_create(service, catalog) for _ in range(3)]
    service.cancel_booking(bookings[0].id)
    service.confirm_payment(bookings[1])

    room_type = db.get(RoomType, catalog.standard_id)
    holding = service.booking_repository.count_holding(catalog.standard_id)
    assert holding == 2
    # Two units were already taken before these bookings existed.
    assert room_type.total_rooms - room_type.available_rooms == holding + 2

    with pytest.raises(InventoryUnavailableError):
        for _ in range(2):
            _create(service, catalog)
    assert db.get(RoomType, catalog.standard_id).available_rooms == 0


# ---------------------
# CONFIRM / UPDATE STATUS
# ---------------------

def test_confirm_payment_is_idempotent(db, service, catalog):
    booking = _create(service, catalog)

    service.confirm_payment(booking)
    service.confirm_payment(booking)

    assert booking.status is BookingStatus.CONFIRMED
    assert booking.is_paid is True
    assert db.get(RoomType, catalog.standard_id).available_rooms == 2
    confirmations = db.execute(
        select(OutboxEvent)
        .where(OutboxEvent.aggregate_id == booking.id)
        .where(OutboxEvent.event_type == "BOOKING_CONFIRMED")
    ).scalars().all()
    assert len(confirmations) == 1


def test_confirm_payment_on_cancelled_booking_rejected(service, catalog):
    booking = _create(service, catalog)
    service.cancel_booking(booking.id)

    with pytest.raises(AlreadyCancelledError):
        service.confirm_payment(booking)

    assert booking.is_paid is False


def test_update_status_confirmed_with_reference_marks_paid(service, catalog):
    booking = _create(service, catalog)

    service.update_status(booking.id, "confirmed", payment_reference="manual_ref_1")

    assert booking.status is BookingStatus.CONFIRMED
    assert booking.is_paid is True
    assert booking.payment_reference == "manual_ref_1"


def test_update_status_confirmed_without_reference_leaves_unpaid(service, catalog):
    booking = _create(service, catalog)

    service.update_status(booking.id, "CONFIRMED")

    assert booking.status is BookingStatus.CONFIRMED
    assert booking.is_paid is False


def test_update_status_cancelled_releases_unit(db, service, catalog):
    booking = _create(service, catalog)

    service.update_status(booking.id, "cancelled")

    assert booking.status is BookingStatus.CANCELLED
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_update_status_completed_releases_unit(db, service, catalog):
    booking = _create(service, catalog)
    service.confirm_payment(booking)

    service.update_status(booking.id, "completed")

    assert booking.status is BookingStatus.COMPLETED
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_update_status_rejects_unknown_value(service, catalog):
    booking = _create(service, catalog)

    with pytest.raises(InvalidStatusError):
        service.update_status(booking.id, "processing")


def test_update_status_rejects_illegal_transition(service, catalog):
    booking = _create(service, catalog)

    with pytest.raises(InvalidTransitionError):
        service.update_status(booking.id, "completed")

    assert booking.status is BookingStatus.PENDING


def test_update_status_same_status_is_noop(db, service, catalog):
    booking = _create(service, catalog)

    service.update_status(booking.id, "pending")

    assert booking.status is BookingStatus.PENDING
    assert db.get(RoomType, catalog.standard_id).available_rooms == 2


def test_update_status_same_status_stores_reference(service, catalog):
    booking = _create(service, catalog)

    service.update_status(booking.id, "pending", payment_reference="manual_ref_2")

    assert booking.status is BookingStatus.PENDING
    assert booking.payment_reference == "manual_ref_2"
    assert booking.is_paid is False


@pytest.mark.parametrize("target", ["cancelled", "confirmed", "pending", "completed"])
def test_update_status_on_cancelled_booking_is_rejected(db, service, catalog, target):
    booking = _create(service, catalog)
    service.cancel_booking(booking.id)

    with pytest.raises(AlreadyCancelledError, match="already cancelled"):
        service.update_status(booking.id, target)

    assert booking.status is BookingStatus.CANCELLED
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


@pytest.mark.parametrize("target", ["completed", "cancelled", "confirmed"])
def test_update_status_on_completed_booking_is_rejected(db, service, catalog, target):
    booking = _create(service, catalog)
    service.confirm_payment(booking)
    service.update_status(booking.id, "completed")

    with pytest.raises(TerminalStateError):
        service.update_status(booking.id, target, payment_reference="late_ref")

    assert booking.status is BookingStatus.COMPLETED
    assert booking.payment_reference is None
    assert db.get(RoomType, catalog.standard_id).available_rooms == 3


def test_update_status_reference_conflict(service, catalog):
    first = _create(service, catalog)
    second = _create(service, catalog)
    service.update_status(first.id, "confirmed", payment_reference="shared_ref")

    with pytest.raises(PaymentReferenceConflictError):
        service.update_status(second.id, "confirmed", payment_reference="shared_ref")

    assert second.status is BookingStatus.PENDING


def test_list_user_bookings_is_scoped_to_user(service, catalog):
    _create(service, catalog)
    _create(service, catalog, check_in=catalog.tomorrow + timedelta(days=3))

    bookings = service.list_user_bookings(catalog.user_id)

    assert len(bookings) == 2
    assert service.list_user_bookings(catalog.other_user_id) == []
