import logging
from datetime import date, datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.application.inventory_ledger import InventoryLedger
from src.domain.exceptions import (
    InventoryUnavailableError,
    NotFoundError,
    PaymentReferenceConflictError,
    PersistenceError,
    ValidationError,
)
from src.domain.pricing import compute_total
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.account_repository import (
    PropertyRepository,
    UserRepository,
)
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.room_type_repository import RoomTypeRepository


logger = logging.getLogger(__name__)


class BookingService:
    """Application service coordinating the booking lifecycle.

    Every public method works inside the caller's session transaction.
    Inventory moves only together with a booking status change, and a
    failed flush rolls the whole unit of work back so a reserved unit
    can never outlive the booking row that should have held it.
    """

    def __init__(
        self,
        db: Session,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.today = today
        self.booking_repository = BookingRepository(db)
        self.user_repository = UserRepository(db)
        self.property_repository = PropertyRepository(db)
        self.room_type_repository = RoomTypeRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.ledger = InventoryLedger(self.room_type_repository)

    def create_booking(
        self,
        user_id: str,
        property_id: str,
        room_type_id: str,
        check_in_date: date,
    ) -> Booking:
        if isinstance(check_in_date, datetime):
            check_in_date = check_in_date.date()
        if check_in_date < self.today():
            raise ValidationError("Check-in date cannot be in the past")

        if self.user_repository.get_by_id(user_id) is None:
            raise NotFoundError("User not found")
        if self.property_repository.get_by_id(property_id) is None:
            raise NotFoundError("Property not found")

        room_type = self.room_type_repository.get_for_property(room_type_id, property_id)
        if room_type is None:
            raise NotFoundError("Room type not found or does not belong to this property")
        if not room_type.is_available or not room_type.is_active:
            raise InventoryUnavailableError("This room type is not available for booking")

        total_amount = compute_total(room_type.price)
        currency = room_type.currency

        self.ledger.reserve_unit(room_type.id)
        booking = self.booking_repository.create_booking(
            user_id=user_id,
            property_id=property_id,
            room_type_id=room_type.id,
            check_in_date=check_in_date,
            total_amount=total_amount,
            currency=currency,
        )
        self._flush("create booking")
        self._record_event(booking, "BOOKING_CREATED")
        self._flush("record booking creation")

        logger.info(
            "Booking %s created for user %s room_type=%s total=%s %s",
            booking.id,
            user_id,
            room_type.id,
            total_amount,
            currency,
        )
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def list_user_bookings(self, user_id: str) -> list[Booking]:
        return self.booking_repository.list_for_user(user_id)

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self._get_for_update(booking_id)
        return self._cancel(booking)

    def update_status(
        self,
        booking_id: str,
        new_status: str | BookingStatus,
        payment_reference: str | None = None,
    ) -> Booking:
        booking = self._get_for_update(booking_id)
        target = BookingStatus.parse(new_status)

        # Cancelled and completed bookings accept no further status,
        # including their own.
        if BookingStateMachine.is_terminal(booking.status):
            BookingStateMachine.validate_transition(booking.status, target)

        if payment_reference:
            self._ensure_reference_free(booking, payment_reference)

        if target is booking.status:
            if payment_reference:
                self.booking_repository.set_payment_reference(booking, payment_reference)
                if target is BookingStatus.CONFIRMED:
                    self.booking_repository.mark_paid(booking)
                self._flush("update booking status")
            return booking

        if target is BookingStatus.CANCELLED:
            if payment_reference:
                self.booking_repository.set_payment_reference(booking, payment_reference)
            return self._cancel(booking)

        if target is BookingStatus.CONFIRMED:
            self._transition(booking, BookingStatus.CONFIRMED)
            if payment_reference:
                self.booking_repository.set_payment_reference(booking, payment_reference)
                self.booking_repository.mark_paid(booking)
            self._record_event(booking, "BOOKING_CONFIRMED")

        elif target is BookingStatus.COMPLETED:
            self._transition(booking, BookingStatus.COMPLETED)
            self.ledger.release_unit(booking.room_type_id)
            self._record_event(booking, "BOOKING_COMPLETED")

        else:
            self._transition(booking, target)

        self._flush("update booking status")
        logger.info("Booking %s moved to %s", booking.id, booking.status.value)
        return booking

    def confirm_payment(self, booking: Booking) -> Booking:
        """
        The single CONFIRMED transition shared by client verification and
        the gateway webhook. Applying it to a confirmed booking changes
        nothing beyond making sure is_paid is set.
        """
        if booking.status is BookingStatus.CONFIRMED:
            if not booking.is_paid:
                self.booking_repository.mark_paid(booking)
                self._flush("mark booking paid")
            logger.info("Booking %s already confirmed; nothing to do", booking.id)
            return booking

        self._transition(booking, BookingStatus.CONFIRMED)
        self.booking_repository.mark_paid(booking)
        self._record_event(booking, "BOOKING_CONFIRMED")
        self._flush("confirm booking")

        logger.info(
            "Booking %s confirmed and marked paid (reference=%s)",
            booking.id,
            booking.payment_reference,
        )
        return booking

    def _cancel(self, booking: Booking) -> Booking:
        self._transition(booking, BookingStatus.CANCELLED)
        self.ledger.release_unit(booking.room_type_id)
        self._record_event(booking, "BOOKING_CANCELLED")
        self._flush("cancel booking")

        logger.info("Booking %s cancelled", booking.id)
        return booking

    def _get_for_update(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def _ensure_reference_free(self, booking: Booking, reference: str) -> None:
        owner = self.booking_repository.get_by_reference(reference)
        if owner is not None and owner.id != booking.id:
            raise PaymentReferenceConflictError(
                "Payment reference already linked with another booking."
            )

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)

    def _record_event(self, booking: Booking, event_type: str) -> None:
        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            payload={
                "booking_id": booking.id,
                "user_id": booking.user_id,
                "property_id": booking.property_id,
                "room_type_id": booking.room_type_id,
                "status": booking.status.value,
                "total_amount": str(booking.total_amount),
                "currency": booking.currency,
                "is_paid": booking.is_paid,
            },
            dedupe_key=f"booking:{booking.id}:{event_type.lower()}",
        )

    def _flush(self, action: str) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            # Undo everything in this unit of work, including any
            # inventory movement that preceded the failed write.
            self.db.rollback()
            logger.exception("Failed to %s", action)
            raise PersistenceError(f"Failed to {action}") from exc
