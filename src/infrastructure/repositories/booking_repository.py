# src/infrastructure/repositories/booking_repository.py

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from src.infrastructure.db.models import Booking
from src.domain.state_machine import HOLDING_STATUSES, BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_user(
        self,
        booking_id: str,
        user_id: str,
    ) -> Booking | None:

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_reference(
        self,
        reference: str,
        user_id: str | None = None,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.payment_reference == reference)
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_holding(self, room_type_id: str) -> int:
        """Bookings that currently hold a unit of this room type."""
        stmt = (
            select(func.count())
            .select_from(Booking)
            .where(Booking.room_type_id == room_type_id)
            .where(Booking.status.in_(list(HOLDING_STATUSES)))
        )
        return self.db.execute(stmt).scalar_one()

    def create_booking(
        self,
        user_id: str,
        property_id: str,
        room_type_id: str,
        check_in_date: date,
        total_amount: Decimal,
        currency: str,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            property_id=property_id,
            room_type_id=room_type_id,
            check_in_date=check_in_date,
            total_amount=total_amount,
            currency=currency,
            status=BookingStatus.PENDING,
            is_paid=False,
        )

        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def set_payment_reference(
        self,
        booking: Booking,
        reference: str,
    ) -> None:

        booking.payment_reference = reference

    def mark_paid(self, booking: Booking) -> None:
        booking.is_paid = True
