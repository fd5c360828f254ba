import logging
import os
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.application.booking_service import BookingService
from src.domain.exceptions import (
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
)
from src.domain.pricing import to_minor_units
from src.domain.state_machine import BookingStatus
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.account_repository import (
    PropertyRepository,
    UserRepository,
)
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.room_type_repository import RoomTypeRepository
from src.infrastructure.repositories.webhook_event_repository import WebhookEventRepository


logger = logging.getLogger(__name__)

CHARGE_SUCCESS = "charge.success"

WEBHOOK_PROCESSED = "PROCESSED"
WEBHOOK_DUPLICATE = "DUPLICATE"
WEBHOOK_UNMATCHED = "UNMATCHED"
WEBHOOK_REJECTED = "REJECTED"
WEBHOOK_IGNORED = "IGNORED"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class PaymentInitialization:
    authorization_url: str
    access_code: str
    reference: str
    booking: Booking
    property_name: str | None = None
    room_type_name: str | None = None


@dataclass
class PaymentVerification:
    booking: Booking
    payment: dict
    confirmed: bool


class PaymentService:
    """Reconciles the payment gateway's view of a charge with a booking.

    Client verification and the gateway webhook both end in
    BookingService.confirm_payment, which is idempotent, so the two
    paths may race or repeat without double side effects.
    """

    def __init__(
        self,
        db: Session,
        gateway,
        now_ms: Callable[[], int] = _epoch_millis,
    ):
        self.db = db
        self.gateway = gateway
        self.now_ms = now_ms
        self.booking_service = BookingService(db)
        self.booking_repository = BookingRepository(db)
        self.user_repository = UserRepository(db)
        self.property_repository = PropertyRepository(db)
        self.room_type_repository = RoomTypeRepository(db)
        self.webhook_repository = WebhookEventRepository(db)

    def generate_reference(self, booking_id: str) -> str:
        prefix = os.getenv("PAYMENT_REFERENCE_PREFIX", "hosfind")
        return f"{prefix}_{booking_id}_{self.now_ms()}"

    def initialize_payment(
        self,
        booking_id: str,
        user_id: str,
        email: str | None = None,
    ) -> PaymentInitialization:
        booking = self.booking_repository.get_for_user(booking_id, user_id)
        if not booking:
            raise NotFoundError("Booking not found")

        user = self.user_repository.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")

        if booking.status is not BookingStatus.PENDING:
            raise InvalidTransitionError(
                from_state=booking.status.value,
                to_state="payment",
                message=f"Cannot start payment for a {booking.status.value} booking",
            )

        property_ = self.property_repository.get_by_id(booking.property_id)
        room_type = self.room_type_repository.get_by_id(booking.room_type_id)
        property_name = property_.name if property_ else None
        room_type_name = room_type.name if room_type else None

        reference = self.generate_reference(booking.id)
        frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")

        # Gateway failures propagate as GatewayError; the booking and its
        # reserved unit stay as they are so the client can retry.
        data = self.gateway.initialize_transaction(
            email=email or user.email,
            amount=to_minor_units(booking.total_amount),
            currency=os.getenv("PAYSTACK_CURRENCY", "GHS"),
            reference=reference,
            callback_url=f"{frontend_url}/payment/callback",
            metadata={
                "bookingId": booking.id,
                "userId": user.id,
                "propertyName": property_name,
                "roomTypeName": room_type_name,
            },
        )

        self.booking_repository.set_payment_reference(booking, reference)
        self.db.flush()

        logger.info(
            "Payment initialized for booking %s reference=%s",
            booking.id,
            reference,
        )
        return PaymentInitialization(
            authorization_url=data.get("authorization_url", ""),
            access_code=data.get("access_code", ""),
            reference=reference,
            booking=booking,
            property_name=property_name,
            room_type_name=room_type_name,
        )

    def verify_payment(self, reference: str, user_id: str) -> PaymentVerification:
        booking = self.booking_repository.get_by_reference(
            reference,
            user_id=user_id,
            for_update=True,
        )
        if not booking:
            raise NotFoundError("Booking not found")

        try:
            data = self.gateway.verify_transaction(reference)
        except GatewayError:
            logger.warning(
                "Verification of %s failed at the gateway; booking %s stays %s",
                reference,
                booking.id,
                booking.status.value,
            )
            raise

        payment = {
            "reference": data.get("reference", reference),
            "status": data.get("status"),
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "paid_at": data.get("paid_at") or data.get("paidAt"),
        }

        if payment["status"] != "success":
            logger.info(
                "Payment %s for booking %s not successful (status=%s)",
                reference,
                booking.id,
                payment["status"],
            )
            return PaymentVerification(booking=booking, payment=payment, confirmed=False)

        try:
            self._apply_successful_charge(booking, data)
        except InvalidTransitionError:
            logger.error(
                "Charge %s succeeded for booking %s in status %s; manual refund required",
                reference,
                booking.id,
                booking.status.value,
            )
            raise

        return PaymentVerification(booking=booking, payment=payment, confirmed=True)

    def handle_webhook(self, event: dict) -> str:
        """
        Processes one gateway push. Returns the outcome; callers answer
        200 for every outcome so the gateway stops redelivering.
        """
        event_type = event.get("event")
        data = event.get("data")

        if event_type != CHARGE_SUCCESS:
            logger.info("Ignoring webhook event %s", event_type)
            return WEBHOOK_IGNORED

        if not isinstance(data, dict):
            logger.warning("Webhook %s with malformed data ignored", event_type)
            return WEBHOOK_IGNORED

        reference = data.get("reference")
        if not isinstance(reference, str) or not reference:
            logger.warning("Webhook %s without a usable reference ignored", event_type)
            return WEBHOOK_IGNORED

        provider = getattr(self.gateway, "provider", "PAYSTACK")
        previous = self.webhook_repository.get(provider, event_type, reference)
        if previous is not None and previous.status == WEBHOOK_PROCESSED:
            logger.info("Duplicate webhook for reference %s ignored", reference)
            return WEBHOOK_DUPLICATE

        booking = self.booking_repository.get_by_reference(reference, for_update=True)
        if not booking:
            logger.warning("Webhook for unknown reference %s acknowledged", reference)
            self.webhook_repository.record(
                provider, event_type, reference, data, WEBHOOK_UNMATCHED
            )
            return self._flush_webhook(reference, WEBHOOK_UNMATCHED)

        try:
            self._apply_successful_charge(booking, data)
        except InvalidTransitionError:
            logger.error(
                "Charge %s succeeded for booking %s in status %s; manual refund required",
                reference,
                booking.id,
                booking.status.value,
            )
            self.webhook_repository.record(
                provider, event_type, reference, data, WEBHOOK_REJECTED, booking.id
            )
            return self._flush_webhook(reference, WEBHOOK_REJECTED)

        self.webhook_repository.record(
            provider, event_type, reference, data, WEBHOOK_PROCESSED, booking.id
        )
        outcome = self._flush_webhook(reference, WEBHOOK_PROCESSED)
        if outcome == WEBHOOK_PROCESSED:
            logger.info("Payment webhook processed for booking %s", booking.id)
        return outcome

    def get_public_key(self) -> dict:
        return {
            "public_key": self.gateway.public_key,
            "is_test_mode": self.gateway.test_mode,
        }

    def _apply_successful_charge(self, booking: Booking, data: dict) -> None:
        customer = data.get("customer") or {}
        authorization = data.get("authorization") or {}
        phone_number = customer.get("phone") or authorization.get("phone")

        user = self.user_repository.get_by_id(booking.user_id)
        if user and self.user_repository.backfill_phone_number(user, phone_number):
            logger.info("Backfilled phone number for user %s", user.id)

        self.booking_service.confirm_payment(booking)

    def _flush_webhook(self, reference: str, outcome: str) -> str:
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent delivery of the same event recorded it first.
            self.db.rollback()
            logger.info("Concurrent duplicate webhook for reference %s", reference)
            return WEBHOOK_DUPLICATE
        return outcome
