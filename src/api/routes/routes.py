import json
import logging
import os

from fastapi import APIRouter, Depends, Header, HTTPException, status, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.application.booking_service import BookingService
from src.application.payment_service import PaymentService
from src.api.schemas.schemas import (
    ApiResponse,
    BookingCreateRequest,
    BookingResponse,
    BookingStatusUpdateRequest,
    InventoryResponse,
    OutboxEventResponse,
    PaymentBookingSummary,
    PaymentDetails,
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    PaymentVerifyResponse,
    PublicKeyResponse,
    WebhookAck,
)
from src.domain.exceptions import (
    BookingEngineError,
    GatewayError,
    NotFoundError,
    PaymentReferenceConflictError,
    PersistenceError,
)
from src.infrastructure.db.models import Booking, OutboxEvent
from src.infrastructure.payments.paystack_client import PaystackClient
from src.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the authentication layer in front of this service."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated",
        )
    return x_user_id


def get_payment_gateway() -> PaystackClient:
    try:
        return PaystackClient.from_env()
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


def get_optional_payment_gateway() -> PaystackClient | None:
    try:
        return PaystackClient.from_env()
    except GatewayError:
        return None


def _webhook_signature_required() -> bool:
    return os.getenv("PAYSTACK_VERIFY_WEBHOOK_SIGNATURE", "false").lower() in {"1", "true", "yes"}


def _http_error(exc: BookingEngineError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PaymentReferenceConflictError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, GatewayError):
        status_code = exc.status_code
    elif isinstance(exc, PersistenceError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        # ValidationError, InventoryUnavailableError, InvalidTransitionError
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=str(exc))


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        user_id=booking.user_id,
        property_id=booking.property_id,
        room_type_id=booking.room_type_id,
        check_in_date=booking.check_in_date,
        total_amount=booking.total_amount,
        currency=booking.currency,
        status=booking.status.value,
        payment_reference=booking.payment_reference,
        is_paid=booking.is_paid,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"success": True, "message": "Rental booking engine is running"}


@router.post(
    "/bookings",
    response_model=ApiResponse[BookingResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_current_user_id)],
)
def create_booking(
    request: BookingCreateRequest,
    db: Session = Depends(get_db),
):
    service = BookingService(db)

    try:
        booking = service.create_booking(
            user_id=request.user_id,
            property_id=request.property_id,
            room_type_id=request.room_type_id,
            check_in_date=request.check_in_date,
        )
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        message="Booking created successfully",
        data=_booking_response(booking),
    )


@router.get(
    "/bookings/user/{user_id}",
    response_model=ApiResponse[list[BookingResponse]],
    dependencies=[Depends(get_current_user_id)],
)
def list_user_bookings(user_id: str, db: Session = Depends(get_db)):
    bookings = BookingService(db).list_user_bookings(user_id)
    logger.info("Found %s bookings for user %s", len(bookings), user_id)
    return ApiResponse(data=[_booking_response(booking) for booking in bookings])


@router.get(
    "/bookings/{booking_id}",
    response_model=ApiResponse[BookingResponse],
    dependencies=[Depends(get_current_user_id)],
)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    try:
        booking = BookingService(db).get_booking(booking_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=_booking_response(booking))


@router.patch(
    "/bookings/{booking_id}/status",
    response_model=ApiResponse[BookingResponse],
    dependencies=[Depends(get_current_user_id)],
)
def update_booking_status(
    booking_id: str,
    request: BookingStatusUpdateRequest,
    db: Session = Depends(get_db),
):
    service = BookingService(db)

    try:
        booking = service.update_status(
            booking_id=booking_id,
            new_status=request.status,
            payment_reference=request.payment_reference,
        )
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        message="Booking status updated successfully",
        data=_booking_response(booking),
    )


@router.patch(
    "/bookings/{booking_id}/cancel",
    response_model=ApiResponse[BookingResponse],
    dependencies=[Depends(get_current_user_id)],
)
def cancel_booking(booking_id: str, db: Session = Depends(get_db)):
    service = BookingService(db)

    try:
        booking = service.cancel_booking(booking_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        message="Booking cancelled successfully",
        data=_booking_response(booking),
    )


@router.get(
    "/inventory/room-types/{room_type_id}",
    response_model=ApiResponse[InventoryResponse],
)
def get_room_type_inventory(room_type_id: str, db: Session = Depends(get_db)):
    try:
        stats = BookingService(db).ledger.snapshot(room_type_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=InventoryResponse(**stats))


@router.post(
    "/payments/initialize",
    response_model=ApiResponse[PaymentInitializeResponse],
)
def initialize_payment(
    request: PaymentInitializeRequest,
    user_id: str = Depends(get_current_user_id),
    gateway: PaystackClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    service = PaymentService(db, gateway)

    try:
        result = service.initialize_payment(
            booking_id=request.booking_id,
            user_id=user_id,
            email=request.email,
        )
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    booking = result.booking
    return ApiResponse(
        message="Payment initialized successfully",
        data=PaymentInitializeResponse(
            authorization_url=result.authorization_url,
            access_code=result.access_code,
            reference=result.reference,
            booking=PaymentBookingSummary(
                id=booking.id,
                total_amount=booking.total_amount,
                currency=booking.currency,
                property_name=result.property_name,
                room_type_name=result.room_type_name,
            ),
        ),
    )


@router.get(
    "/payments/verify/{reference}",
    response_model=ApiResponse[PaymentVerifyResponse],
)
def verify_payment(
    reference: str,
    user_id: str = Depends(get_current_user_id),
    gateway: PaystackClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    service = PaymentService(db, gateway)

    try:
        result = service.verify_payment(reference=reference, user_id=user_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    return ApiResponse(
        success=result.confirmed,
        message=(
            "Payment verified successfully"
            if result.confirmed
            else "Payment not successful"
        ),
        data=PaymentVerifyResponse(
            booking=_booking_response(result.booking),
            payment=PaymentDetails(**result.payment),
        ),
    )


@router.get("/payments/public-key", response_model=ApiResponse[PublicKeyResponse])
def get_public_key(
    gateway: PaystackClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    keys = PaymentService(db, gateway).get_public_key()
    return ApiResponse(data=PublicKeyResponse(**keys))


@router.post("/payments/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    gateway: PaystackClient | None = Depends(get_optional_payment_gateway),
    db: Session = Depends(get_db),
):
    raw_body = await request.body()

    if _webhook_signature_required():
        signature = request.headers.get("x-paystack-signature")
        if gateway is None or not gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON",
        ) from exc
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook payload must be an object",
        )

    service = PaymentService(db, gateway)
    outcome = await run_in_threadpool(service.handle_webhook, event)
    logger.info("Webhook %s handled: %s", event.get("event"), outcome)
    return WebhookAck()


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    events = OutboxRepository(db).list_by_status(status_filter, limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    repository = OutboxRepository(db)
    item = repository.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    repository.mark_published(item)
    return _outbox_response(item)
