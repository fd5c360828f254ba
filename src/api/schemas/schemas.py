from datetime import date, datetime
from decimal import Decimal
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str | None = None
    data: T | None = None


class BookingCreateRequest(CamelModel):
    user_id: str = Field(min_length=1)
    property_id: str = Field(min_length=1)
    room_type_id: str = Field(min_length=1)
    check_in_date: date


class BookingStatusUpdateRequest(CamelModel):
    status: str
    payment_reference: str | None = None


class BookingResponse(CamelModel):
    id: str
    user_id: str
    property_id: str
    room_type_id: str
    check_in_date: date
    total_amount: Decimal
    currency: str
    status: str
    payment_reference: str | None = None
    is_paid: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class InventoryResponse(CamelModel):
    room_type_id: str
    total_rooms: int
    available_rooms: int
    booked_rooms: int
    is_available: bool


class PaymentInitializeRequest(CamelModel):
    booking_id: str = Field(min_length=1)
    email: EmailStr | None = None


class PaymentBookingSummary(CamelModel):
    id: str
    total_amount: Decimal
    currency: str
    property_name: str | None = None
    room_type_name: str | None = None


class PaymentInitializeResponse(CamelModel):
    authorization_url: str
    access_code: str
    reference: str
    booking: PaymentBookingSummary


class PaymentDetails(CamelModel):
    reference: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    paid_at: str | None = None


class PaymentVerifyResponse(CamelModel):
    booking: BookingResponse
    payment: PaymentDetails


class PublicKeyResponse(CamelModel):
    public_key: str | None = None
    is_test_mode: bool


class WebhookAck(BaseModel):
    success: bool = True


class OutboxEventResponse(CamelModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
