# src/infrastructure/repositories/webhook_event_repository.py

import hashlib
import json

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import PaymentWebhookEvent


def hash_payload(payload: dict) -> str:
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class WebhookEventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get(
        self,
        provider: str,
        event_type: str,
        reference: str,
    ) -> PaymentWebhookEvent | None:
        stmt = (
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.event_type == event_type)
            .where(PaymentWebhookEvent.reference == reference)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record(
        self,
        provider: str,
        event_type: str,
        reference: str,
        payload: dict,
        status: str,
        booking_id: str | None = None,
    ) -> PaymentWebhookEvent:
        """Inserts the delivery, or overwrites the outcome of an earlier one."""
        event = self.get(provider, event_type, reference)
        if event is None:
            event = PaymentWebhookEvent(
                provider=provider,
                event_type=event_type,
                reference=reference,
            )
            self.db.add(event)

        event.booking_id = booking_id
        event.payload_hash = hash_payload(payload)
        event.status = status
        return event
