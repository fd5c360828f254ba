# src/infrastructure/repositories/account_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Property, User


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def backfill_phone_number(self, user: User, phone_number: str | None) -> bool:
        """Sets the phone number only when the user has none yet."""
        if not phone_number or user.phone_number:
            return False
        user.phone_number = phone_number
        return True


class PropertyRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, property_id: str) -> Property | None:
        stmt = select(Property).where(Property.id == property_id)
        return self.db.execute(stmt).scalar_one_or_none()
