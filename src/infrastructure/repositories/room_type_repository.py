# src/infrastructure/repositories/room_type_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from src.infrastructure.db.models import RoomType


class RoomTypeRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, room_type_id: str) -> RoomType | None:
        stmt = select(RoomType).where(RoomType.id == room_type_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_property(
        self,
        room_type_id: str,
        property_id: str,
    ) -> RoomType | None:
        stmt = (
            select(RoomType)
            .where(RoomType.id == room_type_id)
            .where(RoomType.property_id == property_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def try_decrement(self, room_type_id: str) -> bool:
        """
        UPDATE ... SET available_rooms = available_rooms - 1
        WHERE available_rooms > 0

        The check and the write are one statement, so two concurrent
        callers racing for the last unit cannot both succeed.
        """

        stmt = (
            update(RoomType)
            .where(RoomType.id == room_type_id)
            .where(RoomType.available_rooms > 0)
            .where(RoomType.is_available.is_(True))
            .where(RoomType.is_active.is_(True))
            .values(available_rooms=RoomType.available_rooms - 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self._expire_counter(room_type_id)
        return result.rowcount == 1

    def try_increment(self, room_type_id: str) -> bool:
        """
        UPDATE ... SET available_rooms = available_rooms + 1
        WHERE available_rooms < total_rooms
        """

        stmt = (
            update(RoomType)
            .where(RoomType.id == room_type_id)
            .where(RoomType.available_rooms < RoomType.total_rooms)
            .values(available_rooms=RoomType.available_rooms + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self._expire_counter(room_type_id)
        return result.rowcount == 1

    def _expire_counter(self, room_type_id: str) -> None:
        # A RoomType already loaded in this session still carries the old count.
        key = self.db.identity_key(RoomType, room_type_id)
        cached = self.db.identity_map.get(key)
        if cached is not None:
            self.db.expire(cached, ["available_rooms"])
