import logging

from src.domain.exceptions import InventoryUnavailableError, NotFoundError
from src.infrastructure.repositories.room_type_repository import RoomTypeRepository


logger = logging.getLogger(__name__)


class InventoryLedger:
    """Gates and records consumption of room-type units, one unit per booking."""

    def __init__(self, room_type_repository: RoomTypeRepository):
        self.room_type_repository = room_type_repository

    def reserve_unit(self, room_type_id: str) -> None:
        if self.room_type_repository.try_decrement(room_type_id):
            logger.info("Reserved one unit of room type %s", room_type_id)
            return

        room_type = self.room_type_repository.get_by_id(room_type_id)
        if room_type is None:
            raise InventoryUnavailableError("Room type not found")
        if not room_type.is_available or not room_type.is_active:
            raise InventoryUnavailableError(
                "This room type is not available for booking"
            )
        logger.info("No units left for room type %s", room_type_id)
        raise InventoryUnavailableError("No rooms available for this room type")

    def release_unit(self, room_type_id: str) -> bool:
        """
        Returns the unit to the pool. A release that would push
        available_rooms past total_rooms is dropped and logged.
        """
        if self.room_type_repository.try_increment(room_type_id):
            logger.info("Released one unit of room type %s", room_type_id)
            return True

        logger.warning(
            "Release for room type %s skipped: missing or already at total_rooms",
            room_type_id,
        )
        return False

    def snapshot(self, room_type_id: str) -> dict:
        room_type = self.room_type_repository.get_by_id(room_type_id)
        if room_type is None:
            raise NotFoundError("Room type not found")
        return {
            "room_type_id": room_type.id,
            "total_rooms": room_type.total_rooms,
            "available_rooms": room_type.available_rooms,
            "booked_rooms": room_type.total_rooms - room_type.available_rooms,
            "is_available": room_type.is_available,
        }
