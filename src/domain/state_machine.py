# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from src.domain.exceptions import (
    AlreadyCancelledError,
    InvalidStatusError,
    InvalidTransitionError,
    TerminalStateError,
)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: "str | BookingStatus") -> "BookingStatus":
        """
        Accepts either the wire value ("confirmed") or the member
        name ("CONFIRMED").
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise InvalidStatusError(f"Invalid booking status: {value!r}")


# Statuses that hold a unit of room-type inventory.
HOLDING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CANCELLED,
            BookingStatus.COMPLETED,
        },
        BookingStatus.CANCELLED: set(),
        BookingStatus.COMPLETED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidTransitionError (or one of its more specific
        subclasses for terminal states) if the transition is illegal.
        """
        if cls.can_transition(from_status, to_status):
            return

        if from_status is BookingStatus.CANCELLED:
            raise AlreadyCancelledError(to_state=to_status.value)
        if from_status is BookingStatus.COMPLETED:
            raise TerminalStateError(
                from_state=from_status.value,
                to_state=to_status.value,
            )
        raise InvalidTransitionError(
            from_state=from_status.value,
            to_state=to_status.value,
        )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        cls._ensure_valid_status(status)
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
