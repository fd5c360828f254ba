# tests/unit/test_state_machine.py

import pytest

from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.domain.exceptions import (
    AlreadyCancelledError,
    InvalidStatusError,
    InvalidTransitionError,
    TerminalStateError,
)


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.COMPLETED,
    )


def test_cancel_allowed_before_completion():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CANCELLED,
    )
    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    )


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_complete_unpaid_booking():
    with pytest.raises(InvalidTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.COMPLETED,
        )


def test_cannot_return_to_pending():
    with pytest.raises(InvalidTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.CONFIRMED,
            BookingStatus.PENDING,
        )


def test_terminal_state_cancelled():
    assert BookingStateMachine.is_terminal(BookingStatus.CANCELLED)

    with pytest.raises(AlreadyCancelledError, match="already cancelled"):
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELLED,
            BookingStatus.CANCELLED,
        )


def test_terminal_state_completed():
    assert BookingStateMachine.is_terminal(BookingStatus.COMPLETED)

    with pytest.raises(TerminalStateError):
        BookingStateMachine.validate_transition(
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
        )


def test_allowed_transitions_are_copies():
    allowed = BookingStateMachine.get_allowed_transitions(BookingStatus.PENDING)
    allowed.clear()

    assert BookingStateMachine.get_allowed_transitions(BookingStatus.PENDING) == {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    }


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.CONFIRMED,
        )


# ---------------------
# STATUS PARSING
# ---------------------

@pytest.mark.parametrize("raw", ["confirmed", "CONFIRMED", BookingStatus.CONFIRMED])
def test_parse_accepts_value_and_name(raw):
    assert BookingStatus.parse(raw) is BookingStatus.CONFIRMED


@pytest.mark.parametrize("raw", ["processing", "", None, 3])
def test_parse_rejects_unknown_status(raw):
    with pytest.raises(InvalidStatusError):
        BookingStatus.parse(raw)
