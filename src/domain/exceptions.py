class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the rental booking engine.
    """


class ValidationError(BookingEngineError):
    """Raised when input is malformed, missing or out of range."""


class InvalidStatusError(ValidationError):
    """Raised when a status value is not a known BookingStatus."""


class InvalidPriceError(ValidationError):
    """Raised when a base price is not a finite positive number."""


class NotFoundError(BookingEngineError):
    """Raised when a user, property, room type or booking is missing."""


class InventoryUnavailableError(BookingEngineError):
    """Raised when a room type has no unit left to reserve."""


class InvalidTransitionError(BookingEngineError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str, message: str | None = None):
        self.from_state = from_state
        self.to_state = to_state

        if message is None:
            message = (
                f"Illegal state transition attempted: "
                f"{from_state} -> {to_state}"
            )
        super().__init__(message)


class AlreadyCancelledError(InvalidTransitionError):
    def __init__(self, to_state: str = "cancelled"):
        super().__init__("cancelled", to_state, "Booking is already cancelled")


class TerminalStateError(InvalidTransitionError):
    def __init__(self, from_state: str, to_state: str):
        super().__init__(
            from_state,
            to_state,
            f"Cannot move a {from_state} booking to {to_state}",
        )


class PaymentReferenceConflictError(BookingEngineError):
    """Raised when a payment reference is already linked to another booking."""


class GatewayError(BookingEngineError):
    """
    Raised when the payment provider is unreachable or rejects a call.

    status_code is the HTTP status the API should answer with:
    400 when the provider refused the request, 502 when it could not
    be reached or failed on its side.
    """

    def __init__(self, message: str, status_code: int = 502):
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(BookingEngineError):
    """Raised when a write to the store fails."""
