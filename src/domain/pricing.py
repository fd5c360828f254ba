# src/domain/pricing.py

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from src.domain.exceptions import InvalidPriceError


SERVICE_CHARGE_RATE = Decimal("0.08")
_CENT = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise InvalidPriceError(f"Invalid base price: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise InvalidPriceError(f"Invalid base price: {value!r}") from exc


def round2(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def compute_total(base_price) -> Decimal:
    """
    Total charge for one booking: base price plus an 8% service charge,
    rounded half-up to the cent.

    The result is stored on the booking at creation time and never
    recomputed from the room type afterwards.
    """
    price = _to_decimal(base_price)
    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(f"Invalid base price: {base_price!r}")

    service_charge = price * SERVICE_CHARGE_RATE
    return round2(price + service_charge)


def to_minor_units(amount) -> int:
    """Converts a major-unit amount to the gateway's smallest unit (x100)."""
    return int(round2(_to_decimal(amount)) * 100)
