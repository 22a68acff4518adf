"""Money helpers. All amounts are Decimal, rounded half-up to the currency minor unit."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from settlement.config import settings

ZERO = Decimal("0")


def minor_unit(decimal_places: Optional[int] = None) -> Decimal:
    places = settings.CURRENCY_DECIMAL_PLACES if decimal_places is None else decimal_places
    return Decimal(1).scaleb(-places)


def round_money(amount, decimal_places: Optional[int] = None) -> Decimal:
    """Round to the currency minor unit using ROUND_HALF_UP."""
    return Decimal(str(amount)).quantize(minor_unit(decimal_places), rounding=ROUND_HALF_UP)


def sum_money(amounts: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for amount in amounts:
        total += Decimal(amount)
    return round_money(total)


def to_minor_units(amount: Decimal, decimal_places: Optional[int] = None) -> int:
    """Convert to the smallest currency unit (e.g. paise) for gateway APIs."""
    places = settings.CURRENCY_DECIMAL_PLACES if decimal_places is None else decimal_places
    return int(round_money(amount, places).scaleb(places))
