from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from evbooking.errors import InvalidWindow

CENTS = Decimal("0.01")
_MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)


def compute_cost(
    start: datetime, end: datetime, hourly_rate: Union[Decimal, float, int, str]
) -> Decimal:
    """Price of a booking window: duration in hours times the hourly rate.

    Rounded half-up to cents. Raises InvalidWindow when end <= start.
    """
    if end <= start:
        raise InvalidWindow()

    microseconds = (end - start) // timedelta(microseconds=1)
    hours = Decimal(microseconds) / _MICROSECONDS_PER_HOUR
    rate = Decimal(str(hourly_rate))
    return (hours * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
