"""
Aritmética de dias úteis (segunda a sexta, sem calendário de feriados).
Só a parte de data é considerada; horário e fuso são descartados.
"""

import math
from datetime import date, datetime, timedelta, timezone
from typing import Union

DateLike = Union[date, datetime]


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def is_business_day(value: DateLike) -> bool:
    return _to_date(value).weekday() < 5


def add_business_days(start: DateLike, business_days: float) -> date:
    """
    Avança `business_days` dias úteis a partir de `start`.
    O próprio dia de início não conta; com 0 devolve a data de início.
    """
    if business_days is None or not math.isfinite(business_days) or business_days < 0:
        raise ValueError("business_days deve ser um número não negativo.")

    remaining = int(business_days)
    cursor = _to_date(start)

    while remaining > 0:
        cursor += timedelta(days=1)
        if is_business_day(cursor):
            remaining -= 1

    return cursor


def difference_in_business_days(from_date: DateLike, to_date: DateLike) -> int:
    """Diferença com sinal: negativa quando `to_date` é anterior."""
    start = _to_date(from_date)
    end = _to_date(to_date)

    if start == end:
        return 0

    step = 1 if start < end else -1
    cursor = start
    difference = 0

    while cursor != end:
        cursor += timedelta(days=step)
        if is_business_day(cursor):
            difference += step

    return difference
