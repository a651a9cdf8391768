"""Holiday records and built-in national calendars.

A preset computes the public holidays of a country for a given year.
Brazilian national holidays are not moved to the nearest weekday when
they fall on a weekend, so dates are returned as they occur.
"""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import NamedTuple


class Holiday(NamedTuple):
    """A single day off on the court calendar."""

    date: datetime.date
    label: str
    kind: str = "nacional"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def easter_sunday(year: int) -> datetime.date:
    """Return Easter Sunday of *year* (Gregorian calendar).

    Anonymous Gregorian algorithm (Meeus/Jones/Butcher).
    """
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return datetime.date(year, month, day + 1)


# ---------------------------------------------------------------------------
# Country presets
# ---------------------------------------------------------------------------

PRESETS: dict[str, str] = {
    "br": "Feriados nacionais do Brasil",
}


def br_holidays(year: int) -> list[Holiday]:
    """Brazilian national holidays for *year*.

    Carnival Monday/Tuesday are optional days (``ponto facultativo``) but
    the courts close, so they are included with kind ``facultativo``.
    """
    easter = easter_sunday(year)
    day = datetime.timedelta(days=1)
    holidays = [
        Holiday(datetime.date(year, 1, 1), "Confraternização Universal"),
        Holiday(easter - 48 * day, "Carnaval", "facultativo"),
        Holiday(easter - 47 * day, "Carnaval", "facultativo"),
        Holiday(easter - 2 * day, "Sexta-feira Santa"),
        Holiday(datetime.date(year, 4, 21), "Tiradentes"),
        Holiday(datetime.date(year, 5, 1), "Dia do Trabalho"),
        Holiday(easter + 60 * day, "Corpus Christi", "facultativo"),
        Holiday(datetime.date(year, 9, 7), "Independência do Brasil"),
        Holiday(datetime.date(year, 10, 12), "Nossa Senhora Aparecida"),
        Holiday(datetime.date(year, 11, 2), "Finados"),
        Holiday(datetime.date(year, 11, 15), "Proclamação da República"),
        Holiday(datetime.date(year, 12, 25), "Natal"),
    ]
    # Law 14.759/2023 made Black Consciousness Day a national holiday.
    if year >= 2024:
        holidays.append(Holiday(datetime.date(year, 11, 20), "Dia da Consciência Negra"))
    return sorted(holidays)


_PRESET_FNS: dict[str, Callable[[int], list[Holiday]]] = {
    "br": br_holidays,
}


def check_preset(country: str) -> Callable[[int], list[Holiday]]:
    """Return the preset function for *country*.

    Raises ``KeyError`` if the country is not supported.
    """
    fn = _PRESET_FNS.get(country)
    if fn is None:
        supported = ", ".join(sorted(PRESETS))
        msg = f"Unknown country preset {country!r}. Supported: {supported}"
        raise KeyError(msg)
    return fn


def get_holidays(country: str, year: int) -> list[Holiday]:
    """Return the holidays of the given *country* preset and *year*."""
    return check_preset(country)(year)
