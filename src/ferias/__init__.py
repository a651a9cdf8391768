"""Vacation suggester.

Proposes vacation windows next to holiday clusters so the days off the
calendar already grants stretch a vacation further.
"""

from ferias.holidays import Holiday, br_holidays, get_holidays
from ferias.sources import (
    CachedHolidaySource,
    HolidayFetchTimeout,
    HolidaySourceError,
    PresetHolidaySource,
    StaticHolidaySource,
    SupabaseHolidaySource,
)
from ferias.suggestions import (
    Period,
    SuggestionConfig,
    VacationSuggester,
    VacationSuggestion,
    generate_suggestions,
)

__all__ = [
    "CachedHolidaySource",
    "Holiday",
    "HolidayFetchTimeout",
    "HolidaySourceError",
    "Period",
    "PresetHolidaySource",
    "StaticHolidaySource",
    "SuggestionConfig",
    "SupabaseHolidaySource",
    "VacationSuggester",
    "VacationSuggestion",
    "br_holidays",
    "generate_suggestions",
    "get_holidays",
]
